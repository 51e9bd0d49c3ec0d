from __future__ import annotations

import json

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from devteam.agent import nodes
from devteam.agent.graph import route_after_tools
from devteam.agent.nodes import close_unanswered_tool_calls


def test_dispatch_produces_one_result_per_call_despite_failures(workspace_root, tool_call_turn) -> None:
    turn = tool_call_turn(
        ("file_write", {"file_path": "index.html", "content": "<html></html>"}),
        ("deploy_to_prod", {"target": "aws"}),
        ("file_write", {"file_path": "../outside.txt", "content": "nope"}),
        ("file_write", {"file_path": "js/app.js", "content": "console.log(1)"}),
    )
    state = {"session_id": "s1", "messages": [HumanMessage(content="build"), turn]}

    result = nodes.tool_dispatch(state)
    messages = result["messages"]

    assert len(messages) == 4
    assert all(isinstance(m, ToolMessage) for m in messages)
    assert [m.tool_call_id for m in messages] == ["call_1", "call_2", "call_3", "call_4"]

    statuses = [json.loads(m.content)["status"] for m in messages]
    assert statuses == ["file_created", "error", "error", "file_created"]
    assert "Tool not found: deploy_to_prod" in json.loads(messages[1].content)["message"]

    assert result["files"] == {"index.html": "<html></html>", "js/app.js": "console.log(1)"}
    assert (workspace_root / "s1" / "js" / "app.js").read_text(encoding="utf-8") == "console.log(1)"
    assert not (workspace_root / "outside.txt").exists()


def test_dispatch_log_lines_follow_the_ui_contract(workspace_root, tool_call_turn) -> None:
    turn = tool_call_turn(
        ("file_write", {"file_path": "a.txt", "content": "hello"}),
        ("file_read", {"file_path": "a.txt"}),
        ("run_terminal_command", {"command": "ls"}),
    )
    result = nodes.tool_dispatch({"session_id": "s2", "messages": [turn]})
    log = result["log"]

    assert len(log) == 2
    sender, _, body = log[0].partition(": ")
    assert sender == "**Herramienta (file_write)**"
    assert json.loads(body) == {"status": "file_created", "path": "a.txt", "content": "hello"}
    assert log[1].startswith("**Herramienta (run_terminal_command)**: ")
    assert json.loads(log[1].partition(": ")[2])["status"] == "error"


def test_invalid_arguments_become_an_error_result(workspace_root, tool_call_turn) -> None:
    turn = tool_call_turn(("file_write", {"file_path": "a.txt"}))
    result = nodes.tool_dispatch({"session_id": "s3", "messages": [turn]})

    payload = json.loads(result["messages"][0].content)
    assert payload["status"] == "error"
    assert payload["message"].startswith("Error in file_write")


def test_dispatch_without_tool_calls_is_a_no_op() -> None:
    assert nodes.tool_dispatch({"messages": [AIMessage(content="just text")]}) == {}
    assert nodes.tool_dispatch({"messages": []}) == {}


def _tool_result(payload: dict, call_id: str = "c1") -> ToolMessage:
    return ToolMessage(content=json.dumps(payload), tool_call_id=call_id, name="file_write")


def test_tools_return_to_the_calling_role_by_default() -> None:
    state = {
        "active_role": "developer",
        "messages": [_tool_result({"status": "file_created", "path": "src/main.js", "content": ""})],
    }
    assert route_after_tools(state) == "developer"


def test_requirements_document_hands_pm_over_to_architect() -> None:
    state = {
        "active_role": "pm",
        "messages": [_tool_result({"status": "file_created", "path": "docs/requirements.md", "content": "# Req"})],
    }
    assert route_after_tools(state) == "architect"


def test_architecture_document_hands_architect_over_to_developer() -> None:
    state = {
        "active_role": "architect",
        "messages": [
            _tool_result({"status": "file_created", "path": "docs/notes.md", "content": ""}, "c1"),
            _tool_result({"status": "file_created", "path": "docs/architecture.md", "content": ""}, "c2"),
        ],
    }
    assert route_after_tools(state) == "developer"


def test_handoff_artifact_written_by_another_role_does_not_jump_stages() -> None:
    state = {
        "active_role": "developer",
        "messages": [_tool_result({"status": "file_created", "path": "docs/requirements.md", "content": ""})],
    }
    assert route_after_tools(state) == "developer"


def test_failed_write_of_handoff_artifact_does_not_hand_off() -> None:
    state = {
        "active_role": "pm",
        "messages": [_tool_result({"status": "error", "message": "docs/requirements.md failed"})],
    }
    assert route_after_tools(state) == "pm"


def test_only_the_latest_dispatch_is_considered() -> None:
    state = {
        "active_role": "pm",
        "messages": [
            _tool_result({"status": "file_created", "path": "docs/requirements.md", "content": ""}, "old"),
            AIMessage(content="", tool_calls=[{"name": "file_write", "args": {}, "id": "new"}]),
            _tool_result({"status": "file_created", "path": "notes.txt", "content": ""}, "new"),
        ],
    }
    assert route_after_tools(state) == "pm"


def test_unanswered_tool_calls_get_error_results(tool_call_turn) -> None:
    turn = tool_call_turn(
        ("file_write", {"file_path": "a.txt", "content": "x"}),
        ("file_read", {"file_path": "a.txt"}),
    )
    messages = [HumanMessage(content="build"), turn, _tool_result({"status": "file_created"}, "call_1")]

    closing = close_unanswered_tool_calls(messages)

    assert [(m.tool_call_id, m.name) for m in closing] == [("call_2", "file_read")]
    assert json.loads(closing[0].content)["status"] == "error"


def test_nothing_to_close_after_a_plain_turn_or_full_dispatch(tool_call_turn) -> None:
    turn = tool_call_turn(("file_write", {"file_path": "a.txt", "content": "x"}))
    assert close_unanswered_tool_calls([HumanMessage(content="hi"), AIMessage(content="hello")]) == []
    assert close_unanswered_tool_calls([turn, _tool_result({"status": "file_created"}, "call_1")]) == []
    assert close_unanswered_tool_calls([]) == []
