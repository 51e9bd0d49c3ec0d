from __future__ import annotations

import json

import pytest

from devteam.agent import tools as tools_module
from devteam.agent.tools import ToolRegistry, Workspace
from devteam.services.errors import ToolExecutionError


@pytest.fixture
def registry(tmp_path) -> ToolRegistry:
    return ToolRegistry(Workspace(tmp_path / "ws"))


def test_file_write_creates_directories_and_reports_content(registry: ToolRegistry) -> None:
    out = registry.get("file_write").invoke({"file_path": "src/a.txt", "content": "hello"})
    payload = json.loads(out)

    assert payload == {"status": "file_created", "path": "src/a.txt", "content": "hello"}
    assert (registry.workspace.root / "src" / "a.txt").read_text(encoding="utf-8") == "hello"


def test_second_write_replaces_content(registry: ToolRegistry) -> None:
    write = registry.get("file_write")
    write.invoke({"file_path": "src/a.txt", "content": "hello"})
    write.invoke({"file_path": "./src/a.txt", "content": "world"})

    files = [p for p in registry.workspace.root.rglob("*") if p.is_file()]
    assert len(files) == 1
    assert files[0].read_text(encoding="utf-8") == "world"


def test_non_ascii_content_is_kept_verbatim(registry: ToolRegistry) -> None:
    out = registry.get("file_write").invoke({"file_path": "README.md", "content": "Diseño ✓"})
    assert "Diseño ✓" in out


@pytest.mark.parametrize("bad_path", ["../escape.txt", "src/../../escape.txt", "/etc/passwd", "", "   ", "."])
def test_paths_outside_the_workspace_are_rejected(registry: ToolRegistry, bad_path: str) -> None:
    with pytest.raises(ToolExecutionError):
        registry.get("file_write").invoke({"file_path": bad_path, "content": "x"})
    assert not (registry.workspace.root.parent / "escape.txt").exists()


def test_backslash_traversal_is_rejected(registry: ToolRegistry) -> None:
    with pytest.raises(ToolExecutionError):
        registry.workspace.normalise("src\\..\\..\\escape.txt")


def test_file_read_round_trip(registry: ToolRegistry) -> None:
    registry.get("file_write").invoke({"file_path": "index.html", "content": "<h1>hi</h1>"})
    payload = json.loads(registry.get("file_read").invoke({"file_path": "index.html"}))
    assert payload == {"status": "file_read", "path": "index.html", "content": "<h1>hi</h1>"}


def test_file_read_missing_file(registry: ToolRegistry) -> None:
    with pytest.raises(ToolExecutionError, match="File not found"):
        registry.get("file_read").invoke({"file_path": "nope.txt"})


def test_terminal_is_disabled(registry: ToolRegistry) -> None:
    with pytest.raises(ToolExecutionError, match="disabled"):
        registry.get("run_terminal_command").invoke({"command": "rm -rf /"})


def test_web_search_requires_api_key(registry: ToolRegistry) -> None:
    with pytest.raises(ToolExecutionError, match="TAVILY_API_KEY"):
        registry.get("web_search").invoke({"query": "vite react setup"})


def test_web_search_shapes_results(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    class FakeResponse:
        status_code = 200

        def json(self):
            return {
                "results": [
                    {"title": f"Result {i}", "content": f"snippet {i}", "url": f"https://example.com/{i}"}
                    for i in range(7)
                ]
            }

    def fake_post(url, json=None, timeout=None):
        captured["url"] = url
        captured["json"] = json
        captured["timeout"] = timeout
        return FakeResponse()

    monkeypatch.setattr(tools_module.requests, "post", fake_post)
    registry = ToolRegistry(Workspace(tmp_path), tavily_api_key="key")

    payload = json.loads(registry.get("web_search").invoke({"query": "css grid"}))

    assert payload["status"] == "search_results"
    assert len(payload["results"]) == 5
    assert payload["results"][0] == {"title": "Result 0", "snippet": "snippet 0", "source": "https://example.com/0"}
    assert captured["url"] == tools_module.TAVILY_ENDPOINT
    assert captured["timeout"] == tools_module.SEARCH_TIMEOUT_S


def test_web_search_http_error(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    class FakeResponse:
        status_code = 502

    monkeypatch.setattr(tools_module.requests, "post", lambda *a, **k: FakeResponse())
    registry = ToolRegistry(Workspace(tmp_path), tavily_api_key="key")

    with pytest.raises(ToolExecutionError, match="HTTP 502"):
        registry.get("web_search").invoke({"query": "css grid"})


def test_subset_rejects_unknown_names(registry: ToolRegistry) -> None:
    assert [t.name for t in registry.subset(["file_read", "file_write"])] == ["file_read", "file_write"]
    with pytest.raises(KeyError):
        registry.subset(["deploy"])
