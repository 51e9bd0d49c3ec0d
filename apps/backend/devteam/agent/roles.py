from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from langchain_core.messages import AIMessage, BaseMessage

from . import llm
from .tools import FILE_READ, FILE_WRITE, WEB_SEARCH, ToolRegistry

PM = "pm"
ARCHITECT = "architect"
DEVELOPER = "developer"
QA = "qa"

DEFAULT_DISPLAY_NAME = "Agent"

_QUOTED_NAME = re.compile(r'"([^"]+)"')

PM_PROMPT = """You are "Sofia", the Project Manager of a small software team.

RULE 1: CLARIFICATION
At the start of a project propose a technology stack and ask whether it is fine.
Write: "CLARIFICATION_NEEDED: [question]".

RULE 2: REQUIREMENTS
Once the stack is agreed, write 'docs/requirements.md' with the 'file_write' tool.
Writing that file hands the project to the Architect.

RULE 3: COMPLAINTS
If the user says files are missing or something does not work:
1. Apologise.
2. Tell the Developer to RE-WRITE the files using the tool.
3. Say: "Understood, Lucas will regenerate the files right now."
"""

ARCHITECT_PROMPT = """You are "Mateo", the Architect.
1. Define the project structure.
2. Create 'docs/architecture.md' with 'file_write'.
3. Hand the turn to the Developer.
You may use 'web_search' to check technical details."""

DEVELOPER_PROMPT = """You are "Lucas", the Developer.

GOLDEN RULE:
Do NOT write lists of files in markdown. YOUR JOB IS TO WRITE CODE.
For EVERY file you mention (HTML, CSS, JS, ...) you MUST call the 'file_write' tool.

INSTRUCTIONS:
1. If you are going to create 5 files, call 'file_write' 5 times.
2. Do NOT reply with text saying "I created index.html". USE the tool.
3. When every file exists, hand the turn over for review."""

QA_PROMPT = """You are "Camila", Quality Assurance.
Your job is to verify that Lucas really created the files.

1. Check the history. Did Lucas use 'file_write' for every promised file? Use 'file_read' to inspect them.
2. If files are missing or he only wrote text: SEND the work back to Lucas with:
   "Lucas, physical files are missing. Create them using the tool."
3. If everything is fine reply: "PROJECT_COMPLETED: Validation successful. Do you want to deploy or change anything?"."""


def display_name_from_prompt(prompt: str, fallback: str = DEFAULT_DISPLAY_NAME) -> str:
    """The first double-quoted token of a prompt names the agent."""
    match = _QUOTED_NAME.search(prompt or "")
    if not match:
        return fallback
    name = match.group(1).strip()
    return name or fallback


@dataclass(frozen=True)
class AgentRole:
    key: str
    prompt: str
    tools: tuple[str, ...] = field(default_factory=tuple)

    @property
    def display_name(self) -> str:
        return display_name_from_prompt(self.prompt)


ROLES: dict[str, AgentRole] = {
    PM: AgentRole(PM, PM_PROMPT, (FILE_WRITE,)),
    ARCHITECT: AgentRole(ARCHITECT, ARCHITECT_PROMPT, (WEB_SEARCH, FILE_WRITE)),
    DEVELOPER: AgentRole(DEVELOPER, DEVELOPER_PROMPT, (FILE_WRITE, FILE_READ)),
    QA: AgentRole(QA, QA_PROMPT, (FILE_READ,)),
}


def pipeline(enable_qa: bool) -> tuple[str, ...]:
    if enable_qa:
        return (PM, ARCHITECT, DEVELOPER, QA)
    return (PM, ARCHITECT, DEVELOPER)


def next_role(role_key: str, enable_qa: bool) -> str | None:
    order = pipeline(enable_qa)
    idx = order.index(role_key)
    if idx + 1 < len(order):
        return order[idx + 1]
    return None


async def invoke_agent(
    role: AgentRole,
    messages: Sequence[BaseMessage],
    registry: ToolRegistry,
) -> AIMessage:
    """Produce exactly one turn for ``role`` from the full conversation."""
    response = await llm.call_model(
        role.display_name,
        role.prompt,
        list(messages),
        registry.subset(role.tools),
    )
    # Tag the turn so later routing knows who produced it.
    return response.model_copy(update={"name": role.key})
