"""Classification of agent turns and rendering of the display log.

The router never looks at raw model output directly. Every decision about
what happens after an agent speaks goes through :func:`classify_turn`, so the
textual sentinel protocol lives in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

from langchain_core.messages import AIMessage, BaseMessage

CLARIFICATION_MARKER = "CLARIFICATION_NEEDED"
COMPLETION_MARKER = "PROJECT_COMPLETED"

# Sender tokens the polling UI keys on ("herramienta" marks tool events).
SYSTEM_LABEL = "Sistema"
HUMAN_LABEL = "Humano"
TOOL_LABEL = "Herramienta"
ERROR_LABEL = "⚠️ Error Crítico"

TurnKind = Literal["tool_call", "clarify", "complete", "handoff"]


@dataclass(frozen=True)
class TurnClassification:
    kind: TurnKind
    text: str = ""


def message_text(message: Any) -> str:
    """Plain text of a message whose content may be a list of content blocks."""
    content = getattr(message, "content", message)
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text") or ""))
        return "".join(parts)
    return str(content)


def strip_marker(text: str, marker: str) -> str:
    """Remainder after ``marker``; the text before it when nothing follows."""
    before, _, after = text.partition(marker)
    remainder = after.lstrip().removeprefix(":").strip()
    if remainder:
        return remainder
    return before.strip()


def classify_turn(message: Optional[BaseMessage]) -> TurnClassification:
    if message is None:
        return TurnClassification("handoff")
    if isinstance(message, AIMessage) and message.tool_calls:
        return TurnClassification("tool_call", message_text(message).strip())

    text = message_text(message)
    if CLARIFICATION_MARKER in text:
        return TurnClassification("clarify", strip_marker(text, CLARIFICATION_MARKER))
    if COMPLETION_MARKER in text:
        return TurnClassification("complete", strip_marker(text, COMPLETION_MARKER))
    return TurnClassification("handoff", text.strip())


def log_line(sender: str, message: str) -> str:
    return f"**{sender}**: {message}"


def tool_label(tool_name: str) -> str:
    return f"{TOOL_LABEL} ({tool_name})"
