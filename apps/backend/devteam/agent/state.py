from typing import Annotated, Any, TypedDict
import operator
from langchain_core.messages import BaseMessage


def overwrite(_: Any, updated: Any) -> Any:
    return updated


def merge_files(existing: dict[str, str] | None, updated: dict[str, str] | None) -> dict[str, str]:
    # A later write to the same path replaces the earlier content.
    merged = dict(existing or {})
    merged.update(updated or {})
    return merged


class State(TypedDict, total=False):
    session_id: str
    messages: Annotated[list[BaseMessage], operator.add]
    log: Annotated[list[str], operator.add]
    files: Annotated[dict[str, str], merge_files]
    active_role: Annotated[str, overwrite]
    rework_count: Annotated[int, overwrite]
