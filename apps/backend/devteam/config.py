from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _get_int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _get_float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _get_positive_int_env(name: str, default: int) -> int:
    value = _get_int_env(name, default)
    return value if value > 0 else default


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in {"true", "1", "yes", "y", "on"}:
        return True
    if lowered in {"false", "0", "no", "n", "off", ""}:
        return False
    return default


@dataclass(frozen=True)
class Settings:
    model: str
    temperature: float
    max_output_tokens: int
    model_timeout_s: float
    workspace_root: str
    enable_qa: bool
    pause_on_complete: bool
    max_qa_rework: int
    recursion_limit: int
    tavily_api_key: str | None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        model=os.getenv("CHAT_OPENAI_MODEL", "gpt-4o-mini"),
        temperature=_get_float_env("CHAT_OPENAI_TEMPERATURE", 0.7),
        max_output_tokens=_get_int_env("CHAT_OPENAI_MAX_OUTPUT_TOKENS", 4000),
        model_timeout_s=_get_float_env("DEVTEAM_MODEL_TIMEOUT_SECONDS", 120.0),
        workspace_root=os.getenv("DEVTEAM_WORKSPACE_ROOT", "./generated_project"),
        enable_qa=_get_bool_env("DEVTEAM_ENABLE_QA", True),
        pause_on_complete=_get_bool_env("DEVTEAM_PAUSE_ON_COMPLETE", True),
        max_qa_rework=_get_positive_int_env("DEVTEAM_MAX_QA_REWORK", 3),
        recursion_limit=_get_positive_int_env("DEVTEAM_RECURSION_LIMIT", 100),
        tavily_api_key=os.getenv("TAVILY_API_KEY") or None,
    )
