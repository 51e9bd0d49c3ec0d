from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, Sequence

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage
from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI

from devteam.config import get_settings
from devteam.services.errors import ModelInvocationError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def make_llm(model: str | None = None) -> ChatOpenAI:
    settings = get_settings()
    return ChatOpenAI(
        model=model or settings.model,
        max_tokens=settings.max_output_tokens,
        temperature=settings.temperature,
        timeout=settings.model_timeout_s,
        max_retries=0,
    )


async def call_model(
    role: str,
    system_prompt: str,
    messages: Sequence[BaseMessage],
    tools: Sequence[BaseTool] = (),
    *,
    timeout_s: float | None = None,
) -> AIMessage:
    """Run one model turn for ``role``; every failure becomes ModelInvocationError."""
    timeout = timeout_s if timeout_s is not None else get_settings().model_timeout_s
    prompt: list[BaseMessage] = [SystemMessage(content=system_prompt), *messages]
    try:
        llm: Any = make_llm()
        runnable = llm.bind_tools(list(tools)) if tools else llm
        response = await asyncio.wait_for(runnable.ainvoke(prompt), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("model call for %s timed out after %ss", role, timeout)
        raise ModelInvocationError(role, f"model call timed out after {timeout:g}s") from exc
    except Exception as exc:
        logger.exception("model call for %s failed", role)
        raise ModelInvocationError(role, str(exc) or exc.__class__.__name__) from exc

    if not isinstance(response, AIMessage):
        raise ModelInvocationError(role, f"unexpected model response type {type(response).__name__}")
    return response
