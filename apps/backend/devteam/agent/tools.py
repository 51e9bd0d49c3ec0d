from __future__ import annotations

import json
import logging
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, Optional

import requests
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from devteam.services.errors import ToolExecutionError

logger = logging.getLogger(__name__)

TAVILY_ENDPOINT = "https://api.tavily.com/search"
SEARCH_TIMEOUT_S = 15
MAX_SEARCH_RESULTS = 5

FILE_WRITE = "file_write"
FILE_READ = "file_read"
WEB_SEARCH = "web_search"
RUN_TERMINAL_COMMAND = "run_terminal_command"


def encode_result(payload: dict[str, Any]) -> str:
    # Non-ASCII stays readable; the polling UI parses these strings as-is.
    return json.dumps(payload, ensure_ascii=False)


def error_result(message: str) -> str:
    return encode_result({"status": "error", "message": message})


class Workspace:
    """Directory that generated files are confined to."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def normalise(self, file_path: str) -> str:
        raw = (file_path or "").strip().replace("\\", "/")
        if not raw:
            raise ToolExecutionError("file_path is required")
        posix = PurePosixPath(raw)
        if posix.is_absolute():
            raise ToolExecutionError(f"Absolute paths are not allowed: {file_path}")
        if ".." in posix.parts:
            raise ToolExecutionError(f"Path escapes the workspace: {file_path}")
        normalised = str(posix)
        if normalised in ("", "."):
            raise ToolExecutionError(f"Invalid file path: {file_path}")
        return normalised

    def resolve(self, file_path: str) -> tuple[str, Path]:
        rel = self.normalise(file_path)
        target = (self.root / rel).resolve()
        # Symlinks inside the workspace could still point outside it.
        if self.root not in target.parents:
            raise ToolExecutionError(f"Path escapes the workspace: {file_path}")
        return rel, target


class FileWriteInput(BaseModel):
    file_path: str = Field(description="Relative path inside the project, e.g. 'src/App.jsx'.")
    content: str = Field(description="Full content of the file.")


class FileReadInput(BaseModel):
    file_path: str = Field(description="Relative path of a file previously written to the project.")


class WebSearchInput(BaseModel):
    query: str = Field(description="Technical search query.")


class TerminalCommandInput(BaseModel):
    command: str = Field(description="Shell command to run.")


def _tavily_search(query: str, api_key: str) -> list[dict[str, Any]]:
    payload = {
        "api_key": api_key,
        "query": query,
        "max_results": MAX_SEARCH_RESULTS,
        "search_depth": "basic",
    }
    try:
        resp = requests.post(TAVILY_ENDPOINT, json=payload, timeout=SEARCH_TIMEOUT_S)
    except requests.RequestException as exc:
        raise ToolExecutionError(f"Web search request failed: {exc}") from exc
    if resp.status_code >= 400:
        logger.warning("Tavily search failed with %s", resp.status_code)
        raise ToolExecutionError(f"Web search failed with HTTP {resp.status_code}")
    data = resp.json()
    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        return []
    return [item for item in results if isinstance(item, dict)]


class ToolRegistry:
    """Named tools available to agents, bound to one session workspace."""

    def __init__(self, workspace: Workspace, *, tavily_api_key: Optional[str] = None) -> None:
        self.workspace = workspace
        self._tavily_api_key = tavily_api_key
        tools = [
            StructuredTool.from_function(
                func=self._file_write,
                name=FILE_WRITE,
                description="Writes a real file to disk. Input: file_path (relative path) and content.",
                args_schema=FileWriteInput,
            ),
            StructuredTool.from_function(
                func=self._file_read,
                name=FILE_READ,
                description="Reads the content of a file previously written to the project.",
                args_schema=FileReadInput,
            ),
            StructuredTool.from_function(
                func=self._web_search,
                name=WEB_SEARCH,
                description="Searches the web for technical information.",
                args_schema=WebSearchInput,
            ),
            StructuredTool.from_function(
                func=self._run_terminal_command,
                name=RUN_TERMINAL_COMMAND,
                description="Runs shell commands (disabled).",
                args_schema=TerminalCommandInput,
            ),
        ]
        self._tools: dict[str, BaseTool] = {t.name: t for t in tools}

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def subset(self, names: Iterable[str]) -> list[BaseTool]:
        selected: list[BaseTool] = []
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                raise KeyError(f"Unknown tool: {name}")
            selected.append(tool)
        return selected

    def _file_write(self, file_path: str, content: str) -> str:
        rel, target = self.workspace.resolve(file_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(f"Error writing file {rel}: {exc}") from exc
        logger.info("file_write %s (%d chars)", rel, len(content))
        return encode_result({"status": "file_created", "path": rel, "content": content})

    def _file_read(self, file_path: str) -> str:
        rel, target = self.workspace.resolve(file_path)
        if not target.is_file():
            raise ToolExecutionError(f"File not found: {rel}")
        try:
            content = target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolExecutionError(f"Error reading file {rel}: {exc}") from exc
        return encode_result({"status": "file_read", "path": rel, "content": content})

    def _web_search(self, query: str) -> str:
        if not self._tavily_api_key:
            raise ToolExecutionError("Web search is not configured (TAVILY_API_KEY missing).")
        query = (query or "").strip()
        if not query:
            raise ToolExecutionError("query is required")
        results = _tavily_search(query, self._tavily_api_key)
        snippets = [
            {
                "title": item.get("title"),
                "snippet": item.get("content") or item.get("snippet"),
                "source": item.get("url"),
            }
            for item in results[:MAX_SEARCH_RESULTS]
        ]
        return encode_result({"status": "search_results", "query": query, "results": snippets})

    def _run_terminal_command(self, command: str) -> str:
        raise ToolExecutionError("Terminal disabled for security reasons.")
