from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, List, Dict, Optional


class RunEvent(BaseModel):
    ts_ms: int
    level: Literal["info", "warn", "error"]
    message: str
    node: Optional[str] = None
    data: dict | None = None


class StartRunRequest(BaseModel):
    prompt: Optional[str] = None


class StartRunResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")


class RespondRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    response: Optional[str] = None


class RespondResponse(BaseModel):
    status: Literal["resumed"] = "resumed"


class SessionStatusResponse(BaseModel):
    status: Literal["running", "waiting_for_human", "finished", "error"]
    log: List[str]
    question: Optional[str] = None


class SessionFilesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    files: Dict[str, str]


class SessionTraceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    events: List[RunEvent]
