import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException

from devteam.schemas.runs import (
    RespondRequest,
    RespondResponse,
    SessionFilesResponse,
    SessionStatusResponse,
    SessionTraceResponse,
    StartRunRequest,
    StartRunResponse,
)
from devteam.services import runs as run_service
from devteam.services.errors import ServiceError

logger = logging.getLogger(__name__)

runs_router = APIRouter(tags=["runs"])


def _http_error(exc: ServiceError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@runs_router.post("/start_run", response_model=StartRunResponse)
async def start_run(payload: StartRunRequest, background_tasks: BackgroundTasks):
    driver = run_service.get_driver()
    try:
        claim = driver.start_run(payload.prompt)
    except ServiceError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(driver.advance, claim)
    return StartRunResponse(session_id=claim.session_id)


@runs_router.get(
    "/get_status/{session_id}",
    response_model=SessionStatusResponse,
    response_model_exclude_none=True,
)
async def get_status(session_id: str):
    try:
        snapshot = run_service.get_driver().get_status(session_id)
    except ServiceError as exc:
        raise _http_error(exc) from exc
    return SessionStatusResponse(**snapshot)


@runs_router.post("/respond", response_model=RespondResponse)
async def respond(payload: RespondRequest, background_tasks: BackgroundTasks):
    logger.info("respond received for session %s", payload.session_id)
    driver = run_service.get_driver()
    try:
        claim = driver.respond(payload.session_id, payload.response)
    except ServiceError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(driver.advance, claim)
    return RespondResponse()


@runs_router.get("/get_files/{session_id}", response_model=SessionFilesResponse)
async def get_files(session_id: str):
    try:
        files = run_service.get_driver().get_files(session_id)
    except ServiceError as exc:
        raise _http_error(exc) from exc
    return SessionFilesResponse(session_id=session_id, files=files)


@runs_router.get("/get_trace/{session_id}", response_model=SessionTraceResponse)
async def get_trace(session_id: str):
    try:
        events = run_service.get_driver().get_trace(session_id)
    except ServiceError as exc:
        raise _http_error(exc) from exc
    return SessionTraceResponse(session_id=session_id, events=events)

