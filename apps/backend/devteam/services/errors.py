from __future__ import annotations


class ServiceError(RuntimeError):
    """Base error for service-layer failures that map to HTTP responses."""

    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400


class SessionNotFoundError(ServiceError):
    status_code = 404


class InvalidStateError(ServiceError):
    status_code = 400


class SessionBusyError(InvalidStateError):
    status_code = 409


class ToolExecutionError(RuntimeError):
    """Raised inside a tool; the dispatcher folds it into that call's result."""


class ModelInvocationError(RuntimeError):
    """The language model call failed, timed out or returned garbage."""

    def __init__(self, role: str, message: str) -> None:
        self.role = role
        super().__init__(f"{role}: {message}")
