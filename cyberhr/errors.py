from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ValidationFailed(ApiError):
    """Bad input shape or range; the operation was never attempted."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(422, code, message)


class AuthenticationFailed(ApiError):
    def __init__(self, message: str = "Not authenticated.", code: str = "INVALID_TOKEN"):
        super().__init__(401, code, message)


class AuthorizationFailed(ApiError):
    """Role or ownership mismatch; aborted before any mutation."""

    def __init__(self, message: str = "Insufficient permissions.", code: str = "FORBIDDEN"):
        super().__init__(403, code, message)


class NotFoundOrStateMismatch(ApiError):
    """Entity missing, or in the wrong state for the requested transition."""

    def __init__(self, message: str, code: str = "NOT_FOUND", status_code: int = 404):
        super().__init__(status_code, code, message)


class UpstreamFailure(ApiError):
    """A store or provider call failed; the message is safe to show to end users."""

    def __init__(self, message: str, code: str = "UPSTREAM_ERROR"):
        super().__init__(502, code, message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)


def ok_message_response(*, status_code: int, ok: bool, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": ok, "message": message})
