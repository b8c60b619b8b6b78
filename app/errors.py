from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppError(HTTPException):
    """Business error rendered as ``{code, message, details}``."""

    status_code = 400
    code = "app_error"
    retryable = False

    def __init__(self, message: str, details=None):
        self.message = message
        super().__init__(
            status_code=type(self).status_code,
            detail={"code": self.code, "message": message, "details": details},
        )

    def __str__(self) -> str:
        return self.message


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class PermissionDeniedError(AppError):
    status_code = 403
    code = "permission_denied"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class InvalidStateError(AppError):
    """Business-rule violation: non-pending request, protected policy, etc."""

    status_code = 409
    code = "invalid_state"


InvalidOperationError = InvalidStateError


class ConcurrencyConflict(AppError):
    """Optimistic-lock failure. Callers should re-fetch and resubmit."""

    status_code = 409
    code = "concurrency_conflict"
    retryable = True

    def __init__(
        self,
        message: str = "Record was modified by another user. Please refresh and try again.",
        details=None,
    ):
        super().__init__(message, details)


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


def register_error_handlers(app) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        headers = None
        if getattr(exc, "retryable", False):
            headers = {"Retry-After": "1"}
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        # exc.errors() ctx may contain raw Exception objects (not JSON-serialisable).
        errors = [
            {k: str(v) if k == "ctx" else v for k, v in err.items()}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=_error_payload("validation_error", "Validation error", errors),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=500,
            content=_error_payload("internal_error", "Internal server error", None),
        )
