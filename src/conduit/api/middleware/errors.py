"""
Error-handling — maps Conduit errors to RFC 7807 responses.

This is the only place exceptions are translated for the client.  The
dispatch pipeline and the transaction behavior let exceptions through
unchanged; the handlers below pick the status from the error category.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from conduit.api.schemas import ErrorDetail, ProblemDetail
from conduit.core.errors import ConduitError, ErrorCategory, ValidationError
from conduit.core.logging import get_logger

log = get_logger(__name__)

# ── Error category → HTTP status mapping ─────────────────────────────────

CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.DISPATCH: 500,
    ErrorCategory.CONFIG: 500,
    ErrorCategory.DATABASE: 500,
    ErrorCategory.NETWORK: 503,
    ErrorCategory.INTERNAL: 500,
}

TITLES: dict[int, str] = {
    404: "Not Found",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


def status_for_error(error: ConduitError) -> int:
    """Resolve an error to an HTTP status; retryable errors are 503."""
    if error.retryable:
        return 503
    return CATEGORY_TO_STATUS.get(error.category, 500)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    errors: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance,
    )
    if errors:
        body.errors = [ErrorDetail(**e) for e in errors]
    return JSONResponse(
        status_code=status,
        content=body.model_dump(),
        media_type="application/problem+json",
    )


def _validation_errors(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"code": "INVALID", "message": message, "field": field}
        for field, messages in error.errors.items()
        for message in messages
    ]


async def conduit_exception_handler(request: Request, exc: ConduitError) -> JSONResponse:
    """Translate a ``ConduitError`` raised anywhere below the router."""
    status = status_for_error(exc)
    log_method = log.warning if status < 500 else log.error
    log_method("request.failed", status=status, path=request.url.path, **exc.to_dict())

    debug = request.app.state.settings.debug
    detail = exc.message if status < 500 or debug else "An unexpected error occurred."
    return problem_response(
        status=status,
        title=TITLES.get(status, "Error"),
        detail=detail,
        instance=str(request.url),
        errors=_validation_errors(exc) if isinstance(exc, ValidationError) else None,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — returns 500 with ProblemDetail."""
    log.error(
        "request.unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url),
    )
