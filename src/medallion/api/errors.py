"""
Error handlers - map medallion errors to RFC 7807 responses.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from medallion.api.schemas.common import ErrorDetail, ProblemDetail
from medallion.core.errors import BusyError, ErrorCategory, MedallionError
from medallion.core.logging import get_logger

logger = get_logger(__name__)

# ── Error category → HTTP status mapping ─────────────────────────────────

ERROR_CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.CONFIG: 500,
    ErrorCategory.SOURCE: 502,
    ErrorCategory.STORAGE: 503,
    ErrorCategory.TIMEOUT: 504,
    ErrorCategory.INTERNAL: 500,
}

_TITLES: dict[int, str] = {
    404: "Not Found",
    409: "Conflict",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def status_for_category(category: ErrorCategory) -> int:
    """Resolve an error category to HTTP status, defaulting to 500."""
    return ERROR_CATEGORY_TO_STATUS.get(category, 500)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    errors: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance)
    if errors:
        body.errors = [ErrorDetail(**e) for e in errors]
    return JSONResponse(
        status_code=status,
        content=body.model_dump(),
        media_type="application/problem+json",
    )


async def medallion_error_handler(request: Request, exc: MedallionError) -> JSONResponse:
    """Typed errors keep their message; the category picks the status."""
    status = status_for_category(exc.category)
    title = "Busy" if isinstance(exc, BusyError) else _TITLES.get(status, "Error")
    if status >= 500:
        logger.error("request_failed", path=request.url.path, **exc.to_dict())
    return problem_response(status=status, title=title, detail=exc.message, instance=request.url.path)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions - returns 500 with ProblemDetail."""
    logger.exception("request_unhandled_error", path=request.url.path)
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=request.url.path,
    )
