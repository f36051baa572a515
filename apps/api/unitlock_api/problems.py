"""RFC 9457 problem+json response builder shared by handlers and routers."""

import uuid
from typing import Any, Optional

from fastapi.responses import JSONResponse

from unitlock_api.context import request_id_var
from unitlock_api.schemas import ProblemDetail

PROBLEM_BASE_URI = "https://unitlock.app/problems"

_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    return _TITLES.get(status_code, f"HTTP {status_code}")


def trace_instance() -> str:
    """Opaque occurrence identifier derived from the request id."""
    request_id = request_id_var.get()
    return f"urn:unitlock:trace:{request_id or uuid.uuid4()}"


def problem_response(
    status_code: int,
    *,
    detail: str | dict[str, Any],
    title: Optional[str] = None,
    type_: Optional[str] = None,
    error_code: Optional[str] = None,
    reason: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    problem = ProblemDetail(
        type=type_ or f"{PROBLEM_BASE_URI}/http-{status_code}",
        title=title or title_for_status(status_code),
        status=status_code,
        detail=detail,
        instance=trace_instance(),
        error_code=error_code,
        reason=reason,
    )
    response_headers = dict(headers or {})
    if status_code >= 500:
        response_headers.setdefault("Retry-After", "60")
    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=response_headers,
    )
