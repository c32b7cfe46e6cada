"""HTTP status constants used by error classification."""

from __future__ import annotations

from meridian.errors import StatusCode

# Statuses classified as transient (retryable).
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

HTTP_STATUS_TO_CODE: dict[int, StatusCode] = {
    400: StatusCode.INVALID_ARGUMENT,
    401: StatusCode.UNAUTHENTICATED,
    403: StatusCode.PERMISSION_DENIED,
    404: StatusCode.NOT_FOUND,
    408: StatusCode.DEADLINE_EXCEEDED,
    409: StatusCode.ABORTED,
    412: StatusCode.FAILED_PRECONDITION,
    413: StatusCode.INVALID_ARGUMENT,
    422: StatusCode.INVALID_ARGUMENT,
    429: StatusCode.RESOURCE_EXHAUSTED,
    499: StatusCode.CANCELLED,
    500: StatusCode.INTERNAL,
    501: StatusCode.UNIMPLEMENTED,
    502: StatusCode.UNAVAILABLE,
    503: StatusCode.UNAVAILABLE,
    504: StatusCode.DEADLINE_EXCEEDED,
}


def status_to_code(status_code: int | None) -> StatusCode:
    """Map an HTTP status onto the canonical vocabulary (UNKNOWN when unmapped)."""
    if status_code is None:
        return StatusCode.UNKNOWN
    return HTTP_STATUS_TO_CODE.get(status_code, StatusCode.UNKNOWN)
