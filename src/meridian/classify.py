"""Map vendor SDK and transport failures onto the canonical error taxonomy.

Classification reads structured attributes only (status codes, headers, vendor
error codes) and never matches on message text.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from meridian._http import RETRYABLE_STATUS_CODES, status_to_code
from meridian.errors import (
    FatalProviderError,
    ProviderError,
    RateLimitError,
    StatusCode,
    TransientProviderError,
    _walk_exception_chain,
)

# Order matters: "ms" must win over "m" and "s" at the same position.
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)(?![A-Za-z])")
_UNIT_MS: dict[str, float] = {"h": 3_600_000.0, "m": 60_000.0, "s": 1_000.0, "ms": 1.0}
_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")

_THROTTLING_CODES = frozenset(
    {
        "throttlingexception",
        "toomanyrequestsexception",
        "rate_limit_exceeded",
        "rate_limit_error",
        "resource_exhausted",
    }
)
_TRANSIENT_CODES = frozenset(
    {
        "serviceunavailableexception",
        "internalserverexception",
        "modelnotreadyexception",
        "overloaded_error",
        "api_error",
    }
)


def parse_duration_ms(value: str | None) -> float:
    """Sum every ``<number><unit>`` component of a vendor duration string.

    ``"1h2m3s"`` is 3,723,000 ms, ``"500ms"`` is 500 ms. Unrecognized tokens
    contribute nothing.
    """
    if not value:
        return 0.0
    return sum(
        float(amount) * _UNIT_MS[unit] for amount, unit in _DURATION_RE.findall(value)
    )


def _header(headers: Any, name: str) -> str | None:
    if headers is None:
        return None
    try:
        raw = headers.get(name)
    except Exception:
        return None
    return raw if isinstance(raw, str) and raw.strip() else None


def _boto_response(exc: BaseException) -> dict[str, Any] | None:
    response = getattr(exc, "response", None)
    return response if isinstance(response, dict) else None


def _error_status(value: Any) -> bool:
    # A 2xx status rides on errors raised mid-stream (the HTTP exchange itself
    # succeeded) and says nothing about the failure.
    return isinstance(value, int) and 400 <= value <= 599


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP error status (4xx/5xx)."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if _error_status(value):
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if _error_status(value):
            return value
        boto = _boto_response(e)
        if boto is not None:
            value = boto.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if _error_status(value):
                return value
    return None


def _body_error(exc: BaseException) -> dict[str, Any]:
    # Anthropic-style body: {"type": "error", "error": {"type": ..., "message": ...}}
    body = getattr(exc, "body", None)
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return {}
    return {
        key: error[key]
        for key in ("code", "type", "param")
        if isinstance(error.get(key), str)
    }


def extract_vendor_metadata(exc: BaseException) -> dict[str, Any]:
    """Collect opaque vendor fields (code, type, status, param) for diagnostics."""
    for e in _walk_exception_chain(exc):
        boto = _boto_response(e)
        if boto is not None and isinstance(boto.get("Error"), dict):
            error = boto["Error"]
            return {"code": error.get("Code"), "type": error.get("Type")}
        found = {
            attr: getattr(e, attr)
            for attr in ("code", "type", "status", "param")
            if isinstance(getattr(e, attr, None), str)
        }
        if not found:
            found = _body_error(e)
        if found:
            return found
    return {}


def _vendor_code(metadata: dict[str, Any]) -> str:
    for key in ("code", "type", "status"):
        value = metadata.get(key)
        if isinstance(value, str) and value:
            return value.lower()
    return ""


def _extract_retry_info_ms(exc: BaseException) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details."""
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1)) * 1000.0
    return None


def extract_retry_delay_ms(exc: BaseException) -> float | None:
    """Return the longest reset delay any vendor signal asks for, in ms.

    Considers per-resource reset headers (requests vs tokens), ``Retry-After``
    and Google ``RetryInfo``; None when no signal is present.
    """
    delays: list[float] = []
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            delays.append(float(value) * 1000.0)

        headers: Any = getattr(getattr(e, "response", None), "headers", None)
        if headers is None:
            headers = getattr(e, "headers", None)
        for name in ("x-ratelimit-reset-requests", "x-ratelimit-reset-tokens"):
            raw = _header(headers, name)
            if raw is not None:
                delays.append(parse_duration_ms(raw))
        retry_after = _header(headers, "retry-after")
        if retry_after is not None:
            try:
                seconds = float(retry_after)
            except ValueError:
                seconds = -1.0
            if seconds >= 0:
                delays.append(seconds * 1000.0)

        retry_info = _extract_retry_info_ms(e)
        if retry_info is not None:
            delays.append(retry_info)
    return max(delays) if delays else None


def _is_transport_error(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
            return True
    return False


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    if status_code in {401, 403}:
        return f"Check the {provider} credentials and permissions for this connection."
    return None


def classify_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str = "completion",
    message: str | None = None,
) -> ProviderError:
    """Classify *exc* into exactly one canonical provider error.

    Already classified errors are enriched in place (missing provider/phase)
    and returned unchanged. Cancellation is re-raised, never classified.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, ProviderError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code = extract_status_code(exc)
    metadata = extract_vendor_metadata(exc)
    vendor_code = _vendor_code(metadata)
    cause = str(exc)
    status_note = f" (status={status_code})" if status_code is not None else ""
    text = f"{message or f'{provider} {phase} failed'}{status_note}"
    text = f"{text}: {cause}" if cause else text

    if status_code == 429 or vendor_code in _THROTTLING_CODES:
        return RateLimitError(
            text,
            retry_delay_ms=extract_retry_delay_ms(exc) or 0.0,
            status_code=status_code or 429,
            metadata=metadata,
            provider=provider,
            phase=phase,
        )

    if status_code in RETRYABLE_STATUS_CODES or vendor_code in _TRANSIENT_CODES:
        return TransientProviderError(
            text,
            retry_delay_ms=extract_retry_delay_ms(exc),
            status_code=status_code,
            code=status_to_code(status_code) if status_code else StatusCode.UNAVAILABLE,
            failure_reason="External API error",
            metadata=metadata,
            provider=provider,
            phase=phase,
        )

    if status_code is not None:
        return FatalProviderError(
            text,
            hint=_auth_hint(provider, status_code),
            status_code=status_code,
            code=status_to_code(status_code),
            metadata=metadata,
            provider=provider,
            phase=phase,
        )

    if _is_transport_error(exc):
        return TransientProviderError(
            text,
            code=StatusCode.UNAVAILABLE,
            failure_reason="Transport error",
            metadata=metadata,
            provider=provider,
            phase=phase,
        )

    return FatalProviderError(
        text,
        code=StatusCode.UNKNOWN,
        failure_reason="unknown",
        metadata=metadata,
        provider=provider,
        phase=phase,
    )
