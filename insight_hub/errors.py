"""Error taxonomy shared by every pipeline component."""

from __future__ import annotations

import httpx


class InsightHubError(Exception):
    """Base class for all domain errors."""


class ValidationError(InsightHubError):
    """Malformed input, rejected before any side effect."""


class PayloadTooLargeError(ValidationError):
    """Inbound payload exceeded the configured size bound."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Payload of {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class NotFoundError(InsightHubError):
    """Referenced channel, item or job does not exist."""


class ConflictError(InsightHubError):
    """Uniqueness violation or lost state transition; callers treat it as a no-op."""


class UpstreamError(InsightHubError):
    """Catalog, hub or enrichment API failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(UpstreamError):
    """Upstream quota or rate limit exhausted."""


class UpstreamAuthError(UpstreamError):
    """Upstream rejected our credentials."""


class InternalError(InsightHubError):
    """Unexpected failure."""


def raise_for_upstream(response: httpx.Response, service: str) -> None:
    """Translate an unsuccessful HTTP response into an UpstreamError subtype."""

    if response.is_success:
        return
    status = response.status_code
    detail = _error_detail(response)
    message = f"{service} returned {status}" + (f": {detail}" if detail else "")
    if status == 429 or (status == 403 and "quota" in detail.lower()):
        raise RateLimitError(message, status_code=status)
    if status in (401, 403):
        raise UpstreamAuthError(message, status_code=status)
    raise UpstreamError(message, status_code=status)


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or "")
        if error:
            return str(error)
    return ""


__all__ = [
    "ConflictError",
    "InsightHubError",
    "InternalError",
    "NotFoundError",
    "PayloadTooLargeError",
    "RateLimitError",
    "UpstreamAuthError",
    "UpstreamError",
    "ValidationError",
    "raise_for_upstream",
]
