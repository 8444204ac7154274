"""Custom exceptions for the chat service.

Every error carries a machine-readable ``kind`` and serializes to a JSON
payload. ``str()`` of an error embeds the same payload, so a transport that
only forwards error text still lets a client recover the structured data with
``error_from_payload(json.loads(...))``.
"""

import json
from typing import Any, Dict, Optional


class ChatServiceError(Exception):
    """Base class for service exceptions with HTTP status code.

    Subclasses define ``status_code`` and ``kind`` and extend ``payload()``
    with their own fields.
    """
    status_code: int = 500
    kind: str = "ServiceError"

    def __init__(self, message: str = "Chat service error"):
        self.message = message
        super().__init__(message)

    def payload(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}

    def to_response(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return self.payload()

    def __str__(self) -> str:
        return json.dumps(self.payload(), ensure_ascii=False)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ChatServiceError":
        return cls(data.get("message") or cls.__name__)


class RateLimitedError(ChatServiceError):
    """Raised when a caller has exhausted the bucket for an operation.

    Recoverable: the caller may retry after ``retry_after`` seconds.
    Maps to HTTP 429 Too Many Requests.

    ``key`` is server-side context for logging only. It is left out of the
    payload, so an error rebuilt with ``from_payload`` on a client always has
    ``key=None``; clients know which identity they sent as.
    """
    status_code = 429
    kind = "RateLimited"

    def __init__(
        self,
        operation: str,
        retry_after: float,
        key: Optional[str] = None,
    ):
        self.operation = operation
        self.key = key
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for {operation}. "
            f"Retry in {retry_after:.1f} seconds."
        )

    def payload(self) -> Dict[str, Any]:
        data = super().payload()
        data["operation"] = self.operation
        data["retryAfter"] = self.retry_after
        return data

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "RateLimitedError":
        return cls(
            operation=data.get("operation", ""),
            retry_after=float(data["retryAfter"]),
        )


class UnknownLimitError(ChatServiceError):
    """Raised when an operation has no configured rate limit.

    A configuration error, never an admission failure.
    Maps to HTTP 500 Internal Server Error.
    """
    status_code = 500
    kind = "UnknownLimit"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"No rate limit configured for operation {operation!r}")

    def payload(self) -> Dict[str, Any]:
        data = super().payload()
        data["operation"] = self.operation
        return data

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "UnknownLimitError":
        return cls(data.get("operation", ""))


class StoreUnavailableError(ChatServiceError):
    """Raised when the bucket store backend cannot be reached.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    kind = "StoreUnavailable"

    def __init__(self, detail: str = "Rate limit store unavailable"):
        self.detail = detail
        super().__init__(detail)


_KINDS = {
    cls.kind: cls
    for cls in (ChatServiceError, RateLimitedError, UnknownLimitError, StoreUnavailableError)
}


def error_from_payload(data: Any) -> Optional[ChatServiceError]:
    """Rebuild a typed error from its JSON payload.

    Returns None when ``data`` is not a payload produced by this service.
    """
    if not isinstance(data, dict):
        return None
    cls = _KINDS.get(data.get("kind"))
    if cls is None:
        return None
    try:
        return cls.from_payload(data)
    except (KeyError, TypeError, ValueError):
        return None
