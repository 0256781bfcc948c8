"""
Error taxonomy for the commit and metered-call paths.

Every failure carries a stable machine-readable kind and the
HTTP-equivalent status the request boundary reports it with.
"""

from typing import Any, Dict, Optional


class CoreError(Exception):
    """Base class for all failures surfaced to callers."""
    kind = "internal"
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> Dict[str, Any]:
        """Extra fields merged into the error body."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.kind, "message": self.message}
        body.update(self.details())
        return body


class Unauthenticated(CoreError):
    kind = "unauthenticated"
    status = 401


class Forbidden(CoreError):
    kind = "forbidden"
    status = 403


class InvalidRequest(CoreError):
    kind = "invalid_request"
    status = 400


class UnknownEventType(InvalidRequest):
    """Raised when an event type is not part of the vocabulary."""
    kind = "unknown_event_type"

    def __init__(self, event_type: Any):
        super().__init__(f"Unknown event type: {event_type}")
        self.event_type = event_type


class InvalidPayload(InvalidRequest):
    """Raised when an event payload fails shape, type or length checks."""
    kind = "invalid_payload"


class Conflict(CoreError):
    """Sequence mismatch between the caller's base and the current head."""
    kind = "conflict"
    status = 409

    def __init__(
        self,
        expected: Optional[int],
        current: int,
        snapshot: Optional[Dict[str, Any]] = None,
        message: str = "Sequence number mismatch",
    ):
        super().__init__(message)
        self.expected = expected
        self.current = current
        self.snapshot = snapshot

    def details(self) -> Dict[str, Any]:
        details = {"expected": self.expected, "current": self.current}
        if self.snapshot is not None:
            details["snapshot"] = self.snapshot
        return details


class RateLimited(CoreError):
    kind = "rate_limited"
    status = 429

    def __init__(self, retry_after: int, message: str = "Rate limit exceeded"):
        super().__init__(message)
        self.retry_after = retry_after

    def details(self) -> Dict[str, Any]:
        return {"retry_after": self.retry_after}


class BudgetExceeded(CoreError):
    kind = "budget_exceeded"
    status = 402

    def __init__(self, scope: str, message: str):
        super().__init__(message)
        self.scope = scope

    def details(self) -> Dict[str, Any]:
        return {"scope": self.scope}


class UpstreamError(CoreError):
    kind = "upstream_error"
    status = 502


class Internal(CoreError):
    kind = "internal"
    status = 500
