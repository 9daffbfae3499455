"""
Error taxonomy for the ingestion and dispatch pipeline.

Each error carries the HTTP status it maps to and a structured body, so the
API boundary can render it without knowing which component raised it.
"""

from typing import Any, Dict, Optional


class SignalRelayError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, **detail: Any) -> None:
        self.message = message
        self.detail = detail
        super().__init__(message or self.error)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.message:
            body["message"] = self.message
        body.update(self.detail)
        return body


class AuthenticationError(SignalRelayError):
    """Missing or invalid credential."""

    status_code = 401
    error = "Unauthorized"

    def __init__(self, error: str = "Unauthorized", message: Optional[str] = None, **detail: Any) -> None:
        self.error = error
        super().__init__(message, **detail)


class AuthorizationError(SignalRelayError):
    """Credential is known but not allowed to submit (disabled key)."""

    status_code = 403
    error = "Forbidden"

    def __init__(self, error: str = "Forbidden", message: Optional[str] = None, **detail: Any) -> None:
        self.error = error
        super().__init__(message, **detail)


class StrategyDeletedError(AuthorizationError):
    """Target strategy has been soft-deleted."""

    status_code = 410

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__("Strategy has been deleted", message)


class ValidationError(SignalRelayError):
    """Request or configuration could not be validated."""

    status_code = 400
    error = "Bad request"

    def __init__(self, error: str = "Bad request", message: Optional[str] = None, **detail: Any) -> None:
        self.error = error
        super().__init__(message, **detail)


class ChannelConfigError(ValidationError):
    """A notification channel's stored configuration is unusable."""

    def __init__(self, message: str) -> None:
        super().__init__("Invalid channel configuration", message)


class NotFoundError(SignalRelayError):
    status_code = 404
    error = "Not found"

    def __init__(self, error: str = "Not found", message: Optional[str] = None, **detail: Any) -> None:
        self.error = error
        super().__init__(message, **detail)


class RateLimitError(SignalRelayError):
    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, limit: int, retry_after: int = 60) -> None:
        self.limit = limit
        self.retry_after = retry_after
        super().__init__(
            f"Maximum {limit} requests per minute",
            retry_after=retry_after,
        )


class DependencyError(SignalRelayError):
    """Downstream delivery or enrichment failure. Never returned to ingestion callers."""

    status_code = 502
    error = "Upstream dependency failed"
