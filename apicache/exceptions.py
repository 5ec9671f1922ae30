"""Custom exceptions for apicache."""

from typing import Any, Optional


class ApiCacheError(Exception):
    """Base exception for all apicache errors."""

    def __init__(
        self,
        message: str,
        *,
        type: Optional[str] = None,
        code: Optional[str] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.type = type or "api_cache_error"
        self.code = code
        self.body = body or {}

    def __str__(self) -> str:
        msg = self.message
        if self.type:
            msg = f"{self.type}: {msg}"
        if self.code:
            msg = f"[{self.code}] {msg}"
        return msg


class InvalidIdentifierError(ApiCacheError):
    """Client name is not a valid identifier or sanitizes to nothing."""

    def __init__(self, identifier: str, message: Optional[str] = None, **kwargs: Any) -> None:
        message = message or f"Invalid identifier: '{identifier}'"
        super().__init__(message, type="invalid_identifier", **kwargs)
        self.identifier = identifier


class UnsupportedTypeError(ApiCacheError):
    """A request parameter has a type that cannot be hashed deterministically."""

    def __init__(self, value_type: str, path: str = "", **kwargs: Any) -> None:
        where = f" at '{path}'" if path else ""
        super().__init__(
            f"Unsupported parameter type '{value_type}'{where}",
            type="unsupported_type",
            **kwargs,
        )
        self.value_type = value_type
        self.path = path


class DepthExceededError(ApiCacheError):
    """Request parameters are nested deeper than allowed."""

    def __init__(self, max_depth: int, **kwargs: Any) -> None:
        super().__init__(
            f"Maximum parameter nesting depth of {max_depth} exceeded",
            type="depth_exceeded",
            **kwargs,
        )
        self.max_depth = max_depth


class EncodingError(ApiCacheError):
    """JSON encoding failed."""

    def __init__(self, message: str = "Failed to encode JSON", **kwargs: Any) -> None:
        super().__init__(message, type="encoding_error", **kwargs)


class DecodingError(ApiCacheError):
    """JSON decoding failed or produced an unexpected shape."""

    def __init__(self, message: str = "Failed to decode JSON", **kwargs: Any) -> None:
        super().__init__(message, type="decoding_error", **kwargs)


class CompressionError(ApiCacheError):
    """Compressing or decompressing a payload failed."""

    def __init__(self, message: str = "Compression failed", **kwargs: Any) -> None:
        super().__init__(message, type="compression_error", **kwargs)


class MissingRequiredFieldError(ApiCacheError):
    """A field required for cache storage is missing or empty."""

    def __init__(self, field: str, **kwargs: Any) -> None:
        super().__init__(
            f"Missing required field, {field} is required",
            type="missing_required_field",
            code="400",
            **kwargs,
        )
        self.field = field


class RateLimitExceededError(ApiCacheError):
    """Rate limit exceeded for a client.

    Recoverable: callers can back off for ``available_in_seconds``.
    """

    def __init__(
        self,
        client: str,
        available_in_seconds: int,
        message: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        message = message or (
            f"Rate limit exceeded for client '{client}'. "
            f"Available in {available_in_seconds} seconds."
        )
        super().__init__(message, type="rate_limit_error", code="429", **kwargs)
        self.client = client
        self.available_in_seconds = available_in_seconds

    @property
    def retry_after(self) -> int:
        """Alias used by HTTP-facing callers."""
        return self.available_in_seconds
