from __future__ import annotations

from typing import Optional


class TeraSyncError(RuntimeError):
    """Base error for the TERA file sync engine."""

    # Whether run_with_retry should try the operation again after this error
    retryable = False


class ConfigurationError(TeraSyncError):
    """Invalid settings, unsupported store shape or unusable host instance."""


class CodecError(TeraSyncError):
    """Base error for wire-format conversion failures."""


class EncodingError(CodecError):
    """State could not be converted into a JSON-safe document."""


class DecodingError(CodecError):
    """A wire document could not be converted back into native values."""


class TeraApiError(TeraSyncError):
    """The TERA IO API returned an error response."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(TeraApiError):
    """Network failure, rate limiting or a 5xx response."""

    retryable = True


class NotFoundError(TeraApiError):
    """The requested file does not exist (HTTP 404)."""


class AuthenticationError(TeraApiError):
    """No authorization token is available for the request."""


__all__ = [
    "TeraSyncError",
    "ConfigurationError",
    "CodecError",
    "EncodingError",
    "DecodingError",
    "TeraApiError",
    "TransientRemoteError",
    "NotFoundError",
    "AuthenticationError",
]
