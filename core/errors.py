# /core/errors.py

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of a failed (or empty) transform result."""
    UNKNOWN_TRANSFORM = "unknown_transform"
    TYPE_MISMATCH = "type_mismatch"
    RATE_LIMITED = "rate_limited"
    PROVIDER_NOT_CONFIGURED = "provider_not_configured"
    UPSTREAM_FAILURE = "upstream_failure"
    PARTIAL_SUCCESS = "partial_success"


class InvalidTransformError(ValueError):
    """Raised at registration time when a transform definition is malformed."""


class UpstreamError(Exception):
    """
    A call to an external provider failed: timeout, transport error, non-2xx
    status or an unparseable payload. Raised by the HTTP helpers and caught by
    the transforms, which turn it into a failed TransformResult.
    """

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code
