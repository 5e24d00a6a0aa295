"""
Failure taxonomy for fetches and cache misuse.
"""
from enum import Enum
from typing import Optional


class FailureKind(Enum):
    """How a fetch failure is treated by the retry policy."""
    AUTH = "auth"               # 401/403 - never retried
    VALIDATION = "validation"   # 400/422 - never retried
    TRANSIENT = "transient"     # network/server - bounded retries


class FetchError(Exception):
    """Base class for failures raised by fetch functions."""

    kind: FailureKind = FailureKind.TRANSIENT

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthFailure(FetchError):
    """Upstream rejected the credentials or the permission."""
    kind = FailureKind.AUTH


class ValidationFailure(FetchError):
    """Upstream rejected the request as malformed."""
    kind = FailureKind.VALIDATION


class TransientFailure(FetchError):
    """Network or server failure worth retrying."""
    kind = FailureKind.TRANSIENT


class CacheError(Exception):
    """Base class for misuse of the cache itself."""


class UnknownKeyError(CacheError, KeyError):
    """Raised when an operation needs an entry that does not exist."""
