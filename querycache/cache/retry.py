"""
Retry classification and backoff.

Authorization and validation failures are deterministic for the same
request, so they are surfaced on the first attempt. Everything else is
retried up to the attempt ceiling.
"""
import re
import logging
from dataclasses import dataclass
from typing import Optional

from config.settings import settings as default_settings

from .errors import FailureKind

logger = logging.getLogger("cache.retry")

AUTH_STATUS_CODES = frozenset({401, 403})
VALIDATION_STATUS_CODES = frozenset({400, 422})

BACKOFF_IMMEDIATE = "immediate"
BACKOFF_FIXED = "fixed"
BACKOFF_EXPONENTIAL = "exponential"
BACKOFF_MODES = (BACKOFF_IMMEDIATE, BACKOFF_FIXED, BACKOFF_EXPONENTIAL)

# Transport errors are usually formatted as "<status>: <body>"
_STATUS_PREFIX = re.compile(r"^\s*(\d{3})\b")


def _status_code_of(failure: BaseException) -> Optional[int]:
    """Best-effort extraction of an HTTP-like status code."""
    status = getattr(failure, "status_code", None)
    if isinstance(status, int):
        return status

    # requests.HTTPError and friends carry the response
    response = getattr(failure, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status

    match = _STATUS_PREFIX.match(str(failure))
    if match:
        return int(match.group(1))
    return None


def classify_failure(failure: BaseException) -> FailureKind:
    """
    Categorize a fetch failure.

    Checks, in order: a typed FetchError, explicit is_auth/is_validation
    flags, then a status code from the exception, its response, or the
    leading digits of its message.
    """
    kind = getattr(failure, "kind", None)
    if isinstance(kind, FailureKind) and kind is not FailureKind.TRANSIENT:
        return kind

    if getattr(failure, "is_auth", False):
        return FailureKind.AUTH
    if getattr(failure, "is_validation", False):
        return FailureKind.VALIDATION

    status = _status_code_of(failure)
    if status in AUTH_STATUS_CODES:
        return FailureKind.AUTH
    if status in VALIDATION_STATUS_CODES:
        return FailureKind.VALIDATION
    return FailureKind.TRANSIENT


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling plus the delay between attempts."""
    max_attempts: int = 3
    backoff: str = BACKOFF_EXPONENTIAL
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.backoff not in BACKOFF_MODES:
            raise ValueError(
                f"Unknown backoff '{self.backoff}', expected one of {BACKOFF_MODES}"
            )

    @classmethod
    def from_settings(cls, settings=None) -> "RetryPolicy":
        settings = settings or default_settings
        return cls(
            max_attempts=settings.retry_max_attempts,
            backoff=settings.retry_backoff,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )

    def should_retry(self, attempt_number: int, failure: BaseException) -> bool:
        """
        Decide whether another attempt is warranted.

        Args:
            attempt_number: Attempts made so far, including the one that failed
            failure: The exception raised by the fetch function

        Returns:
            True if the fetch should be attempted again
        """
        kind = classify_failure(failure)
        if kind is not FailureKind.TRANSIENT:
            logger.debug(f"Not retrying {kind.value} failure: {failure}")
            return False
        return attempt_number < self.max_attempts

    def delay_for(self, attempt_number: int) -> float:
        """Seconds to wait after a failed attempt before the next one."""
        if self.backoff == BACKOFF_IMMEDIATE:
            return 0.0
        if self.backoff == BACKOFF_FIXED:
            return self.base_delay
        return min(self.base_delay * (2 ** (attempt_number - 1)), self.max_delay)


DEFAULT_RETRY_POLICY = RetryPolicy()


def should_retry(attempt_number: int, failure: BaseException) -> bool:
    """Retry decision under the default policy (3 attempts total)."""
    return DEFAULT_RETRY_POLICY.should_retry(attempt_number, failure)
