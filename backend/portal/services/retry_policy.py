"""
Retry policy for community platform calls.

Holds the attempt budget, the delay sequence and the classifier that splits
errors into transient, not-a-member and permanent.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import httpx

from portal.integrations.discord.community_client import CommunityPlatformError


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    NOT_MEMBER = "not_member"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: up to 3 attempts, waiting 1s, 2s, 4s between them."""
    max_attempts: int = 3
    delays_seconds: Tuple[float, ...] = (1.0, 2.0, 4.0)
    retryable_status_codes: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not self.delays_seconds:
            raise ValueError("delays_seconds must not be empty")

    def delay_after(self, attempt: int) -> float:
        """
        Delay to wait after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed
        """
        index = min(max(attempt, 1), len(self.delays_seconds)) - 1
        return self.delays_seconds[index]

    def classify(self, error: BaseException) -> ErrorCategory:
        if isinstance(error, CommunityPlatformError):
            if error.not_member:
                return ErrorCategory.NOT_MEMBER
            if error.retryable:
                return ErrorCategory.TRANSIENT
            if error.status_code is not None and (
                error.status_code in self.retryable_status_codes or error.status_code >= 500
            ):
                return ErrorCategory.TRANSIENT
            return ErrorCategory.PERMANENT
        if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.PERMANENT

    def is_retryable(self, error: BaseException) -> bool:
        return self.classify(error) == ErrorCategory.TRANSIENT


DEFAULT_RETRY_POLICY = RetryPolicy()
