"""Retry policy with exponential backoff for action execution."""

from dataclasses import dataclass


def calculate_backoff(
    attempt: int, min_delay: float = 0.5, factor: float = 2.0, max_delay: float = 5.0
) -> float:
    """Calculate exponential backoff delay in seconds.

    Args:
        attempt: Current retry number (0-indexed)
        min_delay: Delay before the first retry
        factor: Growth factor per retry
        max_delay: Upper bound on the delay

    Returns:
        Delay in seconds (0.5s, 1s, 2s, 4s, 5s with the defaults)
    """
    return min(min_delay * factor**attempt, max_delay)


def should_retry(retry_count: int, max_retries: int = 3) -> bool:
    """Check if another retry is allowed after ``retry_count`` retries.

    Args:
        retry_count: Retries already performed
        max_retries: Maximum number of retries

    Returns:
        True if should retry, False otherwise
    """
    return retry_count < max_retries


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy for transient action failures."""

    max_retries: int = 3
    min_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 5.0

    def delay_for(self, retry_count: int) -> float:
        return calculate_backoff(retry_count, self.min_delay, self.factor, self.max_delay)

    def allows_retry(self, retry_count: int) -> bool:
        return should_retry(retry_count, self.max_retries)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        """Build the policy from application settings."""
        return cls(
            max_retries=settings.AUTOMATION_MAX_RETRIES,
            min_delay=settings.AUTOMATION_RETRY_MIN_DELAY,
            factor=settings.AUTOMATION_RETRY_FACTOR,
            max_delay=settings.AUTOMATION_RETRY_MAX_DELAY,
        )
