"""Unit tests for retry backoff."""

import pytest

from fusion_automation.core.automation.retry import RetryPolicy, calculate_backoff, should_retry


@pytest.mark.parametrize(
    "attempt,expected",
    [(0, 0.5), (1, 1.0), (2, 2.0), (3, 4.0), (4, 5.0), (10, 5.0)],
)
def test_calculate_backoff(attempt, expected):
    assert calculate_backoff(attempt) == expected


def test_should_retry():
    assert should_retry(0, 3)
    assert should_retry(2, 3)
    assert not should_retry(3, 3)
    assert not should_retry(0, 0)


def test_retry_policy_from_settings():
    class Settings:
        AUTOMATION_MAX_RETRIES = 5
        AUTOMATION_RETRY_MIN_DELAY = 1.0
        AUTOMATION_RETRY_FACTOR = 3.0
        AUTOMATION_RETRY_MAX_DELAY = 10.0

    policy = RetryPolicy.from_settings(Settings)

    assert policy.max_retries == 5
    assert policy.delay_for(0) == 1.0
    assert policy.delay_for(1) == 3.0
    assert policy.delay_for(3) == 10.0
    assert policy.allows_retry(4)
    assert not policy.allows_retry(5)
