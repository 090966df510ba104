"""Tests for retry_with_backoff."""

import random
from unittest.mock import Mock

import pytest

from vaultrag.embedding.retry import RetryPolicy, retry_with_backoff
from vaultrag.errors import ProviderAPIKeyNotSetError, ProviderRateLimitError


class TestRetryPolicy:
    """Test delay computation."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert (policy.attempts, policy.starting_delay, policy.multiplier, policy.max_delay) == (
            5,
            1.0,
            1.5,
            60.0,
        )

    def test_delays_stay_below_exponential_ceiling(self):
        policy = RetryPolicy()
        rng = random.Random(1)
        for attempt in range(1, 6):
            ceiling = 1.0 * 1.5 ** (attempt - 1)
            for _ in range(50):
                assert 0 <= policy.delay_for(attempt, rng) <= ceiling

    def test_delay_is_capped(self):
        policy = RetryPolicy(max_delay=2.0)
        rng = random.Random(3)
        assert all(policy.delay_for(30, rng) <= 2.0 for _ in range(50))


class TestRetryWithBackoff:
    """Test the retry loop."""

    def test_success_on_first_try(self):
        func = Mock(return_value=42)
        sleep = Mock()

        assert retry_with_backoff(func, sleep=sleep) == 42
        sleep.assert_not_called()

    def test_retries_until_success(self):
        func = Mock(side_effect=[ProviderRateLimitError("wait"), ProviderRateLimitError("wait"), "ok"])
        sleep = Mock()
        on_retry = Mock()

        assert retry_with_backoff(func, sleep=sleep, on_retry=on_retry) == "ok"
        assert func.call_count == 3
        assert sleep.call_count == 2
        assert [c.args[1] for c in on_retry.call_args_list] == [1, 2]

    def test_gives_up_after_attempts(self):
        func = Mock(side_effect=ProviderRateLimitError("wait"))
        sleep = Mock()

        with pytest.raises(ProviderRateLimitError):
            retry_with_backoff(func, sleep=sleep)

        assert func.call_count == 5
        assert sleep.call_count == 4

    def test_non_retryable_raises_immediately(self):
        func = Mock(side_effect=ProviderAPIKeyNotSetError("no key"))
        sleep = Mock()

        with pytest.raises(ProviderAPIKeyNotSetError):
            retry_with_backoff(func, sleep=sleep)

        assert func.call_count == 1
        sleep.assert_not_called()

    def test_custom_predicate(self):
        func = Mock(side_effect=[KeyError("flaky"), "done"])

        result = retry_with_backoff(
            func, retryable=lambda exc: isinstance(exc, KeyError), sleep=Mock()
        )

        assert result == "done"
