"""Tests for the retry utility."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from cluster_net.errors import InvalidParameter, TransientProviderError
from cluster_net.provision.retry import RetryPolicy, call_with_retry, is_transient


class TestRetryPolicy:
    """Tests for backoff computation."""

    def test_exponential_delays(self) -> None:
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0)

        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestCallWithRetry:
    """Tests for call_with_retry."""

    def test_transient_error_retried(self) -> None:
        operation = Mock(side_effect=[TransientProviderError("throttled"), TransientProviderError("throttled"), "ok"])
        sleep = Mock()

        result = call_with_retry(operation, RetryPolicy(max_attempts=3, base_delay=1.0), sleep=sleep)

        assert result == "ok"
        assert operation.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_gives_up_after_max_attempts(self) -> None:
        operation = Mock(side_effect=TransientProviderError("throttled"))

        with pytest.raises(TransientProviderError):
            call_with_retry(operation, RetryPolicy(max_attempts=2), sleep=Mock())

        assert operation.call_count == 2

    def test_non_retryable_raises_immediately(self) -> None:
        operation = Mock(side_effect=InvalidParameter("bad cidr"))
        sleep = Mock()

        with pytest.raises(InvalidParameter):
            call_with_retry(operation, RetryPolicy(), sleep=sleep)

        assert operation.call_count == 1
        sleep.assert_not_called()

    def test_custom_classifier(self) -> None:
        operation = Mock(side_effect=[KeyError("x"), "ok"])

        result = call_with_retry(operation, RetryPolicy(), is_retryable=lambda e: isinstance(e, KeyError), sleep=Mock())

        assert result == "ok"

    def test_is_transient(self) -> None:
        assert is_transient(TransientProviderError("x"))
        assert not is_transient(InvalidParameter("x"))
