"""Tests for the retry schedule."""

import pytest

from hookrelay.exceptions import HTTPClientError, HTTPRateLimited, HTTPServerError, NetworkError
from hookrelay.models import DeliveryOutcome
from hookrelay.webhooks import BackoffPolicy


class TestNextDelay:
    """Tests for BackoffPolicy.next_delay."""

    def test_default_schedule(self):
        policy = BackoffPolicy()
        assert [policy.next_delay(n) for n in range(1, 5)] == [1.0, 5.0, 30.0, 300.0]

    def test_exhausted_at_max_attempts(self):
        policy = BackoffPolicy()
        assert policy.next_delay(5) is None
        assert policy.next_delay(6) is None

    def test_last_delay_repeats(self):
        policy = BackoffPolicy(schedule=(1, 2), max_attempts=5)
        assert [policy.next_delay(n) for n in range(1, 5)] == [1.0, 2.0, 2.0, 2.0]

    def test_more_attempts_reach_schedule_tail(self):
        policy = BackoffPolicy(max_attempts=6)
        assert policy.next_delay(5) == 1800.0

    def test_single_attempt_never_retries(self):
        assert BackoffPolicy(max_attempts=1).next_delay(1) is None

    def test_rejects_empty_schedule(self):
        with pytest.raises(ValueError):
            BackoffPolicy(schedule=())

    def test_total_delay(self):
        assert BackoffPolicy().total_delay() == 336.0


class TestDecide:
    """Tests for BackoffPolicy.decide."""

    def test_server_error_retries(self):
        decision = BackoffPolicy().decide(DeliveryOutcome.failure(HTTPServerError("x", 503)), 1)
        assert decision.delay == 1.0
        assert not decision.fatal
        assert not decision.exhausted

    def test_rate_limited_treated_like_server_error(self):
        policy = BackoffPolicy()
        rate_limited = policy.decide(DeliveryOutcome.failure(HTTPRateLimited("x", 429)), 3)
        server_error = policy.decide(DeliveryOutcome.failure(HTTPServerError("x", 500)), 3)
        assert rate_limited == server_error

    def test_network_error_exhausts_at_limit(self):
        decision = BackoffPolicy().decide(DeliveryOutcome.failure(NetworkError("timeout")), 5)
        assert decision.exhausted
        assert not decision.fatal

    def test_fatal_short_circuits(self):
        decision = BackoffPolicy().decide(DeliveryOutcome.failure(HTTPClientError("x", 400)), 1)
        assert decision.exhausted
        assert decision.fatal

    def test_success_is_not_a_retry_question(self):
        with pytest.raises(ValueError):
            BackoffPolicy().decide(DeliveryOutcome.success(200), 1)
