"""
Tests for the initial-connection backoff.
"""

import itertools
from unittest.mock import Mock

import fakeredis
import pytest
from redis.exceptions import ConnectionError, ResponseError

from prometheus_sd.backoff import ExponentialBackoff, connect, retry
from prometheus_sd.config import SDConfig


def _no_jitter():
    return 0.5


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


class TestExponentialBackoff:
    def test_intervals_grow_by_multiplier(self):
        intervals = list(itertools.islice(ExponentialBackoff().intervals(), 4))
        assert intervals == [0.5, 0.75, 1.125, 1.6875]

    def test_intervals_capped(self):
        policy = ExponentialBackoff(initial_interval=600, max_interval=900)
        intervals = list(itertools.islice(policy.intervals(), 3))
        assert intervals == [600, 900, 900]

    def test_jitter_bounds(self):
        policy = ExponentialBackoff()
        assert policy.jitter(10, lambda: 0.0) == 5
        assert policy.jitter(10, lambda: 0.5) == 10
        assert policy.jitter(10, lambda: 1.0) == 15

    def test_jitter_never_exceeds_cap(self):
        policy = ExponentialBackoff()
        assert policy.jitter(900, lambda: 1.0) == 900


class TestRetry:
    def test_returns_first_success(self):
        clock = FakeClock()
        op = Mock(side_effect=[ConnectionError("down"), ConnectionError("down"), "ok"])
        result = retry(op, ExponentialBackoff(), (ConnectionError,),
                       sleep=clock.sleep, clock=clock, rng=_no_jitter)
        assert result == "ok"
        assert op.call_count == 3
        assert clock.now == pytest.approx(0.5 + 0.75)

    def test_notify_called_before_each_sleep(self):
        clock = FakeClock()
        notified = []
        op = Mock(side_effect=[ConnectionError("down"), "ok"])
        retry(op, ExponentialBackoff(), (ConnectionError,),
              notify=lambda err, delay: notified.append((str(err), delay)),
              sleep=clock.sleep, clock=clock, rng=_no_jitter)
        assert notified == [("down", 0.5)]

    def test_gives_up_at_horizon(self):
        clock = FakeClock()
        op = Mock(side_effect=ConnectionError("still down"))
        policy = ExponentialBackoff(max_elapsed_time=2.0)
        with pytest.raises(ConnectionError, match="still down"):
            retry(op, policy, (ConnectionError,), sleep=clock.sleep, clock=clock, rng=_no_jitter)
        # 0.5 + 0.75 = 1.25 elapsed; the next wait of 1.125 would pass 2.0
        assert op.call_count == 3
        assert clock.now == pytest.approx(1.25)

    def test_zero_horizon_tries_once(self):
        clock = FakeClock()
        op = Mock(side_effect=ConnectionError("down"))
        with pytest.raises(ConnectionError):
            retry(op, ExponentialBackoff(max_elapsed_time=0), (ConnectionError,),
                  sleep=clock.sleep, clock=clock)
        assert op.call_count == 1

    def test_other_errors_not_retried(self):
        op = Mock(side_effect=ResponseError("bad"))
        sleep = Mock()
        with pytest.raises(ResponseError):
            retry(op, ExponentialBackoff(), (ConnectionError,), sleep=sleep)
        sleep.assert_not_called()


class TestConnect:
    def test_retries_until_ping_succeeds(self):
        live = fakeredis.FakeRedis(decode_responses=True)
        dead = Mock()
        dead.ping.side_effect = ConnectionError("refused")
        factory = Mock(side_effect=[dead, live])
        sleep = Mock()

        client = connect(SDConfig(), sleep=sleep, client_factory=factory)

        assert client is live
        dead.close.assert_called_once()
        assert sleep.call_count == 1

    def test_failed_ping_is_transient(self):
        live = fakeredis.FakeRedis(decode_responses=True)
        silent = Mock()
        silent.ping.return_value = False
        factory = Mock(side_effect=[silent, live])

        assert connect(SDConfig(), sleep=Mock(), client_factory=factory) is live

    def test_surfaces_last_error_after_horizon(self):
        dead = Mock()
        dead.ping.side_effect = ConnectionError("refused")
        with pytest.raises(ConnectionError, match="refused"):
            connect(SDConfig(max_timeout=0), sleep=Mock(), client_factory=lambda: dead)

    def test_logs_retry_warning(self, caplog):
        dead = Mock()
        dead.ping.side_effect = ConnectionError("refused")
        live = fakeredis.FakeRedis(decode_responses=True)
        factory = Mock(side_effect=[dead, live])
        with caplog.at_level("WARNING", logger="prometheus_sd.backoff"):
            connect(SDConfig(), sleep=Mock(), client_factory=factory)
        assert "Failed to connect to Redis" in caplog.text
