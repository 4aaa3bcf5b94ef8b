"""Exponential backoff for establishing the initial Redis connection.

Only the connect-plus-PING handshake is retried. Once a connection is live,
command and subscription failures propagate immediately.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TypeVar

import redis
from redis.exceptions import ConnectionError, TimeoutError

from .config import SDConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ExponentialBackoff:
    """Backoff policy: 500ms initial delay growing 1.5x, capped at 15 minutes per wait."""
    initial_interval: float = 0.5
    multiplier: float = 1.5
    max_interval: float = 15 * 60
    # Overall give-up horizon in seconds; None retries forever
    max_elapsed_time: Optional[float] = 8 * 60 * 60
    randomization_factor: float = 0.5

    def intervals(self) -> Iterator[float]:
        """Yield the un-jittered wait intervals, forever."""
        interval = self.initial_interval
        while True:
            yield interval
            interval = min(interval * self.multiplier, self.max_interval)

    def jitter(self, interval: float, rng: Callable[[], float] = random.random) -> float:
        """Spread *interval* uniformly over interval * (1 +/- randomization_factor)."""
        delta = self.randomization_factor * interval
        return min(interval - delta + rng() * 2 * delta, self.max_interval)


def retry(
    operation: Callable[[], T],
    backoff: ExponentialBackoff,
    retry_on: tuple[type[BaseException], ...],
    notify: Optional[Callable[[BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    rng: Callable[[], float] = random.random,
) -> T:
    """Call *operation* until it succeeds, backing off on *retry_on* errors.

    When the next wait would carry the total elapsed time past the policy's
    ``max_elapsed_time``, the last error is re-raised. Exceptions not listed
    in *retry_on* propagate immediately.
    """
    start = clock()
    intervals = backoff.intervals()
    while True:
        try:
            return operation()
        except retry_on as exc:
            delay = backoff.jitter(next(intervals), rng)
            elapsed = clock() - start
            if backoff.max_elapsed_time is not None and elapsed + delay > backoff.max_elapsed_time:
                raise
            if notify is not None:
                notify(exc, delay)
            sleep(delay)


def _log_retry(err: BaseException, delay: float) -> None:
    logger.warning("Failed to connect to Redis: '%s' retrying in %.1fs", err, delay)


def _ping(client: redis.Redis) -> redis.Redis:
    if not client.ping():
        raise ConnectionError("Ping failed")
    return client


def connect(
    config: SDConfig,
    backoff: Optional[ExponentialBackoff] = None,
    sleep: Callable[[float], None] = time.sleep,
    client_factory: Optional[Callable[[], redis.Redis]] = None,
) -> redis.Redis:
    """Return a live Redis client, retrying the initial handshake with backoff.

    Each attempt opens a fresh connection and performs a PING round trip.
    """
    if backoff is None:
        backoff = ExponentialBackoff(max_elapsed_time=config.max_timeout)
    if client_factory is None:
        def client_factory():
            return redis.Redis.from_url(
                config.redis_url,
                decode_responses=True,
                socket_connect_timeout=config.connect_timeout,
            )

    def attempt() -> redis.Redis:
        client = client_factory()
        try:
            return _ping(client)
        except (ConnectionError, TimeoutError):
            client.close()
            raise

    logger.info("Connecting to %s", config.redis_url)
    return retry(
        attempt,
        backoff,
        retry_on=(ConnectionError, TimeoutError),
        notify=_log_retry,
        sleep=sleep,
    )
