"""Atomic read/write contract over the Redis registry keys."""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, NamedTuple, Sequence

import redis
from redis.client import Pipeline
from redis.exceptions import WatchError

logger = logging.getLogger(__name__)


def _glob_escape(text: str) -> str:
    for char in "\\*?[]":
        text = text.replace(char, "\\" + char)
    return text


@dataclass(frozen=True)
class RegistryKeys:
    """Key layout of the registry.

    One set holds every registered service key; each service owns a labels
    hash at ``<namespace>:<service>:labels`` and a targets set at
    ``<namespace>:<service>:targets``.
    """
    namespace: str = "prometheus_sd"
    service_set: str = "prometheus_sd_service_keys"

    def labels(self, service: str) -> str:
        return f"{self.namespace}:{service}:labels"

    def targets(self, service: str) -> str:
        return f"{self.namespace}:{service}:targets"

    def notification_pattern(self, db: int = 0) -> str:
        """Keyspace notification channel pattern covering the whole namespace."""
        return f"__keyspace@{db}__:{_glob_escape(self.namespace)}*"

    def notification_patterns(self, db: int = 0) -> list[str]:
        """Every pattern the monitor must subscribe to.

        Only set and hash events are emitted, so a wholesale removal (two DELs
        and an SREM) is seen solely through the service set. When that key lies
        outside the namespace its channel is subscribed to explicitly.
        """
        patterns = [self.notification_pattern(db)]
        if not self.service_set.startswith(self.namespace):
            patterns.append(f"__keyspace@{db}__:{_glob_escape(self.service_set)}")
        return patterns


class Op(NamedTuple):
    """A single mutation queued inside a transaction."""
    command: str
    key: str
    args: tuple = ()


def sadd(key: str, *members: str) -> Op:
    return Op("sadd", key, members)


def srem(key: str, *members: str) -> Op:
    return Op("srem", key, members)


def hset(key: str, mapping: dict[str, str]) -> Op:
    return Op("hset", key, (mapping,))


def delete(key: str) -> Op:
    return Op("delete", key)


def _queue(pipe: Pipeline, ops: Iterable[Op]) -> None:
    for op in ops:
        if op.command == "hset":
            pipe.hset(op.key, mapping=op.args[0])
        elif op.command in ("sadd", "srem", "delete"):
            getattr(pipe, op.command)(op.key, *op.args)
        else:
            raise ValueError(f"Unsupported registry operation: {op.command}")


class RegistryReader:
    """Immediate-mode reads used while deciding on a checked transaction."""

    def __init__(self, pipe: Pipeline):
        self._pipe = pipe

    def members(self, key: str) -> set[str]:
        return self._pipe.smembers(key)

    def is_member(self, key: str, member: str) -> bool:
        return bool(self._pipe.sismember(key, member))


class RegistryStore:
    """Thin wrapper around a Redis client exposing reads and atomic writes."""

    def __init__(self, client: redis.Redis, keys: RegistryKeys | None = None):
        self.client = client
        self.keys = keys or RegistryKeys()

    def members(self, key: str) -> set[str]:
        return self.client.smembers(key)

    def is_member(self, key: str, member: str) -> bool:
        return bool(self.client.sismember(key, member))

    def hash_get_all(self, key: str) -> dict[str, str]:
        return self.client.hgetall(key)

    def apply(self, ops: Sequence[Op]) -> None:
        """Execute *ops* as one MULTI/EXEC transaction."""
        with self.client.pipeline(transaction=True) as pipe:
            _queue(pipe, ops)
            pipe.execute()

    def apply_checked(
        self,
        watch_keys: Sequence[str],
        decide: Callable[[RegistryReader], Sequence[Op]],
    ) -> None:
        """Read-decide-commit under WATCH.

        *decide* reads the current state and returns the mutations to apply.
        If any watched key changes before EXEC, the transaction is discarded
        and *decide* runs again against the new state. Exceptions raised by
        *decide* abort without writing anything.
        """
        with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    pipe.watch(*watch_keys)
                    ops = decide(RegistryReader(pipe))
                    pipe.multi()
                    _queue(pipe, ops)
                    pipe.execute()
                    return
                except WatchError:
                    logger.info("Registry changed during transaction, retrying")
                    continue

    def snapshot(self) -> list[tuple[str, dict[str, str], set[str]]]:
        """Read every service with its labels and targets as one consistent view.

        The service set is read under WATCH and the per-service keys inside the
        following MULTI/EXEC. If the set changes in between, the read is retried,
        so a service removed concurrently never shows up with empty labels and
        targets. Services are returned sorted by key.
        """
        with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    pipe.watch(self.keys.service_set)
                    services = sorted(RegistryReader(pipe).members(self.keys.service_set))
                    pipe.multi()
                    for service in services:
                        pipe.hgetall(self.keys.labels(service))
                        pipe.smembers(self.keys.targets(service))
                    results = pipe.execute()
                except WatchError:
                    logger.info("Service set changed during snapshot, retrying")
                    continue
                return [
                    (service, results[2 * i], results[2 * i + 1])
                    for i, service in enumerate(services)
                ]
