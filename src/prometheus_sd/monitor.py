"""Keep the Prometheus file-SD JSON in sync with the Redis registry."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import NoReturn, Optional, Sequence

import redis
from redis.client import PubSub
from redis.exceptions import ConnectionError

from .errors import ExportError, SerializationError
from .registry import RegisteredService, RegistryStore, discover_services

logger = logging.getLogger(__name__)

# Keyspace events (K) for set (s) and hash (h) commands only
KEYSPACE_EVENTS = "Ksh"


def render_services(services: Sequence[RegisteredService]) -> str:
    """Serialise *services* as the pretty-printed JSON array Prometheus reads."""
    try:
        return json.dumps([s.to_dict() for s in services], indent=2) + "\n"
    except (TypeError, ValueError) as exc:
        raise SerializationError(exc) from exc


def write_services(path: str | Path, services: Sequence[RegisteredService]) -> None:
    """Write the service file via a temp file and an atomic rename.

    Readers see either the previous file or the new one, never a partial write.
    """
    content = render_services(services)
    path = Path(path)
    tmp_name = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp",
            delete=False,
        ) as f:
            tmp_name = f.name
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise ExportError(str(path), exc) from exc


def export_services(store: RegistryStore, path: str | Path) -> list[RegisteredService]:
    """Take a registry snapshot and write it to *path*."""
    services = discover_services(store)
    write_services(path, services)
    logger.info("Wrote %d service(s) to %s", len(services), path)
    return services


def enable_keyspace_events(client: redis.Redis) -> None:
    client.config_set("notify-keyspace-events", KEYSPACE_EVENTS)


def subscribe(client: redis.Redis, store: RegistryStore) -> PubSub:
    """Enable keyspace notifications and subscribe to the registry keys.

    The returned PubSub holds its own connection, separate from the one
    *client* uses for commands.
    """
    enable_keyspace_events(client)
    db = client.connection_pool.connection_kwargs.get("db", 0)
    patterns = store.keys.notification_patterns(db)
    pubsub = client.pubsub(ignore_subscribe_messages=True)
    pubsub.psubscribe(*patterns)
    logger.info("Subscribed to %s", ", ".join(patterns))
    return pubsub


def monitor_registry(pubsub: PubSub, store: RegistryStore, path: str | Path) -> NoReturn:
    """Rewrite the service file once for every registry notification.

    Blocks on the subscription forever. Any error (subscription, snapshot or
    file write) propagates to the caller.
    """
    for message in pubsub.listen():
        logger.debug("Registry notification: %s %s", message.get("channel"), message.get("data"))
        export_services(store, path)
    raise ConnectionError("Registry subscription ended")


def run_discovery(
    client: redis.Redis,
    store: RegistryStore,
    path: str | Path,
    pubsub: Optional[PubSub] = None,
) -> NoReturn:
    """Write the initial service file, then monitor the registry for changes.

    The subscription is set up before the initial snapshot so that no change
    falls between the two.
    """
    if pubsub is None:
        pubsub = subscribe(client, store)
    try:
        export_services(store, path)
        monitor_registry(pubsub, store, path)
    finally:
        pubsub.close()
