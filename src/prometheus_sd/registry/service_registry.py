#!/usr/bin/env python3
"""
Redis-backed Service Registry

This module provides:
- ServiceInstance: one host/port of a service, used for registration
- RegisteredService: labels and targets of a service, as Prometheus reads them
- register_instance / unregister_instance: atomic registry mutations
- discover_services: a consistent, sorted snapshot of every registered service
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..errors import NoSuchHost, NoSuchService
from .store import Op, RegistryReader, RegistryStore, delete, hset, sadd, srem

logger = logging.getLogger(__name__)


@dataclass
class ServiceInstance:
    """Instance of a service on a single host"""
    service_name: str
    host: str
    port: int
    job_name: Optional[str] = None
    labels: List[Tuple[str, str]] = field(default_factory=list)
    metrics_path: str = "/metrics"

    def __post_init__(self):
        if self.job_name is None:
            self.job_name = self.service_name

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}{self.metrics_path}"


@dataclass
class RegisteredService:
    """Service definition in the shape Prometheus' file-based discovery expects"""
    labels: Dict[str, str]
    targets: Set[str]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serialisable dictionary."""
        return {"labels": dict(self.labels), "targets": sorted(self.targets)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RegisteredService':
        """Create from dictionary."""
        return cls(labels=dict(data["labels"]), targets=set(data["targets"]))


def parse_labels(values: Optional[Sequence]) -> List[Tuple[str, str]]:
    """Normalise label arguments into (key, value) pairs.

    Accepts a flat ``[k1, v1, k2, v2]`` list or a list of 2-item sequences,
    as produced by ``argparse`` with ``nargs=2, action="append"``.
    """
    if not values:
        return []
    if all(isinstance(v, str) for v in values):
        if len(values) % 2:
            raise ValueError(f"Labels must come in key/value pairs, got {list(values)}")
        return [(values[i], values[i + 1]) for i in range(0, len(values), 2)]
    pairs = []
    for pair in values:
        if len(pair) != 2:
            raise ValueError(f"Label must be a key/value pair, got {pair!r}")
        pairs.append((pair[0], pair[1]))
    return pairs


def register_instance(store: RegistryStore, inst: ServiceInstance) -> None:
    """Register a new service instance.

    Set membership, labels and the target are written in one transaction.
    Registering the same instance twice is a no-op.
    """
    keys = store.keys
    labels = {"job": inst.job_name}
    labels.update(dict(inst.labels))
    store.apply([
        sadd(keys.service_set, inst.service_name),
        hset(keys.labels(inst.service_name), labels),
        sadd(keys.targets(inst.service_name), inst.target),
    ])
    logger.info("Registered %s for service %s", inst.target, inst.service_name)


def _remove_service(store: RegistryStore, service: str) -> List[Op]:
    keys = store.keys
    return [
        delete(keys.targets(service)),
        delete(keys.labels(service)),
        srem(keys.service_set, service),
    ]


def _match_target(targets: Set[str], host: str) -> Optional[str]:
    # Lexical prefix match: "10.0.0.1" also matches "10.0.0.10:9100/metrics".
    for target in sorted(targets):
        if target.startswith(host):
            return target
    return None


def unregister_instance(store: RegistryStore, service: str, host: Optional[str] = None) -> None:
    """Unregister a service instance, either wholesale or for a single target only.

    With *host*, the first target (in sorted order) starting with *host* is
    removed; removing the last target removes the whole service. The
    membership check, the cardinality check and the removal run under a
    WATCH on the service set and the targets key, so a registration landing
    concurrently makes the transaction retry instead of being deleted.
    """
    keys = store.keys
    targets_key = keys.targets(service)

    def decide(reader: RegistryReader) -> List[Op]:
        if not reader.is_member(keys.service_set, service):
            raise NoSuchService(service)
        if host is None:
            return _remove_service(store, service)

        targets = reader.members(targets_key)
        target = _match_target(targets, host)
        if target is None:
            raise NoSuchHost(service, host)
        if len(targets) == 1:
            return _remove_service(store, service)
        return [srem(targets_key, target)]

    store.apply_checked([keys.service_set, targets_key], decide)
    if host is None:
        logger.info("Unregistered service %s", service)
    else:
        logger.info("Unregistered host %s from service %s", host, service)


def discover_services(store: RegistryStore) -> List[RegisteredService]:
    """Discover all services with their hosts and labels in the registry.

    Services are returned sorted by service key. Any read failure aborts
    the whole call.
    """
    return [
        RegisteredService(labels=labels, targets=targets)
        for _, labels, targets in store.snapshot()
    ]
