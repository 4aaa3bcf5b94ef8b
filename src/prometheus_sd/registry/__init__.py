"""
Redis Service Registry

This package provides:
1. RegistryStore: atomic reads and transactions over the registry keys
2. register_instance / unregister_instance: registry mutations
3. discover_services: sorted snapshot of all registered services
"""

from .service_registry import (
    RegisteredService,
    ServiceInstance,
    discover_services,
    parse_labels,
    register_instance,
    unregister_instance,
)
from .store import RegistryKeys, RegistryStore

__all__ = [
    'RegisteredService',
    'RegistryKeys',
    'RegistryStore',
    'ServiceInstance',
    'discover_services',
    'parse_labels',
    'register_instance',
    'unregister_instance',
]
