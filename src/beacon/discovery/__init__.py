"""
Service registration and discovery

This package provides:
1. Registry — merges URIs into the address record stored per service name
2. Resolver — picks one endpoint among the registered ones
3. Watcher — relays parsed address-set changes to handlers
4. LifecycleGuard — unregisters on shutdown signals, exit, or scope end
5. ServiceDiscovery — all of the above behind one object
"""

from .client import ServiceDiscovery
from .lifecycle import LifecycleGuard, RegistrationHandle
from .records import NOT_FOUND, AddressRecord, Endpoint
from .registry import Registry
from .resolver import Resolver
from .watcher import ServiceChange, Watcher

__all__ = [
    'AddressRecord',
    'Endpoint',
    'LifecycleGuard',
    'NOT_FOUND',
    'Registry',
    'RegistrationHandle',
    'Resolver',
    'ServiceChange',
    'ServiceDiscovery',
    'Watcher',
]
