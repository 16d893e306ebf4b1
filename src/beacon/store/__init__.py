"""
Key-value store backends

This package provides:
1. KeyValueStore — the narrow interface the discovery core depends on
2. InMemoryStore — dict-backed store for tests and single-process use
3. EtcdStore — HTTP client for the etcd v2 keys API
"""

from .base import ChangeEvent, KeyValueStore, StoreEntry, Subscription
from .etcd import EtcdStore
from .memory import InMemoryStore

__all__ = [
    'ChangeEvent',
    'EtcdStore',
    'InMemoryStore',
    'KeyValueStore',
    'StoreEntry',
    'Subscription',
]
