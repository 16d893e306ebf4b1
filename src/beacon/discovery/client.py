"""Single entry point combining registration, resolution and watching."""

import random
from typing import Callable, List, Optional, Sequence

from ..config import DiscoveryConfig
from ..store import EtcdStore, KeyValueStore, Subscription
from .lifecycle import LifecycleGuard, RegistrationHandle
from .records import Endpoint
from .registry import Registry
from .resolver import Resolver
from .watcher import ChangeHandler, Watcher


class ServiceDiscovery:
    """Register this process, discover others, and follow changes.

    Usable as a context manager: leaving the block unregisters everything
    this instance registered and cancels its watches.
    """

    def __init__(self, store: KeyValueStore, namespace: str = "/services",
                 selector: Optional[Callable[[Sequence[str]], str]] = None,
                 max_conflict_retries: int = 5,
                 install_signal_handlers: bool = True,
                 rng: Optional[random.Random] = None):
        self.store = store
        self.namespace = namespace
        self.registry = Registry(
            store, namespace,
            max_conflict_retries=max_conflict_retries,
            install_hooks=install_signal_handlers,
        )
        self.resolver = Resolver(self.registry, selector=selector, rng=rng)
        self.watcher = Watcher(self.registry)

    @classmethod
    def from_config(cls, config: DiscoveryConfig, **kwargs) -> 'ServiceDiscovery':
        store = EtcdStore(
            config.resolved_url,
            timeout=config.timeout,
            watch_retry_interval=config.watch_retry_interval,
            watch_poll_timeout=config.watch_poll_timeout,
        )
        return cls(
            store,
            namespace=config.resolved_namespace,
            max_conflict_retries=config.max_conflict_retries,
            install_signal_handlers=config.install_signal_handlers,
            **kwargs,
        )

    @property
    def lifecycle(self) -> LifecycleGuard:
        return self.registry.lifecycle

    def register(self, name: str, uri: str) -> RegistrationHandle:
        return self.registry.register(name, uri)

    def unregister(self, name: str, uri: str) -> None:
        self.registry.unregister(name, uri)

    def discover(self, name: str) -> Endpoint:
        return self.resolver.discover(name)

    def endpoints(self, name: str) -> List[Endpoint]:
        return self.resolver.endpoints(name)

    def watch(self, name: str, handler: ChangeHandler) -> Subscription:
        return self.watcher.watch(name, handler)

    def unwatch(self, name: str, handler: ChangeHandler) -> bool:
        return self.watcher.unwatch(name, handler)

    def close(self) -> None:
        self.watcher.close()
        self.lifecycle.close()

    def __enter__(self) -> 'ServiceDiscovery':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
