"""
Key-value store boundary

The discovery core depends only on the capability set defined here:
get / set / delete / make_directory / watch on slash-separated paths, with
atomicity at single-key granularity. Writes may be made conditional on the
modification index observed by a previous read, which is what lets the
registry merge concurrent registrations without losing any.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class StoreEntry:
    """A key's current value and the store index of its last modification."""
    key: str
    value: str
    index: int


@dataclass(frozen=True)
class ChangeEvent:
    """A single change notification for a watched key.

    *action* uses the etcd vocabulary: ``set``, ``create``, ``update``,
    ``compareAndSwap``, ``delete``, ``compareAndDelete``, ``expire``.
    *value* is ``None`` for removals.
    """
    action: str
    key: str
    value: Optional[str]
    index: int

    @property
    def is_removal(self) -> bool:
        return self.action in REMOVAL_ACTIONS


REMOVAL_ACTIONS = frozenset({"delete", "compareAndDelete", "expire"})


class Subscription:
    """Handle for a watch registration; ``cancel()`` stops further delivery."""

    def __init__(self, path: str, on_cancel: Callable[[], None]):
        self.path = path
        self._on_cancel = on_cancel
        self._lock = threading.Lock()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._on_cancel()

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"<Subscription {self.path} {state}>"


class KeyValueStore(ABC):
    """Narrow interface over the distributed key-value store."""

    @abstractmethod
    def get(self, path: str) -> Optional[StoreEntry]:
        """Return the entry at *path*, or ``None`` when the key does not exist."""

    @abstractmethod
    def set(self, path: str, value: str, prev_index: Optional[int] = None,
            prev_exist: Optional[bool] = None) -> StoreEntry:
        """Write *value* at *path*.

        With *prev_index*, the write only succeeds if the key still carries
        that modification index. With ``prev_exist=False`` it only succeeds if
        the key does not exist yet. A failed condition raises
        ``StoreConflictError``.
        """

    @abstractmethod
    def delete(self, path: str, prev_index: Optional[int] = None) -> None:
        """Remove *path*. Deleting an absent key is a no-op."""

    @abstractmethod
    def make_directory(self, path: str) -> None:
        """Create directory *path*; succeeds silently if it already exists."""

    @abstractmethod
    def watch(self, path: str, on_change: Callable[[ChangeEvent], None]) -> Subscription:
        """Invoke *on_change* for every subsequent change to *path*."""
