"""
Registration lifecycle

A LifecycleGuard owns one RegistrationHandle per outstanding (name, uri)
registration and makes sure each is unregistered exactly once before the
process stops participating:

- SIGINT / SIGTERM: unregister everything, then exit with status 1
- interpreter exit (atexit): unregister whatever is still registered,
  then log the exit
- leaving a ``with guard:`` block: unregister everything and remove the
  hooks again

Termination-time failures are logged, never raised.
"""

import atexit
import signal
import sys
import threading
from typing import Callable, Dict, Iterable, List, Tuple


DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class RegistrationHandle:
    """Binding between one registration and its eventual unregister."""

    def __init__(self, name: str, uri: str, guard: 'LifecycleGuard'):
        self.name = name
        self.uri = uri
        self._guard = guard
        self._lock = threading.RLock()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Unregister now. Returns False if already released."""
        return self._guard.release(self)

    def __enter__(self) -> 'RegistrationHandle':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "active"
        return f"<RegistrationHandle {self.name} {self.uri} {state}>"


class LifecycleGuard:
    """Explicit scope that unregisters its handles on every exit path."""

    def __init__(self, unregister: Callable[[str, str], None],
                 install_hooks: bool = True,
                 signals: Iterable[int] = DEFAULT_SIGNALS,
                 exit_code: int = 1):
        self._unregister = unregister
        self._install_hooks = install_hooks
        self._signals = tuple(signals)
        self._exit_code = exit_code
        self._lock = threading.RLock()
        self._handles: Dict[Tuple[str, str], RegistrationHandle] = {}
        self._previous_handlers: Dict[int, object] = {}
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def handles(self) -> List[RegistrationHandle]:
        with self._lock:
            return list(self._handles.values())

    def arm(self, name: str, uri: str) -> RegistrationHandle:
        """Return the handle for (name, uri), creating it on first use."""
        with self._lock:
            handle = self._handles.get((name, uri))
            if handle is None:
                handle = RegistrationHandle(name, uri, self)
                self._handles[(name, uri)] = handle
            if self._install_hooks and not self._installed:
                self.install()
        return handle

    def disarm(self, name: str, uri: str) -> None:
        """Drop the handle for (name, uri) once it has been unregistered."""
        with self._lock:
            handle = self._handles.pop((name, uri), None)
        if handle is not None:
            handle._released = True

    def release(self, handle: RegistrationHandle) -> bool:
        with handle._lock:
            if handle._released:
                return False
            self._unregister(handle.name, handle.uri)
            handle._released = True
        with self._lock:
            if self._handles.get((handle.name, handle.uri)) is handle:
                del self._handles[(handle.name, handle.uri)]
        return True

    def release_all(self) -> int:
        """Best-effort unregister of every outstanding handle.

        Returns the number of handles released by this call.
        """
        released = 0
        for handle in self.handles():
            try:
                if handle.release():
                    released += 1
            except Exception as e:
                print(
                    f"[lifecycle] failed to unregister {handle.uri} from {handle.name}: {e}",
                    file=sys.stderr,
                )
        return released

    def install(self) -> None:
        """Attach the signal and atexit hooks."""
        with self._lock:
            if self._installed:
                return
            if threading.current_thread() is threading.main_thread():
                for sig in self._signals:
                    self._previous_handlers[sig] = signal.signal(sig, self._on_signal)
            else:
                print(
                    "[lifecycle] not on the main thread; termination signals will not unregister",
                    file=sys.stderr,
                )
            atexit.register(self._on_exit)
            self._installed = True

    def uninstall(self) -> None:
        """Restore previous signal handlers and drop the atexit hook."""
        with self._lock:
            if not self._installed:
                return
            if threading.current_thread() is threading.main_thread():
                for sig, previous in self._previous_handlers.items():
                    signal.signal(sig, previous)
            self._previous_handlers.clear()
            atexit.unregister(self._on_exit)
            self._installed = False

    def close(self) -> None:
        self.release_all()
        self.uninstall()

    def _on_signal(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        print(f"[lifecycle] received {name}; unregistering before exit", file=sys.stderr)
        self.release_all()
        sys.exit(self._exit_code)

    def _on_exit(self) -> None:
        self.release_all()
        # No store access past this point
        print("[lifecycle] process exiting", file=sys.stderr)

    def __enter__(self) -> 'LifecycleGuard':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
