"""Resolving a service name to one registered endpoint."""

import random
import sys
from typing import Callable, List, Optional, Sequence

from ..exceptions import StoreUnavailableError
from .records import NOT_FOUND, Endpoint
from .registry import Registry


class Resolver:
    """Picks one endpoint among those registered for a name.

    Selection is uniform-random by default. Pass *selector* or override
    ``pick_host`` to change the policy.
    """

    def __init__(self, registry: Registry,
                 selector: Optional[Callable[[Sequence[str]], str]] = None,
                 rng: Optional[random.Random] = None):
        self.registry = registry
        self._selector = selector
        self._rng = rng or random.Random()

    def discover(self, name: str) -> Endpoint:
        """Return one endpoint for *name*, or ``NOT_FOUND``.

        Absence and store failures yield ``NOT_FOUND``; a malformed record
        raises ``MalformedRecordError``.
        """
        try:
            record = self.registry.lookup(name)
        except StoreUnavailableError as e:
            print(f"[resolver] service {name} not found: {e}", file=sys.stderr)
            return NOT_FOUND

        if not record:
            print(f"[resolver] service {name} not found", file=sys.stderr)
            return NOT_FOUND

        uri = self.pick_host(list(record))
        return Endpoint.from_uri(uri)

    def endpoints(self, name: str) -> List[Endpoint]:
        """All endpoints currently registered for *name*."""
        return self.registry.lookup(name).endpoints()

    def pick_host(self, hosts: Sequence[str]) -> str:
        if not hosts:
            raise ValueError("pick_host requires at least one host")
        if self._selector is not None:
            return self._selector(hosts)
        return self._rng.choice(hosts)
