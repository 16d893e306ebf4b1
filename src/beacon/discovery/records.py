"""Address records and endpoints as stored under a service path."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from ..exceptions import MalformedRecordError


@dataclass(frozen=True)
class Endpoint:
    """A resolved (host, port) pair."""
    host: str
    port: int

    @classmethod
    def from_uri(cls, uri: str) -> 'Endpoint':
        """Split ``host:port`` on its last colon."""
        host, sep, port_str = uri.rpartition(":")
        if not sep:
            raise MalformedRecordError(f"URI '{uri}' has no port", value=uri)
        if not host:
            raise MalformedRecordError(f"URI '{uri}' has no host", value=uri)
        if not (port_str.isascii() and port_str.isdigit()):
            raise MalformedRecordError(f"URI '{uri}' has an invalid port", value=uri)
        return cls(host=host, port=int(port_str))

    @property
    def is_empty(self) -> bool:
        return self.host == "" and self.port == 0

    @property
    def uri(self) -> str:
        return f"{self.host}:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port}


# Returned by discover() when nothing is registered under a name
NOT_FOUND = Endpoint(host="", port=0)


@dataclass(frozen=True)
class AddressRecord:
    """Duplicate-free, ordered set of ``host:port`` URIs for one service.

    Stored as ``{"uri": ["host:port", ...]}``. ``add`` and ``remove`` return
    new records and never mutate in place.
    """
    uris: tuple = field(default_factory=tuple)

    def __post_init__(self):
        # dict.fromkeys keeps first-seen order
        object.__setattr__(self, "uris", tuple(dict.fromkeys(self.uris)))

    @classmethod
    def parse(cls, raw: str, path: Optional[str] = None) -> 'AddressRecord':
        """Parse a stored value; any deviation from the format is an error."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedRecordError(f"Record is not valid JSON: {e}", path=path, value=raw) from e
        if not isinstance(data, dict) or "uri" not in data:
            raise MalformedRecordError("Record has no 'uri' list", path=path, value=raw)
        uris = data["uri"]
        if not isinstance(uris, list) or not all(isinstance(u, str) for u in uris):
            raise MalformedRecordError("Record 'uri' must be a list of strings", path=path, value=raw)
        return cls(tuple(uris))

    def dumps(self) -> str:
        return json.dumps({"uri": list(self.uris)})

    def add(self, uri: str) -> 'AddressRecord':
        return AddressRecord(self.uris + (uri,))

    def remove(self, uri: str) -> 'AddressRecord':
        return AddressRecord(tuple(u for u in self.uris if u != uri))

    def endpoints(self) -> List[Endpoint]:
        return [Endpoint.from_uri(u) for u in self.uris]

    def __contains__(self, uri: object) -> bool:
        return uri in self.uris

    def __iter__(self) -> Iterator[str]:
        return iter(self.uris)

    def __len__(self) -> int:
        return len(self.uris)
