"""
etcd v2 keys-API client

Talks JSON over HTTP to ``{url}/v2/keys{path}``:
- GET for reads, ``?wait=true&waitIndex=N`` for long-poll watches
- PUT (form-encoded ``value``) for writes, with ``prevIndex`` / ``prevExist``
  conditions and ``dir=true`` for directories
- DELETE with an optional ``prevIndex`` condition

Requires a server with the v2 API enabled: etcd 3.4/3.5 started with
``--enable-v2`` (v2 is off by default since 3.4 and removed in 3.6). Against
a server without it every request fails, and discover() reports NOT_FOUND.
"""

import json
import socket
import sys
import threading
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable, Dict, Optional, Tuple

from ..exceptions import StoreConflictError, StoreUnavailableError
from .base import ChangeEvent, KeyValueStore, StoreEntry, Subscription
from .memory import KEY_NOT_FOUND, NODE_EXIST, TEST_FAILED


EVENT_INDEX_CLEARED = 401

_CONFLICT_CODES = {TEST_FAILED, NODE_EXIST}

_DEFAULT_TIMEOUT = object()


class EtcdStore(KeyValueStore):
    """KeyValueStore backed by an etcd server speaking the v2 keys API."""

    def __init__(self, url: str = "http://127.0.0.1:2379", timeout: float = 5.0,
                 watch_retry_interval: float = 1.0, watch_poll_timeout: float = 30.0):
        self.url = url.rstrip("/")
        self._timeout = timeout
        self._watch_retry_interval = watch_retry_interval
        # Upper bound on one long-poll, so a cancelled watch on a quiet key exits
        self._watch_poll_timeout = watch_poll_timeout
        # Bypass http_proxy env vars; etcd is an internal endpoint.
        self._opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _key_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = f"{self.url}/v2/keys/{urllib.parse.quote(path.lstrip('/'))}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        return url

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 form: Optional[Dict[str, Any]] = None,
                 timeout: Any = _DEFAULT_TIMEOUT) -> Tuple[int, Dict[str, Any], Any]:
        """Issue one request; returns ``(status, decoded body, headers)``.

        HTTP error statuses are returned rather than raised, since etcd
        reports "key not found" and failed conditions that way.
        """
        url = self._key_url(path, params)
        data = urllib.parse.urlencode(form).encode() if form is not None else None
        req = urllib.request.Request(url, data=data, method=method)
        if data is not None:
            req.add_header("Content-Type", "application/x-www-form-urlencoded")
        if timeout is _DEFAULT_TIMEOUT:
            timeout = self._timeout

        try:
            with self._opener.open(req, timeout=timeout) as resp:
                return resp.status, self._decode(resp.read(), path), resp.headers
        except urllib.error.HTTPError as e:
            return e.code, self._decode(e.read(), path), e.headers
        except (urllib.error.URLError, OSError) as e:
            raise StoreUnavailableError(f"etcd request to {self.url} failed: {e}", path=path) from e

    @staticmethod
    def _decode(raw: bytes, path: str) -> Dict[str, Any]:
        if not raw.strip():
            return {}
        try:
            body = json.loads(raw.decode())
        except ValueError as e:
            raise StoreUnavailableError(f"etcd returned a non-JSON response: {e}", path=path) from e
        if not isinstance(body, dict):
            raise StoreUnavailableError("etcd returned an unexpected response", path=path)
        return body

    @staticmethod
    def _raise_for_error(status: int, body: Dict[str, Any], path: str) -> None:
        code = body.get("errorCode")
        message = body.get("message") or f"HTTP {status}"
        if body.get("cause"):
            message = f"{message} ({body['cause']})"
        if code in _CONFLICT_CODES:
            raise StoreConflictError(message, path=path, error_code=code)
        raise StoreUnavailableError(message, path=path, error_code=code)

    @staticmethod
    def _entry_from(node: Dict[str, Any]) -> StoreEntry:
        return StoreEntry(node["key"], node.get("value"), int(node["modifiedIndex"]))

    # ------------------------------------------------------------------
    # KeyValueStore
    # ------------------------------------------------------------------

    def get(self, path: str) -> Optional[StoreEntry]:
        status, body, _ = self._request("GET", path)
        if status == 200 and "node" in body:
            node = body["node"]
            if node.get("dir"):
                return None
            return self._entry_from(node)
        if body.get("errorCode") == KEY_NOT_FOUND:
            return None
        self._raise_for_error(status, body, path)

    def set(self, path: str, value: str, prev_index: Optional[int] = None,
            prev_exist: Optional[bool] = None) -> StoreEntry:
        params: Dict[str, Any] = {}
        if prev_index is not None:
            params["prevIndex"] = prev_index
        if prev_exist is not None:
            params["prevExist"] = "true" if prev_exist else "false"
        status, body, _ = self._request("PUT", path, params=params, form={"value": value})
        if status in (200, 201) and "node" in body:
            return self._entry_from(body["node"])
        if body.get("errorCode") == KEY_NOT_FOUND and params:
            # Key vanished between the read and this conditional write
            raise StoreConflictError(body.get("message", "Key not found"), path=path,
                                     error_code=KEY_NOT_FOUND)
        self._raise_for_error(status, body, path)

    def delete(self, path: str, prev_index: Optional[int] = None) -> None:
        params = {"prevIndex": prev_index} if prev_index is not None else None
        status, body, _ = self._request("DELETE", path, params=params)
        if status == 200:
            return
        if body.get("errorCode") == KEY_NOT_FOUND:
            return
        self._raise_for_error(status, body, path)

    def make_directory(self, path: str) -> None:
        status, body, _ = self._request(
            "PUT", path, params={"dir": "true", "prevExist": "false"},
        )
        if status in (200, 201):
            return
        if body.get("errorCode") == NODE_EXIST:
            return
        self._raise_for_error(status, body, path)

    def watch(self, path: str, on_change: Callable[[ChangeEvent], None]) -> Subscription:
        """Start a long-poll loop for *path* in a daemon thread.

        The starting index is read synchronously, so every change made after
        this call returns is delivered. Cancelling the subscription waits
        for the loop to exit, at most one poll timeout.
        """
        status, body, headers = self._request("GET", path)
        if status != 200 and body.get("errorCode") != KEY_NOT_FOUND:
            self._raise_for_error(status, body, path)
        start_index = self._etcd_index(headers, body) + 1

        stopped = threading.Event()
        thread = threading.Thread(
            target=self._watch_loop,
            args=(path, start_index, on_change, stopped),
            name=f"etcd-watch:{path}",
            daemon=True,
        )
        thread.start()

        def _cancel() -> None:
            stopped.set()
            # A handler may cancel its own subscription from the watch thread
            if threading.current_thread() is not thread:
                thread.join(self._watch_poll_timeout + self._timeout)

        return Subscription(path, _cancel)

    @staticmethod
    def _is_timeout(exc: BaseException) -> bool:
        cause = exc.__cause__
        reason = getattr(cause, "reason", None)
        return isinstance(cause, (socket.timeout, TimeoutError)) or isinstance(
            reason, (socket.timeout, TimeoutError)
        )

    @staticmethod
    def _etcd_index(headers: Any, body: Dict[str, Any]) -> int:
        raw = headers.get("X-Etcd-Index") if headers is not None else None
        if raw is None:
            raw = body.get("index", 0)
        return int(raw)

    def _watch_loop(self, path: str, wait_index: int,
                    on_change: Callable[[ChangeEvent], None],
                    stopped: threading.Event) -> None:
        while not stopped.is_set():
            try:
                status, body, headers = self._request(
                    "GET", path,
                    params={"wait": "true", "waitIndex": wait_index},
                    timeout=self._watch_poll_timeout,
                )
            except StoreUnavailableError as e:
                if self._is_timeout(e):
                    # Nothing changed within one poll; re-issue it
                    continue
                print(
                    f"[etcd] watch on {path} dropped: {e}; retrying in {self._watch_retry_interval}s",
                    file=sys.stderr,
                )
                stopped.wait(self._watch_retry_interval)
                continue

            if stopped.is_set():
                break

            if status == 200 and "node" in body:
                node = body["node"]
                event = ChangeEvent(
                    action=body.get("action", "set"),
                    key=node["key"],
                    value=node.get("value"),
                    index=int(node["modifiedIndex"]),
                )
                wait_index = event.index + 1
                try:
                    on_change(event)
                except Exception as e:
                    print(f"[etcd] watch callback for {path} failed: {e!r}", file=sys.stderr)
            elif status == 200:
                # Server closed an idle long-poll; re-issue it
                continue
            elif body.get("errorCode") == EVENT_INDEX_CLEARED:
                wait_index = self._etcd_index(headers, body) + 1
                print(f"[etcd] watch on {path} fell behind history; resuming at {wait_index}",
                      file=sys.stderr)
            else:
                print(
                    f"[etcd] watch on {path} failed: HTTP {status} {body.get('message', '')}",
                    file=sys.stderr,
                )
                stopped.wait(self._watch_retry_interval)
