"""
CDP adapter — Chrome DevTools Protocol session over our WebSocket transport.

One CDPSession wraps one Connection (browser- or page-level). Commands are
strictly sequential: call() sends `{id, method, params}` and reads until the
reply with that id arrives. Events read in the meantime are routed:

1. NetworkIdleTracker side effects (Network.* request bookkeeping)
2. handed to the current wait_for() if they match
3. otherwise buffered (non-network events only) for a later wait_for()

wait_for() always drains the buffer oldest-first before touching the wire.

Transport failures are translated into the RenderError taxonomy:
socket timeouts → RenderTimeoutError, everything else → BrowserConnectionError.
"""

import itertools
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from logging_config import log_cdp_call, log_cdp_event, log_cdp_result
from models import BrowserConnectionError, ProtocolError, RenderTimeoutError
from transport import (
    Client,
    Connection,
    ConnectionTimeoutError,
    DeflateCompressor,
    WebSocketError,
)

log = logging.getLogger(__name__)

# Pseudo event name: satisfied once no network request is in flight
WAIT_FOR_NETWORK = "wait-for-network"


@dataclass(frozen=True)
class PendingCall:
    """A command awaiting its reply."""
    id: int
    method: str


@dataclass
class InterceptedEvent:
    """An event read while waiting for something else."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def matches(self, method: str, expected: dict[str, Any] | None = None) -> bool:
        return event_matches(self.method, self.params, method, expected)


def event_matches(
    method: str,
    params: dict[str, Any],
    wanted: str,
    expected: dict[str, Any] | None = None,
) -> bool:
    """Same method, and params contain every expected key/value pair."""
    if method != wanted:
        return False
    if not expected:
        return True
    return all(key in params and params[key] == value for key, value in expected.items())


class NetworkIdleTracker:
    """
    In-flight request table fed by Network.* events.

    Idle means the table is empty; it starts idle, so a page that never
    issues a request never blocks.
    """

    EVENTS = frozenset({
        "Network.requestWillBeSent",
        "Network.loadingFinished",
        "Network.loadingFailed",
    })

    def __init__(self, logger: logging.Logger | None = None):
        self.requests: dict[str, dict[str, Any]] = {}
        self.failures: list[str] = []  # Human-readable, surfaced as render warnings
        self._log = logger or log

    @property
    def is_idle(self) -> bool:
        return not self.requests

    def handle(self, method: str, params: dict[str, Any]) -> bool:
        """Apply side effects. Returns True if this was a tracked network event."""
        if method not in self.EVENTS:
            return False

        request_id = params.get("requestId")
        if method == "Network.requestWillBeSent":
            self.requests[request_id] = params
        elif method == "Network.loadingFinished":
            self.requests.pop(request_id, None)
        else:
            request = self.requests.pop(request_id, None) or {}
            url = request.get("request", {}).get("url", f"<request {request_id}>")
            error = params.get("errorText", "unknown error")
            self._log.error(f'Headless Chrome was unable to complete a request to "{url}". Error: {error}')
            self.failures.append(f"{url}: {error}")
        return True


class CDPSession:
    """
    CDP protocol over one WebSocket connection.

    Args:
        connection: Open transport connection (owned by the session)
        name: Label for logs and error details ("browser", "page")
        network: Shared tracker; a fresh one is created if omitted
        logger: Destination for session diagnostics
    """

    def __init__(
        self,
        connection: Connection,
        name: str = "browser",
        network: NetworkIdleTracker | None = None,
        logger: logging.Logger | None = None,
    ):
        self.connection = connection
        self.name = name
        self.network = network or NetworkIdleTracker(logger)
        self.events: list[InterceptedEvent] = []
        self.pending: dict[int, PendingCall] = {}
        self._ids = itertools.count(1)
        self._log = logger or log

    @classmethod
    async def open(
        cls,
        uri: str,
        *,
        name: str = "browser",
        timeout: float = 60,
        compression: DeflateCompressor | None = None,
        network: NetworkIdleTracker | None = None,
        logger: logging.Logger | None = None,
    ) -> "CDPSession":
        """
        Connect to a DevTools WebSocket URI.

        Raises:
            BrowserConnectionError: Socket or handshake failed
            RenderTimeoutError: Connect timed out
        """
        with _translate(f"connect {name}", {"uri": uri}):
            connection = await Client(uri, timeout=timeout, compression=compression).connect()
        return cls(connection, name=name, network=network, logger=logger)

    async def call(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Send a command and return its `result`.

        Raises:
            ProtocolError: Reply carried `error`, had the wrong shape, or the wrong id
            RenderTimeoutError: No reply within the connection timeout
            BrowserConnectionError: Connection failed or was closed
        """
        pending = PendingCall(next(self._ids), method)
        self.pending[pending.id] = pending
        details = {"method": method, "session": self.name}
        log_cdp_call(method, pending.id, params)

        try:
            with _translate(method, details):
                await self.connection.send_text(json.dumps({
                    "id": pending.id,
                    "method": method,
                    "params": params or {},
                }))
                while True:
                    data = await self._read(details)
                    if "id" in data:
                        break
                    if "method" not in data:
                        raise ProtocolError(f"Unknown response received: {data}", details)
                    self._route(data["method"], data.get("params") or {})
        finally:
            self.pending.pop(pending.id, None)

        if data["id"] != pending.id:
            raise ProtocolError(
                f"Reply for id {data['id']} while waiting for {method} #{pending.id}", details,
            )
        if "error" in data:
            error = data["error"] or {}
            raise ProtocolError(
                f"Error response ({error.get('code')}): {error.get('message')}",
                details,
                code=error.get("code"),
            )
        result = data.get("result")
        if not isinstance(result, dict):
            raise ProtocolError(f"{method} reply has no result object", details)

        log_cdp_result(method, pending.id, result)
        return result

    async def wait_for(self, event: str, expected: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Return the params of the first event named `event` whose params
        include `expected`. Buffered events are checked first.

        `WAIT_FOR_NETWORK` waits until the request table is empty and
        returns {} (immediately, if it already is).
        """
        details = {"event": event, "session": self.name}

        if event == WAIT_FOR_NETWORK:
            if self.network.is_idle:
                return {}
            self._log.debug(f"Awaiting network idle ({len(self.network.requests)} in flight)")
            with _translate(event, details):
                while not self.network.is_idle:
                    data = await self._read(details)
                    if "method" in data:
                        self._route(data["method"], data.get("params") or {})
            return {}

        self._log.debug(f"Awaiting CDP event: {event}({', '.join(expected or {})})")
        for index, intercepted in enumerate(self.events):
            if intercepted.matches(event, expected):
                del self.events[index]
                return intercepted.params

        with _translate(event, details):
            while True:
                data = await self._read(details)
                if "method" not in data:
                    raise ProtocolError(f"Unexpected reply while awaiting {event}: {data}", details)
                params = data.get("params") or {}
                if self._route(data["method"], params, event, expected):
                    return params

    async def close(self) -> None:
        """
        Close handshake, then release the socket.

        Raises:
            BrowserConnectionError: Peer did not acknowledge (socket released anyway)
        """
        with _translate("close", {"session": self.name}):
            await self.connection.close()

    async def __aenter__(self) -> "CDPSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.connection.disconnect()

    def _route(
        self,
        method: str,
        params: dict[str, Any],
        waiting_for: str | None = None,
        expected: dict[str, Any] | None = None,
    ) -> bool:
        """Side effects, then waiter match, then buffer. True if consumed by the waiter."""
        log_cdp_event(method, params)
        is_network = self.network.handle(method, params)
        if waiting_for and event_matches(method, params, waiting_for, expected):
            return True
        if not is_network:
            self.events.append(InterceptedEvent(method, params))
        return False

    async def _read(self, details: dict[str, Any]) -> dict[str, Any]:
        message = await self.connection.receive()
        if message.opcode == "close":
            raise BrowserConnectionError(
                f"Browser closed the DevTools connection ({message.close_status})", details,
            )
        try:
            data = json.loads(message.content)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProtocolError(f"Invalid JSON from browser: {e}", details) from e
        if not isinstance(data, dict):
            raise ProtocolError(f"Unknown response received: {data!r}", details)
        return data


@contextmanager
def _translate(what: str, details: dict[str, Any]) -> Iterator[None]:
    """Map transport errors to the render error taxonomy."""
    try:
        yield
    except ConnectionTimeoutError as e:
        raise RenderTimeoutError(f"Timed out during {what}: {e}", details) from e
    except WebSocketError as e:
        raise BrowserConnectionError(f"Connection failed during {what}: {e}", details) from e
