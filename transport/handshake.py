"""
Opening handshake — HTTP/1.1 Upgrade exchange (RFC 6455 section 4).

Builds the upgrade request, reads the raw HTTP response off the socket and
validates Sec-WebSocket-Accept. Headers use httpx.Headers for
case-insensitive, multi-valued access.
"""

import base64
import hashlib
import logging
import os
import re
from dataclasses import dataclass, field

import httpx

from transport.errors import BadUriError, HandshakeError

log = logging.getLogger(__name__)

# RFC 6455 magic GUID appended to the key before hashing
WEBSOCKET_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

USER_AGENT = "headless-print/1.0"

DEFAULT_PORTS = {"ws": 80, "wss": 443}

_STATUS_LINE = re.compile(r"^HTTP/(?P<version>[0-9/.]+) (?P<code>[0-9]*)($|\s(?P<reason>.*))")

# Upper bound on response header lines; a DevTools endpoint sends about five
MAX_HEADER_LINES = 100


@dataclass
class HttpRequest:
    method: str
    target: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)

    def to_bytes(self) -> bytes:
        lines = [f"{self.method} {self.target} HTTP/1.1"]
        lines.extend(f"{name}: {value}" for name, value in self.headers.multi_items())
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


@dataclass
class HttpResponse:
    status_code: int
    reason: str = ""
    version: str = "1.1"
    headers: httpx.Headers = field(default_factory=httpx.Headers)

    def header_values(self, name: str) -> list[str]:
        return self.headers.get_list(name)

    def __str__(self) -> str:
        return f"HTTP/{self.version} {self.status_code} {self.reason}".rstrip()


def parse_uri(uri: str) -> httpx.URL:
    """Validate a ws:// or wss:// URI."""
    try:
        url = httpx.URL(uri)
    except httpx.InvalidURL as e:
        raise BadUriError(f"Invalid URI '{uri}' provided") from e
    if url.scheme not in DEFAULT_PORTS:
        raise BadUriError("Invalid URI scheme, must be 'ws' or 'wss'")
    if not url.host:
        raise BadUriError("Invalid URI host")
    return url


def socket_address(url: httpx.URL) -> tuple[str, int]:
    return url.host, url.port or DEFAULT_PORTS[url.scheme]


def generate_key() -> str:
    """Sec-WebSocket-Key: 16 random bytes, base64."""
    return base64.b64encode(os.urandom(16)).decode("ascii")


def expected_accept(key: str) -> str:
    digest = hashlib.sha1((key + WEBSOCKET_GUID).encode("ascii")).digest()
    return base64.b64encode(digest).decode("ascii")


def build_request(url: httpx.URL, key: str, headers: dict[str, str] | None = None) -> HttpRequest:
    host, port = socket_address(url)
    host_header = host if port == DEFAULT_PORTS[url.scheme] else f"{host}:{port}"
    target = url.raw_path.decode("ascii") or "/"

    request = HttpRequest("GET", target, httpx.Headers({
        "Host": host_header,
        "User-Agent": USER_AGENT,
        "Connection": "Upgrade",
        "Upgrade": "websocket",
        "Sec-WebSocket-Key": key,
        "Sec-WebSocket-Version": "13",
    }))

    if url.username:
        credentials = f"{url.username}:{url.password}".encode("utf-8")
        request.headers["Authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")

    for name, value in (headers or {}).items():
        request.headers[name] = value
    return request


async def read_response(stream) -> HttpResponse:
    """Read a status line and headers up to the blank line."""
    status = (await stream.readline()).decode("latin-1").strip()
    match = _STATUS_LINE.match(status)
    if not match:
        raise HandshakeError(f"Invalid HTTP response: {status!r}")

    response = HttpResponse(
        status_code=int(match["code"] or 0),
        reason=match["reason"] or "",
        version=match["version"],
    )
    fields: list[tuple[str, str]] = []
    for _ in range(MAX_HEADER_LINES):
        line = (await stream.readline()).decode("latin-1").strip()
        if not line:
            response.headers = httpx.Headers(fields)
            return response
        name, sep, value = line.partition(":")
        if sep:
            fields.append((name.strip(), value.strip()))
    raise HandshakeError("Too many header lines in HTTP response", response)


class HttpHandler:
    """Innermost layer of the HTTP middleware stack: raw socket I/O."""

    def __init__(self, stream):
        self._stream = stream

    async def push(self, request: HttpRequest) -> HttpRequest:
        await self._stream.write(request.to_bytes())
        log.debug(f"Pushed {request.method} {request.target}")
        return request

    async def pull(self) -> HttpResponse:
        response = await read_response(self._stream)
        log.debug(f"Pulled {response}")
        return response


def validate_response(response: HttpResponse, key: str, uri: str) -> None:
    """Raise HandshakeError unless the server accepted the upgrade."""
    if response.status_code != 101:
        raise HandshakeError(f"Invalid status code {response.status_code}.", response)

    accept = response.headers.get("Sec-WebSocket-Accept", "").strip()
    if not accept:
        raise HandshakeError(
            f"Connection to '{uri}' failed: Server sent invalid upgrade response.",
            response,
        )
    if accept != expected_accept(key):
        raise HandshakeError("Server sent bad upgrade response.", response)
    log.debug(f"Handshake accepted for {uri}")
