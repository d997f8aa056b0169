"""
Shared test helpers for headless-print.

- MemoryStream: in-memory byte stream for codec/handshake tests
- FakeDevTools: scripted CDP peer on a real websockets server
- write_fake_browser: executable shell scripts that imitate Chrome's startup
"""

from __future__ import annotations

import base64
import json
import socket
import stat
from dataclasses import dataclass, field
from http import HTTPStatus
from pathlib import Path
from typing import Any

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

FAKE_BROWSER_ID = "fake-browser-0001"
FAKE_TARGET_ID = "TARGET-1"
FAKE_FRAME_ID = "FRAME-1"
FAKE_PDF = b"%PDF-1.4\n% fake\n%%EOF\n"


class MemoryStream:
    """
    Byte stream over a fixed buffer.

    Args:
        data: Bytes handed out by read()/readline()
        chunk: Max bytes per read() call, to exercise partial reads
    """

    def __init__(self, data: bytes = b"", chunk: int | None = None):
        self.data = data
        self.chunk = chunk
        self.written = b""

    async def read(self, length: int) -> bytes:
        size = min(length, self.chunk) if self.chunk else length
        out, self.data = self.data[:size], self.data[size:]
        return out

    async def readline(self) -> bytes:
        index = self.data.find(b"\n")
        end = len(self.data) if index < 0 else index + 1
        out, self.data = self.data[:end], self.data[end:]
        return out

    async def write(self, data: bytes) -> int:
        self.written += data
        return len(data)


def free_port() -> int:
    """A port nothing listens on (bound and released)."""
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def write_fake_browser(directory: Path, body: str, name: str = "fake-chrome") -> Path:
    """Write an executable /bin/sh script and return its path."""
    path = directory / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def devtools_line(port: int, browser_id: str = FAKE_BROWSER_ID) -> str:
    return f"DevTools listening on ws://127.0.0.1:{port}/devtools/browser/{browser_id}"


def event(method: str, **params: Any) -> dict[str, Any]:
    return {"method": method, "params": params}


@dataclass
class FakeDevTools:
    """
    Scripted Chrome DevTools peer.

    Serves GET /json/version and WebSocket connections on
    /devtools/browser/{id} and /devtools/page/{targetId}. Each command is
    recorded in `calls` and answered from `replies` (a dict result, or
    {"error": {...}} for an error reply). Events in `before` / `after` are
    sent around the reply to the named method.
    """
    version: str = "HeadlessChrome/120.0.6099.109"
    pdf: bytes = FAKE_PDF
    replies: dict[str, dict[str, Any]] = field(default_factory=dict)
    before: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    after: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    calls: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)
    port: int = 0

    def __post_init__(self) -> None:
        defaults = {
            "Target.createTarget": {"targetId": FAKE_TARGET_ID},
            "Target.closeTarget": {"success": True},
            "Page.navigate": {"frameId": FAKE_FRAME_ID, "loaderId": "L1"},
            "Page.printToPDF": {"data": base64.b64encode(self.pdf).decode("ascii")},
            "Runtime.evaluate": {"result": {"type": "undefined"}},
        }
        self.replies = {**defaults, **self.replies}
        default_after = {
            "Page.navigate": [
                event("Network.requestWillBeSent", requestId="R1", request={"url": "https://example.com/"}),
                event("Network.loadingFinished", requestId="R1"),
                event("Page.frameStoppedLoading", frameId=FAKE_FRAME_ID),
            ],
            "Page.setDocumentContent": [event("Page.loadEventFired", timestamp=1.0)],
        }
        self.after = {**default_after, **self.after}

    def methods(self, path_prefix: str = "") -> list[str]:
        return [method for path, method, _ in self.calls if path.startswith(path_prefix)]

    def params_of(self, method: str) -> dict[str, Any]:
        return next(params for _, m, params in self.calls if m == method)

    def process_request(self, connection, request):
        if request.path == "/json/version":
            return connection.respond(HTTPStatus.OK, json.dumps({
                "Browser": self.version,
                "Protocol-Version": "1.3",
                "webSocketDebuggerUrl": f"ws://127.0.0.1:{self.port}/devtools/browser/{FAKE_BROWSER_ID}",
            }))
        return None

    async def handler(self, websocket) -> None:
        path = websocket.request.path
        self.paths.append(path)
        try:
            async for raw in websocket:
                message = json.loads(raw)
                method = message["method"]
                self.calls.append((path, method, message.get("params", {})))

                for item in self.before.get(method, []):
                    await websocket.send(json.dumps(item))
                reply = self.replies.get(method, {})
                if "error" in reply:
                    await websocket.send(json.dumps({"id": message["id"], "error": reply["error"]}))
                else:
                    await websocket.send(json.dumps({"id": message["id"], "result": reply}))
                for item in self.after.get(method, []):
                    await websocket.send(json.dumps(item))
        except ConnectionClosed:
            pass

    def serve(self):
        return serve(self.handler, "127.0.0.1", 0, process_request=self.process_request)
