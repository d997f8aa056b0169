"""
Shared pytest fixtures for headless-print tests.

Network peers are real websockets servers on 127.0.0.1 with an
OS-assigned port; fake browsers are shell scripts in tmp_path.
"""

import shutil
from pathlib import Path
from typing import AsyncIterator

import pytest
import pytest_asyncio
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from config import ChromeConfig
from tests.helpers import FakeDevTools, devtools_line, write_fake_browser

# Candidate binaries for integration tests
CHROME_CANDIDATES = [
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
]


def _port(server) -> int:
    return server.sockets[0].getsockname()[1]


async def _echo(websocket) -> None:
    try:
        async for message in websocket:
            await websocket.send(message)
    except ConnectionClosed:
        pass


@pytest_asyncio.fixture
async def echo_uri() -> AsyncIterator[str]:
    """ws:// URI of an echo server (permessage-deflate available)."""
    async with serve(_echo, "127.0.0.1", 0) as server:
        yield f"ws://127.0.0.1:{_port(server)}/"


@pytest_asyncio.fixture
async def devtools() -> AsyncIterator[FakeDevTools]:
    """A running FakeDevTools; tweak replies/events before rendering."""
    fake = FakeDevTools()
    async with fake.serve() as server:
        fake.port = _port(server)
        yield fake


@pytest.fixture
def fake_chrome(tmp_path: Path, devtools: FakeDevTools) -> Path:
    """Executable that announces the FakeDevTools endpoint and stays alive."""
    return write_fake_browser(
        tmp_path,
        f'echo "{devtools_line(devtools.port)}" >&2\nexec sleep 30',
    )


@pytest.fixture
def fast_config() -> ChromeConfig:
    """Short timeouts so failing tests fail quickly."""
    return ChromeConfig(
        binary=None,
        startup_timeout=5,
        browser_timeout=5,
        page_timeout=5,
        render_timeout=10,
        terminate_grace=2,
    )


@pytest.fixture
def chrome_binary() -> str:
    """Path of a real Chrome/Chromium; skips the test if none is installed."""
    for candidate in CHROME_CANDIDATES:
        found = shutil.which(candidate)
        if found:
            return found
    pytest.skip("No Chrome/Chromium binary installed")
