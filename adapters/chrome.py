"""
Chrome adapter — launch a local headless browser or probe a remote one.

ProcessSupervisor owns one local browser process for the duration of an
`async with` block. Startup races two tasks:

    stderr scan  ──┐
                   ├── asyncio.wait(FIRST_COMPLETED, timeout=startup_timeout)
    process exit ──┘

- scan wins: debug address found, stderr keeps draining in the background
- exit wins: ProcessStartError with the exit status
- neither: SIGABRT, reap, RenderTimeoutError

The process is terminated (SIGTERM, then SIGKILL after a grace period) on
every exit path, and its private home directory is removed.

probe_remote() asks an already-running browser for its DevTools endpoint
via GET /json/version; local_version() runs `binary --version`.
"""

import asyncio
import logging
import os
import re
import shutil
import signal
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from models import (
    BrowserConnectionError,
    ProcessStartError,
    ProtocolError,
    RenderTimeoutError,
)

log = logging.getLogger(__name__)

# "DevTools listening on ws://127.0.0.1:40123/devtools/browser/6f1c...-..."
DEBUG_ADDR_PATTERN = re.compile(
    r"DevTools listening on ws://((?:\d{1,3}\.){3}\d{1,3}:\d+)/devtools/browser/([\w-]+)"
)

# "Google Chrome 120.0.6099.109", "HeadlessChrome/120.0.6099.109"
VERSION_PATTERN = re.compile(r"(\d+)\.[\d.]+")

# Fixed flag set for local launches; profile and home go to a private temp dir
BROWSER_FLAGS = [
    "--bwsi",
    "--headless",
    "--disable-gpu",
    "--no-sandbox",
    "--no-first-run",
    "--disable-dev-shm-usage",
    "--remote-debugging-port=0",
]

PROBE_TIMEOUT = 10  # seconds, /json/version and --version


def browser_arguments(binary: str, home: Path) -> list[str]:
    """Full argv for a local launch."""
    return [binary, *BROWSER_FLAGS, f"--homedir={home}", f"--user-data-dir={home}"]


def parse_major_version(version: str) -> int | None:
    """Major version from a version string, or None if there is none."""
    match = VERSION_PATTERN.search(version)
    return int(match.group(1)) if match else None


@dataclass
class BrowserProcess:
    """A running local browser with a known DevTools endpoint."""
    process: asyncio.subprocess.Process
    debug_address: str   # host:port
    browser_id: str
    home: Path

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def browser_uri(self) -> str:
        return f"ws://{self.debug_address}/devtools/browser/{self.browser_id}"


class ProcessSupervisor:
    """
    Sole owner of one local browser process.

    Usage:
        async with ProcessSupervisor("/usr/bin/google-chrome") as browser:
            ... connect to browser.browser_uri ...

    Args:
        binary: Path to the Chrome/Chromium executable
        startup_timeout: Seconds to wait for the DevTools line on stderr
        terminate_grace: Seconds between SIGTERM and SIGKILL on shutdown
        logger: Destination for process diagnostics
    """

    def __init__(
        self,
        binary: str,
        *,
        startup_timeout: float = 10,
        terminate_grace: float = 5,
        logger: logging.Logger | None = None,
    ):
        self.binary = binary
        self.startup_timeout = startup_timeout
        self.terminate_grace = terminate_grace
        self.process: asyncio.subprocess.Process | None = None
        self.exit_status: int | None = None
        self._home: Path | None = None
        self._drain_task: asyncio.Task | None = None
        self._log = logger or log

    async def __aenter__(self) -> BrowserProcess:
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.terminate()

    async def start(self) -> BrowserProcess:
        """
        Launch the browser and wait for its DevTools address.

        Raises:
            ProcessStartError: Binary missing/unexecutable or exited early
            RenderTimeoutError: No DevTools line within startup_timeout
        """
        details: dict[str, Any] = {"binary": self.binary}
        self._home = Path(tempfile.mkdtemp(prefix="headless-print-home-"))
        argv = browser_arguments(self.binary, self._home)

        env = None
        if sys.platform.startswith("linux"):
            env = {**os.environ, "HOME": str(self._home)}
            self._log.debug(f"Starting browser process: HOME={self._home} exec {' '.join(argv)}")
        else:
            self._log.debug(f"Starting browser process: {' '.join(argv)}")

        try:
            self.process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            await self.terminate()
            raise ProcessStartError(f"Cannot start browser {self.binary}: {e}", details) from e

        details["pid"] = self.process.pid
        scan = asyncio.create_task(self._scan_stderr())
        exited = asyncio.create_task(self.process.wait())
        try:
            done, _ = await asyncio.wait(
                {scan, exited},
                timeout=self.startup_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if scan in done and scan.result() is not None:
                debug_address, browser_id = scan.result()
                exited.cancel()
                self._log.info(f"Browser {self.process.pid} listening on {debug_address}")
                self._drain_task = asyncio.create_task(self._drain_stderr())
                return BrowserProcess(self.process, debug_address, browser_id, self._home)

            if not done:
                self._log.error(
                    f"Terminated browser process after {self.startup_timeout} seconds "
                    "elapsed without the expected output"
                )
                self._signal(signal.SIGABRT)
                await self._reap()
                raise RenderTimeoutError(
                    f"Browser did not report a DevTools address within {self.startup_timeout}s",
                    details,
                )

            # stderr closed or process gone without a debug line
            status = await self._reap()
            details["exit_status"] = status
            raise ProcessStartError(
                f"Browser exited with status {status} before reporting a DevTools address",
                details,
            )
        except BaseException:
            scan.cancel()
            exited.cancel()
            await self.terminate()
            raise

    async def terminate(self) -> None:
        """SIGTERM, wait up to terminate_grace, then SIGKILL. Idempotent."""
        if self.process is not None and self.process.returncode is None:
            self._signal(signal.SIGTERM)
            try:
                await asyncio.wait_for(self.process.wait(), timeout=self.terminate_grace)
            except asyncio.TimeoutError:
                self._log.warning(
                    f"Browser {self.process.pid} ignored SIGTERM for {self.terminate_grace}s, killing"
                )
                self._signal(signal.SIGKILL)
                await self.process.wait()
        if self.process is not None and self.exit_status is None:
            self.exit_status = self.process.returncode
            self._log.debug(f"Browser {self.process.pid} exited with status {self.exit_status}")

        if self._drain_task is not None:
            self._drain_task.cancel()
            self._drain_task = None
        if self._home is not None:
            shutil.rmtree(self._home, ignore_errors=True)
            self._home = None

    def _signal(self, signum: int) -> None:
        try:
            self.process.send_signal(signum)
        except ProcessLookupError:
            pass  # already gone

    async def _reap(self) -> int:
        """Wait for exit, escalating to SIGKILL after the grace period."""
        try:
            return await asyncio.wait_for(self.process.wait(), timeout=self.terminate_grace)
        except asyncio.TimeoutError:
            self._signal(signal.SIGKILL)
            return await self.process.wait()

    async def _scan_stderr(self) -> tuple[str, str] | None:
        async for raw in self.process.stderr:
            line = raw.decode("utf-8", errors="replace").strip()
            self._log.debug(f"Caught browser output: {line}")
            match = DEBUG_ADDR_PATTERN.search(line)
            if match:
                return match.group(1), match.group(2)
        return None

    async def _drain_stderr(self) -> None:
        async for raw in self.process.stderr:
            self._log.debug(f"Caught browser output: {raw.decode('utf-8', errors='replace').rstrip()}")


# ============================================================================
# REMOTE BROWSER / VERSION PROBES
# ============================================================================

@dataclass
class RemoteBrowser:
    """What /json/version told us about a running browser."""
    browser_id: str
    version: str         # "Browser" field, e.g. "HeadlessChrome/120.0.6099.109"
    debugger_url: str


async def probe_remote(host: str, port: int, timeout: float = PROBE_TIMEOUT) -> RemoteBrowser:
    """
    GET http://host:port/json/version.

    Raises:
        BrowserConnectionError: Unreachable or non-200
        RenderTimeoutError: No answer within timeout
        ProtocolError: Answer lacks webSocketDebuggerUrl
    """
    url = f"http://{host}:{port}/json/version"
    details = {"endpoint": f"{host}:{port}"}
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
    except httpx.TimeoutException as e:
        raise RenderTimeoutError(f"Timed out probing {url}", details) from e
    except httpx.HTTPError as e:
        raise BrowserConnectionError(f"Failed to connect to remote chrome {url}: {e}", details) from e

    if response.status_code != 200:
        raise BrowserConnectionError(f"{url} answered {response.status_code}", details)
    try:
        data = response.json()
        debugger_url = data["webSocketDebuggerUrl"]
    except (ValueError, KeyError, TypeError) as e:
        raise ProtocolError(f"{url} did not report webSocketDebuggerUrl", details) from e

    return RemoteBrowser(
        browser_id=debugger_url.rstrip("/").rsplit("/", 1)[-1],
        version=data.get("Browser", ""),
        debugger_url=debugger_url,
    )


async def local_version(binary: str, timeout: float = PROBE_TIMEOUT) -> str:
    """
    Output of `binary --version`.

    Raises:
        ProcessStartError: Binary missing, or non-zero exit
        RenderTimeoutError: No answer within timeout
    """
    details = {"binary": binary}
    try:
        process = await asyncio.create_subprocess_exec(
            binary, "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProcessStartError(f"Cannot run {binary}: {e}", details) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise RenderTimeoutError(f"{binary} --version did not finish within {timeout}s", details) from e

    if process.returncode != 0:
        raise ProcessStartError(
            stderr.decode("utf-8", errors="replace").strip() or f"{binary} --version failed",
            {**details, "exit_status": process.returncode},
        )
    return stdout.decode("utf-8", errors="replace").strip()
