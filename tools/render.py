"""
Render tool implementation.

Sequences the browser adapters into one HTML→PDF conversion:

    SELECT_ENDPOINT → CONNECTING → TARGET_OPEN → CONTENT_LOADING →
    NETWORK_IDLE_WAIT → LAYOUT_WAIT → PRINTING → TAB_CLOSING → DONE
                                  (ERROR from any state)

Endpoint selection walks an ordered list of strategies (remote first,
then local). A strategy that fails while connecting falls through to the
next with a warning; once page work has begun there is no fallback.
Everything acquired along the way (process, sockets, temp files) is
released through one AsyncExitStack.
"""

import asyncio
import base64
import logging
import time
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from adapters.cdp import WAIT_FOR_NETWORK, CDPSession
from adapters.chrome import ProcessSupervisor, probe_remote
from config import ChromeConfig, load_config
from models import (
    FileStorage,
    InvalidInputError,
    LocalEndpoint,
    ProtocolError,
    RemoteEndpoint,
    RenderError,
    RenderJob,
    RenderResult,
    RenderTimeoutError,
    UrlSource,
)
from transport import DeflateCompressor
from workspace import DirectoryStorage, TemporaryFileStorage

log = logging.getLogger(__name__)

# In-page promise: resolves when the document reports layout readiness,
# rejects after 10s. Independent of the render timeout.
WAIT_FOR_LAYOUT = """
new Promise((fulfill, reject) => {
    let timeoutId = setTimeout(() => reject('fail'), 10000);

    if (document.documentElement.dataset.layoutReady === 'yes') {
        clearTimeout(timeoutId);
        fulfill(null);
        return;
    }

    document.addEventListener('layout-ready', e => {
        clearTimeout(timeoutId);
        fulfill(e.detail);
    }, {
        once: true
    });
})
"""

# Runtime.evaluate failsafe (ms); does not bound the awaited promise
EVALUATE_TIMEOUT_MS = 1000

# Bound on the browser-level close handshake; Chrome doesn't always answer
BROWSER_CLOSE_TIMEOUT = 5

# Fixed printToPDF overrides, applied on top of the job's parameters
PRINT_OVERRIDES = {"transferMode": "ReturnAsBase64", "printBackground": True}


class RenderState(Enum):
    SELECT_ENDPOINT = "select_endpoint"
    CONNECTING = "connecting"
    TARGET_OPEN = "target_open"
    CONTENT_LOADING = "content_loading"
    NETWORK_IDLE_WAIT = "network_idle_wait"
    LAYOUT_WAIT = "layout_wait"
    PRINTING = "printing"
    TAB_CLOSING = "tab_closing"
    DONE = "done"
    ERROR = "error"


@dataclass
class BrowserHandle:
    """A browser-level CDP session plus where to reach its pages."""
    session: CDPSession
    debug_address: str   # host:port for /devtools/page/{targetId}
    label: str           # "remote host:port" / "local /path/to/chrome"


# ============================================================================
# ENDPOINT STRATEGIES
# ============================================================================

class EndpointStrategy:
    """One way of getting a browser. Resources go onto the given stack."""

    label = "browser"

    def __init__(self, config: ChromeConfig, logger: logging.Logger | None = None):
        self.config = config
        self._log = logger or log

    async def open(self, stack: AsyncExitStack) -> BrowserHandle:
        raise NotImplementedError

    async def _connect(self, stack: AsyncExitStack, uri: str, debug_address: str) -> BrowserHandle:
        session = await CDPSession.open(
            uri,
            name="browser",
            timeout=self.config.browser_timeout,
            compression=DeflateCompressor() if self.config.compression else None,
            logger=self._log,
        )
        stack.push_async_callback(session.connection.disconnect)
        return BrowserHandle(session, debug_address, self.label)


class RemoteStrategy(EndpointStrategy):
    """Attach to an already-running browser via /json/version."""

    def __init__(self, endpoint: RemoteEndpoint, config: ChromeConfig, logger: logging.Logger | None = None):
        super().__init__(config, logger)
        self.endpoint = endpoint
        self.label = f"remote {endpoint}"

    async def open(self, stack: AsyncExitStack) -> BrowserHandle:
        remote = await probe_remote(self.endpoint.host, self.endpoint.port)
        address = str(self.endpoint)
        return await self._connect(stack, f"ws://{address}/devtools/browser/{remote.browser_id}", address)


class LocalStrategy(EndpointStrategy):
    """Launch the configured binary under a ProcessSupervisor."""

    def __init__(self, endpoint: LocalEndpoint, config: ChromeConfig, logger: logging.Logger | None = None):
        super().__init__(config, logger)
        self.endpoint = endpoint
        self.label = f"local {endpoint}"

    async def open(self, stack: AsyncExitStack) -> BrowserHandle:
        supervisor = ProcessSupervisor(
            self.endpoint.binary,
            startup_timeout=self.config.startup_timeout,
            terminate_grace=self.config.terminate_grace,
            logger=self._log,
        )
        browser = await stack.enter_async_context(supervisor)
        return await self._connect(stack, browser.browser_uri, browser.debug_address)


def endpoint_strategies(config: ChromeConfig, logger: logging.Logger | None = None) -> list[EndpointStrategy]:
    """Remote first (if configured), then local (if configured)."""
    strategies: list[EndpointStrategy] = []
    if config.host:
        strategies.append(RemoteStrategy(RemoteEndpoint(config.host, config.port), config, logger))
    if config.binary:
        strategies.append(LocalStrategy(LocalEndpoint(config.binary), config, logger))
    return strategies


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class RenderOrchestrator:
    """
    Runs one render job through the state machine.

    Args:
        config: Browser settings
        strategies: Endpoint strategies in priority order (default: from config)
        logger: Destination for render diagnostics
    """

    def __init__(
        self,
        config: ChromeConfig,
        strategies: list[EndpointStrategy] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self._log = logger or log
        self.strategies = strategies if strategies is not None else endpoint_strategies(config, self._log)
        self.state = RenderState.SELECT_ENDPOINT
        self.warnings: list[str] = []
        self._open_target: str | None = None

    def _enter(self, state: RenderState) -> None:
        self._log.debug(f"Render state {self.state.name} -> {state.name}")
        self.state = state

    async def render(self, job: RenderJob) -> RenderResult:
        """
        Render `job` to PDF bytes.

        Raises:
            ProcessStartError: Local browser could not be started
            BrowserConnectionError: No endpoint reachable, or connection lost
            ProtocolError: Browser answered a command with an error or bad shape
            RenderTimeoutError: Startup, socket or whole-render timeout
        """
        started = time.monotonic()
        try:
            async with AsyncExitStack() as stack:
                handle = await self._select_endpoint(stack)
                details = {"endpoint": handle.label}
                try:
                    async with asyncio.timeout(self.config.render_timeout) as scope:
                        pdf = await self._print(handle, job, details)
                except TimeoutError as e:
                    # Outside the expired scope, so closeTarget can still run
                    await self._discard_target(handle.session)
                    if isinstance(e, RenderError) or not scope.expired():
                        raise
                    raise RenderTimeoutError(
                        f"Render did not finish within {self.config.render_timeout}s",
                        {**details, "state": self.state.value},
                    ) from e
                except RenderError:
                    await self._discard_target(handle.session)
                    raise
        except BaseException:
            self._enter(RenderState.ERROR)
            raise

        self._enter(RenderState.DONE)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        self._log.info(f"Rendered {len(pdf)} bytes via {handle.label} in {elapsed_ms}ms")
        return RenderResult(pdf=pdf, endpoint=handle.label, elapsed_ms=elapsed_ms, warnings=list(self.warnings))

    async def _select_endpoint(self, stack: AsyncExitStack) -> BrowserHandle:
        if not self.strategies:
            raise InvalidInputError("Set a binary or remote first: no browser endpoint configured")

        last_error: RenderError | None = None
        for index, strategy in enumerate(self.strategies):
            self._enter(RenderState.CONNECTING)
            attempt = AsyncExitStack()
            try:
                handle = await strategy.open(attempt)
            except RenderError as e:
                await attempt.aclose()
                last_error = e
                if index + 1 < len(self.strategies):
                    message = f"Failed to connect to {strategy.label} ({e}), trying {self.strategies[index + 1].label}"
                    self._log.warning(message)
                    self.warnings.append(message)
                continue
            except BaseException:
                await attempt.aclose()
                raise
            await stack.enter_async_context(attempt)
            self._log.debug(f"Using {handle.label}")
            return handle

        raise last_error

    async def _print(self, handle: BrowserHandle, job: RenderJob, details: dict[str, Any]) -> bytes:
        browser = handle.session

        self._enter(RenderState.TARGET_OPEN)
        result = await browser.call("Target.createTarget", {"url": "about:blank"})
        target_id = result.get("targetId")
        if not target_id:
            raise ProtocolError(f"Expected target id. Got instead: {result}", details)
        details["target_id"] = target_id
        self._open_target = target_id

        async with await CDPSession.open(
            f"ws://{handle.debug_address}/devtools/page/{target_id}",
            name="page",
            timeout=self.config.page_timeout,
            logger=self._log,
        ) as page:
            await self._enable_domains(page)
            await self._load_content(page, job, target_id, details)

            self._enter(RenderState.NETWORK_IDLE_WAIT)
            await page.wait_for(WAIT_FOR_NETWORK)
            self.warnings.extend(f"Request failed: {failure}" for failure in page.network.failures)

            if job.layout_script:
                await self._wait_for_layout(page, job.layout_script)

            self._enter(RenderState.PRINTING)
            result = await page.call("Page.printToPDF", {**job.print_parameters.to_cdp(), **PRINT_OVERRIDES})
            data = result.get("data")
            if not data:
                raise ProtocolError(f"Expected base64 data. Got instead: {sorted(result)}", details)
            pdf = base64.b64decode(data)

        self._enter(RenderState.TAB_CLOSING)
        self._open_target = None
        result = await browser.call("Target.closeTarget", {"targetId": target_id})
        if not result.get("success"):
            raise ProtocolError(f"Expected close confirmation. Got instead: {result}", details)

        try:
            await asyncio.wait_for(browser.close(), timeout=BROWSER_CLOSE_TIMEOUT)
        except (RenderError, asyncio.TimeoutError) as e:
            self._log.debug(f"Failed to close browser connection: {e}")
        return pdf

    async def _enable_domains(self, page: CDPSession) -> None:
        for domain in ("Log", "Network", "Page"):
            await page.call(f"{domain}.enable")
        try:
            await page.call("Console.enable")
        except ProtocolError as e:
            self._log.debug(f"Console.enable failed (deprecated domain): {e}")

    async def _load_content(self, page: CDPSession, job: RenderJob, target_id: str, details: dict[str, Any]) -> None:
        self._enter(RenderState.CONTENT_LOADING)
        if isinstance(job.source, UrlSource):
            result = await page.call("Page.navigate", {"url": job.source.url})
            frame_id = result.get("frameId")
            if not frame_id:
                raise ProtocolError(f"Expected navigation frame. Got instead: {result}", details)
            if result.get("errorText"):
                message = f"Navigation to {job.source.url} reported {result['errorText']}"
                self._log.warning(message)
                self.warnings.append(message)
            await page.wait_for("Page.frameStoppedLoading", {"frameId": frame_id})
        else:
            await page.call("Page.setDocumentContent", {"frameId": target_id, "html": job.source.html})
            await page.wait_for("Page.loadEventFired")

    async def _wait_for_layout(self, page: CDPSession, layout_script: str) -> None:
        """Trigger client-side layout under print media and await readiness. Never fatal."""
        self._enter(RenderState.LAYOUT_WAIT)
        await page.call("Emulation.setEmulatedMedia", {"media": "print"})
        await page.call("Runtime.evaluate", {
            "timeout": EVALUATE_TIMEOUT_MS,
            "expression": f"setTimeout(() => {{ {layout_script} }}, 0)",
        })
        result = await page.call("Runtime.evaluate", {
            "awaitPromise": True,
            "returnByValue": True,
            "timeout": EVALUATE_TIMEOUT_MS,
            "expression": WAIT_FOR_LAYOUT,
        })

        exception = result.get("exceptionDetails")
        if exception:
            description = (exception.get("exception") or {}).get("description")
            if description:
                self._log.error(f"PDF layout failed to initialize: {description}")
                self.warnings.append(f"PDF layout failed to initialize: {description}")
            else:
                self._log.warning("PDF layout failed to initialize. Pages might look skewed.")
                self.warnings.append("PDF layout failed to initialize. Pages might look skewed.")

        await page.call("Emulation.setEmulatedMedia", {"media": ""})

    async def _discard_target(self, browser: CDPSession) -> None:
        """Best-effort close of a tab left open by a failed render."""
        target_id, self._open_target = self._open_target, None
        if target_id is None:
            return
        try:
            await asyncio.wait_for(
                browser.call("Target.closeTarget", {"targetId": target_id}),
                timeout=BROWSER_CLOSE_TIMEOUT,
            )
        except (RenderError, asyncio.TimeoutError) as e:
            self._log.debug(f"Could not close target {target_id}: {e}")


# ============================================================================
# TOOL ENTRY POINTS
# ============================================================================

async def do_render(
    job: RenderJob,
    config: ChromeConfig | None = None,
    logger: logging.Logger | None = None,
) -> RenderResult:
    """
    Render a job to PDF.

    With force_temp_storage, inline HTML is written to a temp file first and
    the browser navigates to its file:// URL.

    Args:
        job: What to print and how
        config: Browser settings (default: load_config())
        logger: Destination for diagnostics

    Returns:
        RenderResult with the PDF bytes
    """
    config = config or load_config()
    if config.force_temp_storage and job.is_inline:
        with TemporaryFileStorage() as storage:
            file_job = RenderJob.from_html(
                job.source.html, job.print_parameters, job.layout_script,
                as_file=True, storage=storage,
            )
            return await RenderOrchestrator(config, logger=logger).render(file_job)
    return await RenderOrchestrator(config, logger=logger).render(job)


def render_pdf(job: RenderJob, config: ChromeConfig | None = None) -> bytes:
    """Synchronous wrapper: PDF bytes for `job`."""
    return asyncio.run(do_render(job, config)).pdf


async def save_pdf(
    job: RenderJob,
    config: ChromeConfig | None = None,
    storage: FileStorage | None = None,
    filename: str | None = None,
) -> Path:
    """
    Render and write the PDF through `storage`.

    Args:
        job: What to print
        config: Browser settings
        storage: Where to write (default: ./headless-print/)
        filename: Target name (default: headless-print-<random>.pdf)

    Returns:
        Absolute path of the written PDF
    """
    result = await do_render(job, config)
    storage = storage or DirectoryStorage()
    path = storage.create(filename or f"headless-print-{uuid.uuid4().hex}.pdf", result.pdf)
    log.info(f"Saved PDF to {path}")
    return path
