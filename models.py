"""
Type definitions for headless-print.

Dataclasses defining the contracts between layers:
- Config and callers produce RenderJobs
- Adapters (chrome, cdp) raise the RenderError taxonomy
- Tools wire everything together and return RenderResults

These types make the caller→tool contract explicit and IDE-checkable.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol


# ============================================================================
# ERROR TYPES
# ============================================================================

class ErrorKind(Enum):
    """Categories of render failures."""
    PROCESS_START = "process_start"          # Binary missing or exited before debug line
    CONNECTION = "connection"                # Endpoint unreachable or handshake failed
    PROTOCOL = "protocol"                    # Malformed or failed CDP reply
    TIMEOUT = "timeout"                      # Startup, socket or render timeout
    VERSION_UNSUPPORTED = "version_unsupported"  # Browser older than MIN_CHROME_VERSION
    INVALID_INPUT = "invalid_input"          # Bad job or parameters


class RenderError(Exception):
    """
    Structured error for consistent handling across layers.

    Adapters raise the subclasses below.
    Tools catch and format for MCP/CLI response.
    """

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for MCP response."""
        return {
            "error": True,
            "kind": self.kind.value,
            "message": self.message,
            **self.details,
        }


class ProcessStartError(RenderError):
    """Browser binary missing/unexecutable, or exited before printing its debug address."""
    kind = ErrorKind.PROCESS_START


class BrowserConnectionError(RenderError, ConnectionError):
    """Remote endpoint unreachable, handshake failed, or the socket died mid-job."""
    kind = ErrorKind.CONNECTION


class ProtocolError(RenderError):
    """CDP reply carried an error object or lacked an expected field."""
    kind = ErrorKind.PROTOCOL

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: int | None = None,
    ):
        super().__init__(message, details)
        self.code = code
        if code is not None:
            self.details.setdefault("code", code)


class RenderTimeoutError(RenderError, TimeoutError):
    """Startup, socket or whole-render timeout."""
    kind = ErrorKind.TIMEOUT


class VersionUnsupportedError(RenderError):
    """Detected browser major version is below the supported minimum."""
    kind = ErrorKind.VERSION_UNSUPPORTED


class InvalidInputError(RenderError, ValueError):
    """Job or configuration cannot be rendered as given."""
    kind = ErrorKind.INVALID_INPUT


# ============================================================================
# ENDPOINTS
# ============================================================================

@dataclass(frozen=True)
class RemoteEndpoint:
    """An already-running browser reachable over the network."""
    host: str
    port: int = 9222

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class LocalEndpoint:
    """A browser binary we launch ourselves."""
    binary: str

    def __str__(self) -> str:
        return self.binary


Endpoint = RemoteEndpoint | LocalEndpoint


# ============================================================================
# STORAGE CAPABILITY
# ============================================================================

class FileStorage(Protocol):
    """Where temp HTML and saved PDFs go. See workspace/ for the default."""

    def create(self, path: str, content: bytes) -> Path:
        """Write `content` under relative `path` and return the absolute location."""
        ...


# ============================================================================
# RENDER JOB
# ============================================================================

@dataclass(frozen=True)
class UrlSource:
    """Navigate to a URL (http(s):// or file://)."""
    url: str


@dataclass(frozen=True)
class HtmlSource:
    """Inline HTML injected with Page.setDocumentContent."""
    html: str


@dataclass(frozen=True)
class PrintParameters:
    """
    Caller-facing Page.printToPDF options. Unset fields are left to Chrome.
    Backgrounds are always printed.

    Paper sizes and margins are in inches, as CDP expects.
    """
    landscape: bool | None = None
    scale: float | None = None
    paper_width: float | None = None
    paper_height: float | None = None
    margin_top: float | None = None
    margin_bottom: float | None = None
    margin_left: float | None = None
    margin_right: float | None = None
    page_ranges: str | None = None          # e.g. "1-5, 8"
    header_template: str | None = None      # HTML, see CDP docs for classes
    footer_template: str | None = None
    prefer_css_page_size: bool | None = None

    def to_cdp(self) -> dict[str, Any]:
        """Parameter dict for Page.printToPDF."""
        mapping = {
            "landscape": self.landscape,
            "scale": self.scale,
            "paperWidth": self.paper_width,
            "paperHeight": self.paper_height,
            "marginTop": self.margin_top,
            "marginBottom": self.margin_bottom,
            "marginLeft": self.margin_left,
            "marginRight": self.margin_right,
            "pageRanges": self.page_ranges,
            "preferCSSPageSize": self.prefer_css_page_size,
        }
        params: dict[str, Any] = {k: v for k, v in mapping.items() if v is not None}

        if self.header_template is not None or self.footer_template is not None:
            params["displayHeaderFooter"] = True
            # Chrome falls back to its default template on an empty string
            params["headerTemplate"] = self.header_template or " "
            params["footerTemplate"] = self.footer_template or " "
        return params


@dataclass(frozen=True)
class RenderJob:
    """
    One HTML→PDF conversion.

    The source is either a URL to navigate to or inline HTML; use the
    from_url/from_html constructors. `layout_script` is evaluated after the
    page settled, and the render then waits for the document to signal
    layout readiness (see tools/render.py).
    """
    source: UrlSource | HtmlSource
    print_parameters: PrintParameters = field(default_factory=PrintParameters)
    layout_script: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.source, (UrlSource, HtmlSource)):
            raise InvalidInputError("Nothing to print: job needs either a URL or inline HTML")

    @classmethod
    def from_url(
        cls,
        url: str,
        print_parameters: PrintParameters | None = None,
        layout_script: str | None = None,
    ) -> RenderJob:
        return cls(UrlSource(url), print_parameters or PrintParameters(), layout_script)

    @classmethod
    def from_html(
        cls,
        html: str,
        print_parameters: PrintParameters | None = None,
        layout_script: str | None = None,
        as_file: bool = False,
        storage: FileStorage | None = None,
    ) -> RenderJob:
        """
        Build a job for inline HTML.

        Args:
            html: Full HTML document
            print_parameters: printToPDF options
            layout_script: In-page expression that starts client-side layout
            as_file: Write the HTML through `storage` and navigate to its
                file:// URL instead of injecting it
            storage: Storage capability, required when as_file is set
        """
        params = print_parameters or PrintParameters()
        if not as_file:
            return cls(HtmlSource(html), params, layout_script)
        if storage is None:
            raise InvalidInputError("as_file requires a storage capability")
        path = storage.create(f"headless-print-{uuid.uuid4().hex}.html", html.encode("utf-8"))
        return cls(UrlSource(Path(path).resolve().as_uri()), params, layout_script)

    @property
    def is_inline(self) -> bool:
        return isinstance(self.source, HtmlSource)


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class RenderResult:
    """A finished render."""
    pdf: bytes
    endpoint: str                 # "remote host:port" or "local /path/to/chrome"
    elapsed_ms: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass
class BrowserInfo:
    """What check_browser reports."""
    endpoint: str
    version: str                  # Full version string as reported
    major: int
    supported: bool
