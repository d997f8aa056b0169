#!/usr/bin/env python3
"""
Headless Print MCP Server

HTML → PDF through a headless Chrome, exposed as MCP tools.

Tools:
- render_pdf: Inline HTML or a URL to a PDF file on disk
- check_browser: Which browser is configured and whether it is supported

Filesystem-first: PDFs are written under {base_path}/headless-print/ and the
path is returned, never the bytes.

Architecture:
- transport/: WebSocket client (RFC 6455 + permessage-deflate)
- adapters/: Chrome process supervision and the CDP session
- tools/: Tool implementations (render orchestration, version check)
- workspace/: File storage for temp HTML and saved PDFs
- server.py: Thin MCP wrappers (this file)
"""

import os
import signal
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from config import load_config
from logging_config import configure_logging
from models import PrintParameters, RenderError, RenderJob
from tools import do_check, save_pdf
from workspace import DirectoryStorage
from workspace.manager import DEFAULT_OUTPUT_DIR, slugify

# Initialize MCP server
mcp = FastMCP("Headless Print")


# ============================================================================
# TOOLS (thin wrappers)
# ============================================================================

@mcp.tool()
async def render_pdf(
    base_path: str,
    html: str | None = None,
    url: str | None = None,
    title: str | None = None,
    landscape: bool | None = None,
    scale: float | None = None,
    paper_width: float | None = None,
    paper_height: float | None = None,
    margin: float | None = None,
    page_ranges: str | None = None,
    header_template: str | None = None,
    footer_template: str | None = None,
    layout_script: str | None = None,
) -> dict[str, Any]:
    """
    Render inline HTML or a URL to PDF.

    Args:
        base_path: Directory for output (pass your cwd; PDFs land in headless-print/)
        html: Full HTML document to print
        url: Page to navigate to instead of html (http(s):// or file://)
        title: Used for the file name (default: derived from url, else "document")
        landscape: Landscape orientation
        scale: Rendering scale (0.1-2)
        paper_width: Inches
        paper_height: Inches
        margin: All four margins, inches
        page_ranges: e.g. "1-5, 8"
        header_template: Header HTML (enables header/footer)
        footer_template: Footer HTML (enables header/footer)
        layout_script: In-page expression that starts client-side layout;
            the render waits for the page's 'layout-ready' signal

    Returns:
        path: Absolute path of the written PDF
        bytes: Size of the PDF
    """
    if not base_path:
        return {"error": True, "kind": "invalid_input",
                "message": "base_path is required: pass your working directory so PDFs land in your project"}
    if bool(html) == bool(url):
        return {"error": True, "kind": "invalid_input", "message": "Pass exactly one of html or url"}

    params = PrintParameters(
        landscape=landscape,
        scale=scale,
        paper_width=paper_width,
        paper_height=paper_height,
        margin_top=margin,
        margin_bottom=margin,
        margin_left=margin,
        margin_right=margin,
        page_ranges=page_ranges,
        header_template=header_template,
        footer_template=footer_template,
    )
    job = RenderJob.from_url(url, params, layout_script) if url else RenderJob.from_html(html, params, layout_script)
    filename = f"{slugify(title or url or 'document')}.pdf"

    try:
        path = await save_pdf(
            job, load_config(), DirectoryStorage(Path(base_path) / DEFAULT_OUTPUT_DIR), filename,
        )
    except RenderError as e:
        return e.to_dict()
    return {"path": str(path), "bytes": path.stat().st_size}


@mcp.tool()
async def check_browser() -> dict[str, Any]:
    """
    Report the configured browser and whether it can print (Chrome 59+).

    Returns:
        endpoint: "remote host:port" or "local /path/to/chrome"
        version: Version string as reported by the browser
        major: Major version number
        supported: Always true on success (unsupported versions are errors)
    """
    try:
        info = await do_check(load_config())
    except RenderError as e:
        return e.to_dict()
    return {
        "endpoint": info.endpoint,
        "version": info.version,
        "major": info.major,
        "supported": info.supported,
    }


# ============================================================================
# SERVER ENTRY POINT
# ============================================================================

def _shutdown_handler(signum: int, frame: object) -> None:
    """Handle termination signals by exiting immediately.

    os._exit() is required because sys.exit() raises SystemExit,
    which asyncio's event loop catches and ignores.
    """
    os._exit(0)


def main() -> None:
    configure_logging(os.environ.get("HEADLESS_PRINT_LOG_LEVEL", "INFO"))
    signal.signal(signal.SIGTERM, _shutdown_handler)
    signal.signal(signal.SIGINT, _shutdown_handler)
    mcp.run()


if __name__ == "__main__":
    main()
