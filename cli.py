#!/usr/bin/env python3
"""
CLI interface for headless-print.

Usage:
    headless-print render page.html -o page.pdf
    headless-print render https://example.com --url -o example.pdf
    headless-print version

This provides the same functionality as the MCP tools but via command line.
Browser settings come from HEADLESS_PRINT_* environment variables and can
be overridden per call.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from config import load_config
from logging_config import configure_logging
from models import PrintParameters, RenderError, RenderJob
from tools import do_check, do_render

# Default expression that starts client-side layout (see --layout)
DEFAULT_LAYOUT_SCRIPT = "new Layout().apply()"


def _config_from_args(args: argparse.Namespace):
    return load_config().with_overrides(
        binary=args.binary,
        host=args.host,
        port=args.port,
        force_temp_storage=True if getattr(args, "as_file", False) else None,
    )


def cmd_render(args: argparse.Namespace) -> int:
    """Render HTML file, stdin or URL to PDF."""
    params = PrintParameters(
        landscape=args.landscape or None,
        scale=args.scale,
        paper_width=args.paper_width,
        paper_height=args.paper_height,
        margin_top=args.margin,
        margin_bottom=args.margin,
        margin_left=args.margin,
        margin_right=args.margin,
        page_ranges=args.page_ranges,
        header_template=args.header,
        footer_template=args.footer,
        prefer_css_page_size=args.css_page_size or None,
    )
    layout = DEFAULT_LAYOUT_SCRIPT if args.layout else None

    if args.url:
        job = RenderJob.from_url(args.input, params, layout)
    else:
        # "-" reads HTML from stdin
        html = sys.stdin.read() if args.input == "-" else Path(args.input).read_text(encoding="utf-8")
        job = RenderJob.from_html(html, params, layout)

    result = asyncio.run(do_render(job, _config_from_args(args)))
    Path(args.output).write_bytes(result.pdf)
    print(json.dumps({
        "output": str(Path(args.output).resolve()),
        "bytes": len(result.pdf),
        "endpoint": result.endpoint,
        "elapsed_ms": result.elapsed_ms,
        "warnings": result.warnings,
    }, indent=2))
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Show browser version and whether it is supported."""
    info = asyncio.run(do_check(_config_from_args(args)))
    print(json.dumps({
        "endpoint": info.endpoint,
        "version": info.version,
        "major": info.major,
        "supported": info.supported,
    }, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Headless Chrome HTML to PDF",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    headless-print render report.html -o report.pdf
    headless-print render report.html -o report.pdf --landscape --margin 0.4
    cat report.html | headless-print render - -o report.pdf
    headless-print render https://example.com --url -o example.pdf
    headless-print --host 10.0.0.5 render report.html -o report.pdf
    headless-print version
""",
    )
    parser.add_argument("--binary", help="Chrome binary (default: $HEADLESS_PRINT_CHROME_BINARY)")
    parser.add_argument("--host", help="Remote Chrome host (default: $HEADLESS_PRINT_CHROME_HOST)")
    parser.add_argument("--port", type=int, help="Remote Chrome port (default: 9222)")
    parser.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING, ERROR")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # render
    render_p = subparsers.add_parser("render", help="Render HTML or a URL to PDF")
    render_p.add_argument("input", help="HTML file, '-' for stdin, or URL with --url")
    render_p.add_argument("-o", "--output", required=True, help="PDF file to write")
    render_p.add_argument("--url", action="store_true", help="Treat input as a URL to navigate to")
    render_p.add_argument("--as-file", action="store_true", help="Write HTML to a temp file and navigate to it")
    render_p.add_argument("--layout", action="store_true", help="Run the page's Layout script and wait for it")
    render_p.add_argument("--landscape", action="store_true")
    render_p.add_argument("--scale", type=float)
    render_p.add_argument("--paper-width", type=float, help="Inches")
    render_p.add_argument("--paper-height", type=float, help="Inches")
    render_p.add_argument("--margin", type=float, help="All margins, inches")
    render_p.add_argument("--page-ranges", help="e.g. '1-5, 8'")
    render_p.add_argument("--header", help="Header template HTML")
    render_p.add_argument("--footer", help="Footer template HTML")
    render_p.add_argument("--css-page-size", action="store_true", help="Prefer CSS @page size")
    render_p.set_defaults(func=cmd_render)

    # version
    version_p = subparsers.add_parser("version", help="Show browser version")
    version_p.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    try:
        return args.func(args)
    except RenderError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
