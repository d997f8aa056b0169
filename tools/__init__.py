"""
Tools — render and check implementations.

Each tool has its own module with the implementation logic.
server.py and cli.py provide thin wrappers that call into these.

- render: HTML or URL → PDF bytes (do_render, render_pdf, save_pdf)
- check: browser version detection and validation (do_check)
"""

from .render import do_render, render_pdf, save_pdf, RenderOrchestrator
from .check import do_check, detect_version

__all__ = [
    "do_render", "render_pdf", "save_pdf", "RenderOrchestrator",
    "do_check", "detect_version",
]
