"""
Workspace — file storage for render inputs and outputs.

Temp HTML for force-temp-storage renders, saved PDFs for save_pdf.
"""

from .manager import (
    slugify,
    DirectoryStorage,
    TemporaryFileStorage,
)

__all__ = [
    "slugify",
    "DirectoryStorage",
    "TemporaryFileStorage",
]
