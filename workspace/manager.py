"""
Workspace Manager — file storage for render inputs and outputs.

Two implementations of the storage capability (models.FileStorage):
- TemporaryFileStorage: private temp dir, removed on cleanup(). Used for
  HTML written to disk before navigation (force temp storage).
- DirectoryStorage: a fixed base directory (defaults to ./headless-print/
  in the current working directory). Used by save_pdf.

Both confine relative paths to their root.
"""

import logging
import re
import shutil
import tempfile
import unicodedata
from pathlib import Path

log = logging.getLogger(__name__)

# Folder created under cwd when no output directory is given
DEFAULT_OUTPUT_DIR = "headless-print"


def slugify(text: str, max_length: int = 50) -> str:
    """
    Convert text to a filesystem-safe slug.

    Examples:
        "Q4 Planning Notes (Draft)" -> "q4-planning-notes-draft"
        "https://example.com/report" -> "https-example-com-report"
    """
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    text = re.sub(r"[^a-z0-9]+", "-", text).strip("-")

    if len(text) > max_length:
        # Try to break at a hyphen
        text = text[:max_length].rsplit("-", 1)[0]

    return text or "untitled"


class DirectoryStorage:
    """
    Files under a fixed base directory.

    Args:
        base_path: Root directory (defaults to cwd/headless-print)
    """

    def __init__(self, base_path: Path | None = None):
        self.root = (base_path or Path.cwd() / DEFAULT_OUTPUT_DIR).resolve()

    def resolve_path(self, path: str) -> Path:
        """Absolute location for relative `path`; refuses to escape the root."""
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root):
            raise ValueError(f"Path {path!r} escapes storage root {self.root}")
        return target

    def create(self, path: str, content: bytes) -> Path:
        target = self.resolve_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        log.debug(f"Wrote {len(content)} bytes to {target}")
        return target


class TemporaryFileStorage(DirectoryStorage):
    """Files under a private temp directory; call cleanup() when done."""

    def __init__(self, prefix: str = "headless-print-"):
        super().__init__(Path(tempfile.mkdtemp(prefix=prefix)))

    def cleanup(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)
        log.debug(f"Removed temp storage {self.root}")

    def __enter__(self) -> "TemporaryFileStorage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()
