"""Unit tests for workspace manager."""

import pytest
from pathlib import Path

from workspace import slugify, DirectoryStorage, TemporaryFileStorage
from workspace.manager import DEFAULT_OUTPUT_DIR


class TestSlugify:
    """Tests for the slugify function."""

    def test_basic_slug(self) -> None:
        """Test basic slugification."""
        assert slugify("Quarterly Report 2026") == "quarterly-report-2026"

    def test_removes_special_chars(self) -> None:
        """Test that special characters are removed."""
        assert slugify("Q4 Planning (Draft)!!!") == "q4-planning-draft"

    def test_handles_unicode(self) -> None:
        """Test that unicode is normalized."""
        assert slugify("Über Cool Präsentation") == "uber-cool-prasentation"

    def test_url(self) -> None:
        """URLs make usable file names too."""
        assert slugify("https://example.com/report") == "https-example-com-report"

    def test_truncates_long_titles(self) -> None:
        """Test that long titles are truncated."""
        long_title = "This is a very long report title that exceeds the maximum"
        result = slugify(long_title, max_length=30)
        assert len(result) <= 30
        assert not result.endswith("-")

    def test_empty_string(self) -> None:
        """Test that empty strings return 'untitled'."""
        assert slugify("") == "untitled"
        assert slugify("!!!") == "untitled"


class TestDirectoryStorage:
    """Tests for fixed-root storage."""

    def test_default_root_under_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Default root is ./headless-print."""
        monkeypatch.chdir(tmp_path)
        assert DirectoryStorage().root == (tmp_path / DEFAULT_OUTPUT_DIR).resolve()

    def test_create_writes_bytes(self, tmp_path: Path) -> None:
        """Test that content lands under the root and the path is returned."""
        storage = DirectoryStorage(tmp_path)
        path = storage.create("report.pdf", b"%PDF-1.4")
        assert path == (tmp_path / "report.pdf").resolve()
        assert path.read_bytes() == b"%PDF-1.4"

    def test_create_makes_parents(self, tmp_path: Path) -> None:
        """Test that nested folders are created on demand."""
        path = DirectoryStorage(tmp_path / "out").create("a/b/page.html", b"<html></html>")
        assert path.is_file()
        assert path.parent == (tmp_path / "out" / "a" / "b").resolve()

    def test_refuses_escape(self, tmp_path: Path) -> None:
        """Test that relative paths cannot leave the root."""
        storage = DirectoryStorage(tmp_path / "root")
        with pytest.raises(ValueError, match="escapes storage root"):
            storage.create("../outside.pdf", b"x")
        assert not (tmp_path / "outside.pdf").exists()


class TestTemporaryFileStorage:
    """Tests for the self-cleaning temp storage."""

    def test_cleanup_removes_files(self) -> None:
        """Test that the whole temp dir goes away."""
        storage = TemporaryFileStorage()
        path = storage.create("page.html", b"<html></html>")
        assert path.is_file()
        assert storage.root.name.startswith("headless-print-")
        storage.cleanup()
        assert not storage.root.exists()

    def test_context_manager(self) -> None:
        """Test that leaving the block cleans up."""
        with TemporaryFileStorage(prefix="hp-test-") as storage:
            path = storage.create("page.html", b"<html></html>")
        assert not path.exists()
