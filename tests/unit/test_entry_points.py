"""
Unit tests for the thin wrappers: MCP tools in server.py and the CLI.

Both read browser settings from the environment, so each test points
HEADLESS_PRINT_CHROME_* at a FakeDevTools peer.
"""

import json
from pathlib import Path

import pytest

import cli
import server
from config import ENV_BINARY, ENV_HOST, ENV_PORT
from tests.helpers import FAKE_PDF, FakeDevTools, free_port, write_fake_browser

HTML = "<html><body>Invoice</body></html>"


@pytest.fixture
def remote_env(monkeypatch: pytest.MonkeyPatch, devtools: FakeDevTools) -> FakeDevTools:
    monkeypatch.setenv(ENV_BINARY, "")
    monkeypatch.setenv(ENV_HOST, "127.0.0.1")
    monkeypatch.setenv(ENV_PORT, str(devtools.port))
    return devtools


class TestRenderTool:
    """server.render_pdf"""

    @pytest.mark.asyncio
    async def test_writes_under_base_path(self, remote_env: FakeDevTools, tmp_path: Path) -> None:
        result = await server.render_pdf(base_path=str(tmp_path), html=HTML, title="Invoice 42")
        expected = (tmp_path / "headless-print" / "invoice-42.pdf").resolve()
        assert result == {"path": str(expected), "bytes": len(FAKE_PDF)}
        assert expected.read_bytes() == FAKE_PDF

    @pytest.mark.asyncio
    async def test_url_names_file(self, remote_env: FakeDevTools, tmp_path: Path) -> None:
        result = await server.render_pdf(base_path=str(tmp_path), url="https://example.com/report")
        assert result["path"].endswith("https-example-com-report.pdf")
        assert remote_env.params_of("Page.navigate") == {"url": "https://example.com/report"}

    @pytest.mark.asyncio
    async def test_margin_fans_out(self, remote_env: FakeDevTools, tmp_path: Path) -> None:
        await server.render_pdf(base_path=str(tmp_path), html=HTML, margin=0.25, landscape=True)
        sent = remote_env.params_of("Page.printToPDF")
        assert sent["landscape"] is True
        assert [sent[k] for k in ("marginTop", "marginBottom", "marginLeft", "marginRight")] == [0.25] * 4

    @pytest.mark.asyncio
    async def test_needs_exactly_one_source(self, tmp_path: Path) -> None:
        both = await server.render_pdf(base_path=str(tmp_path), html=HTML, url="https://example.com/")
        neither = await server.render_pdf(base_path=str(tmp_path))
        assert both["kind"] == neither["kind"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_needs_base_path(self) -> None:
        result = await server.render_pdf(base_path="", html=HTML)
        assert result["error"] is True
        assert "base_path is required" in result["message"]

    @pytest.mark.asyncio
    async def test_render_error_as_dict(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv(ENV_BINARY, "")
        monkeypatch.setenv(ENV_HOST, "127.0.0.1")
        monkeypatch.setenv(ENV_PORT, str(free_port()))
        result = await server.render_pdf(base_path=str(tmp_path), html=HTML)
        assert result["error"] is True
        assert result["kind"] == "connection"


class TestCheckTool:
    """server.check_browser"""

    @pytest.mark.asyncio
    async def test_reports_version(self, remote_env: FakeDevTools) -> None:
        result = await server.check_browser()
        assert result["major"] == 120
        assert result["supported"] is True

    @pytest.mark.asyncio
    async def test_too_old_as_dict(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        binary = write_fake_browser(tmp_path, 'echo "Google Chrome 57.0.2987.98"')
        monkeypatch.setenv(ENV_BINARY, str(binary))
        monkeypatch.delenv(ENV_HOST, raising=False)
        result = await server.check_browser()
        assert result["kind"] == "version_unsupported"


class TestCli:
    """cli.main; asyncio.run needs a thread without a running loop, so these are sync."""

    def test_version(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        binary = write_fake_browser(tmp_path, 'echo "Chromium 120.0.6099.109"')
        monkeypatch.delenv(ENV_HOST, raising=False)
        assert cli.main(["--binary", str(binary), "version"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out == {
            "endpoint": f"local {binary}",
            "version": "Chromium 120.0.6099.109",
            "major": 120,
            "supported": True,
        }

    def test_error_exit_code(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        monkeypatch.delenv(ENV_HOST, raising=False)
        code = cli.main(["--binary", str(tmp_path / "missing"), "version"])
        assert code == 1
        error = json.loads(capsys.readouterr().err)
        assert error["kind"] == "process_start"

    def test_render_needs_output(self) -> None:
        with pytest.raises(SystemExit):
            cli.main(["render", "page.html"])
