"""
Unit tests for configuration loading.
"""

import pytest

from config import (
    DEFAULT_CHROME_BINARY,
    DEFAULT_REMOTE_PORT,
    ENV_BINARY,
    ENV_FORCE_TEMP_STORAGE,
    ENV_HOST,
    ENV_PORT,
    ChromeConfig,
    load_config,
)


class TestLoadConfig:
    def test_defaults(self) -> None:
        config = load_config({})
        assert config.binary == DEFAULT_CHROME_BINARY
        assert config.host is None
        assert config.port == DEFAULT_REMOTE_PORT
        assert not config.force_temp_storage

    def test_environment_overrides(self) -> None:
        config = load_config({
            ENV_BINARY: "/opt/chromium/chrome",
            ENV_HOST: "10.0.0.5",
            ENV_PORT: "9333",
            ENV_FORCE_TEMP_STORAGE: "yes",
        })
        assert config.binary == "/opt/chromium/chrome"
        assert config.host == "10.0.0.5"
        assert config.port == 9333
        assert config.force_temp_storage

    def test_empty_binary_disables_local(self) -> None:
        assert load_config({ENV_BINARY: ""}).binary is None

    def test_bad_port(self) -> None:
        with pytest.raises(ValueError, match=ENV_PORT):
            load_config({ENV_PORT: "ninety"})

    def test_reads_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_HOST, "chrome.internal")
        assert load_config().host == "chrome.internal"


class TestWithOverrides:
    def test_none_keeps_current(self) -> None:
        config = ChromeConfig(host="a").with_overrides(host=None, port=9333)
        assert config.host == "a"
        assert config.port == 9333

    def test_original_unchanged(self) -> None:
        original = ChromeConfig()
        original.with_overrides(binary="/x")
        assert original.binary == DEFAULT_CHROME_BINARY
