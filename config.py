"""
Browser Configuration - Single Source of Truth

All browser/render settings and their defaults live here. Environment
variables override the defaults via load_config(); callers may also build
a ChromeConfig directly.
"""

import os
from dataclasses import dataclass, replace

# Default local browser binary
DEFAULT_CHROME_BINARY = "/usr/bin/google-chrome"

# Default DevTools port of a remote browser
DEFAULT_REMOTE_PORT = 9222

# Oldest Chrome major version with headless printToPDF support
MIN_CHROME_VERSION = 59

# Timeouts (seconds)
STARTUP_TIMEOUT = 10      # Local launch until "DevTools listening on ..."
BROWSER_TIMEOUT = 60      # Socket reads on the browser-level connection
PAGE_TIMEOUT = 300        # Socket reads on the page-level connection
RENDER_TIMEOUT = 300      # Whole page phase (create target ... close target)
TERMINATE_GRACE = 5       # SIGTERM → SIGKILL

# Environment variable names
ENV_BINARY = "HEADLESS_PRINT_CHROME_BINARY"
ENV_HOST = "HEADLESS_PRINT_CHROME_HOST"
ENV_PORT = "HEADLESS_PRINT_CHROME_PORT"
ENV_FORCE_TEMP_STORAGE = "HEADLESS_PRINT_FORCE_TEMP_STORAGE"

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ChromeConfig:
    """
    Resolved browser settings for one render.

    A remote endpoint is used when `host` is set; a local launch when
    `binary` is set. With both, remote is tried first.
    """
    binary: str | None = DEFAULT_CHROME_BINARY
    host: str | None = None
    port: int = DEFAULT_REMOTE_PORT
    force_temp_storage: bool = False  # Write inline HTML to a file:// URL first
    compression: bool = False         # Offer permessage-deflate on the browser connection
    startup_timeout: float = STARTUP_TIMEOUT
    browser_timeout: float = BROWSER_TIMEOUT
    page_timeout: float = PAGE_TIMEOUT
    render_timeout: float = RENDER_TIMEOUT
    terminate_grace: float = TERMINATE_GRACE

    def with_overrides(self, **changes) -> "ChromeConfig":
        """Copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def load_config(environ: dict[str, str] | None = None) -> ChromeConfig:
    """
    Build a ChromeConfig from environment variables.

    An empty HEADLESS_PRINT_CHROME_BINARY disables local launch.

    Raises:
        ValueError: If the port is not an integer
    """
    env = os.environ if environ is None else environ

    binary = env.get(ENV_BINARY, DEFAULT_CHROME_BINARY) or None
    host = env.get(ENV_HOST) or None
    port_value = env.get(ENV_PORT) or str(DEFAULT_REMOTE_PORT)
    try:
        port = int(port_value)
    except ValueError as e:
        raise ValueError(f"{ENV_PORT} must be an integer, got {port_value!r}") from e
    force_temp = env.get(ENV_FORCE_TEMP_STORAGE, "").strip().lower() in _TRUE

    return ChromeConfig(binary=binary, host=host, port=port, force_temp_storage=force_temp)
