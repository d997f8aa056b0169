"""
Browser check tool implementation.

Reports the configured browser's version and validates it against
MIN_CHROME_VERSION. Same endpoint priority as rendering: the remote
browser's /json/version first, then `binary --version`.
"""

import logging

from adapters.chrome import local_version, parse_major_version, probe_remote
from config import MIN_CHROME_VERSION, ChromeConfig, load_config
from models import BrowserInfo, InvalidInputError, RenderError, VersionUnsupportedError

log = logging.getLogger(__name__)


async def detect_version(config: ChromeConfig) -> BrowserInfo:
    """
    Find out which browser version the config points at.

    Raises:
        InvalidInputError: Neither a remote host nor a binary is configured
        VersionUnsupportedError: The version string has no recognisable number
        (plus whatever the probe raises when no fallback is left)
    """
    version: str | None = None
    endpoint = ""

    if config.host:
        try:
            remote = await probe_remote(config.host, config.port)
            version, endpoint = remote.version, f"remote {config.host}:{config.port}"
        except RenderError as e:
            if not config.binary:
                raise
            log.warning(f"Failed to connect to remote chrome: {config.host}:{config.port} ({e})")

    if version is None:
        if not config.binary:
            raise InvalidInputError("Set a binary or remote first: no browser endpoint configured")
        version, endpoint = await local_version(config.binary), f"local {config.binary}"

    major = parse_major_version(version)
    if major is None:
        raise VersionUnsupportedError(
            f"Could not determine browser version from {version!r}", {"endpoint": endpoint},
        )
    return BrowserInfo(
        endpoint=endpoint,
        version=version,
        major=major,
        supported=major >= MIN_CHROME_VERSION,
    )


async def do_check(config: ChromeConfig | None = None) -> BrowserInfo:
    """
    Detect the browser version and require at least MIN_CHROME_VERSION.

    Raises:
        VersionUnsupportedError: Browser too old (or unparseable version)
    """
    info = await detect_version(config or load_config())
    if not info.supported:
        raise VersionUnsupportedError(
            f"At least Chrome {MIN_CHROME_VERSION} is required, {info.endpoint} is {info.major}",
            {"endpoint": info.endpoint, "version": info.version},
        )
    log.info(f"{info.endpoint}: {info.version}")
    return info
