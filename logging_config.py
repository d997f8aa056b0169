"""
Logging configuration for headless-print.

Simple setup that adapters and tools can import.
Transport modules log through their own module loggers only.
"""

import logging
import sys
from typing import Any

# Create logger for the package
logger = logging.getLogger("headless")

# String values in logged CDP params are cut to this length
MAX_LOGGED_VALUE = 256


def configure_logging(level: str = "INFO") -> None:
    """
    Configure logging for headless-print.

    Module loggers (adapters.*, tools.*, transport.*) propagate to the root
    logger, so the handler goes there; the package logger gets the level.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    level_no = getattr(logging, level.upper())
    logger.setLevel(level_no)
    root = logging.getLogger()
    root.setLevel(level_no)

    # Only add handler if not already configured
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)

        # Concise format for MCP context
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)


# NOTE: Call configure_logging() explicitly in server.py, cli.py or test setup.
# We don't auto-configure to avoid side effects on import.


def shorten(value: Any, limit: int = MAX_LOGGED_VALUE) -> Any:
    """Recursively cut long strings so page HTML doesn't flood the log."""
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + f"...(+{len(value) - limit})"
    if isinstance(value, dict):
        return {k: shorten(v, limit) for k, v in value.items()}
    if isinstance(value, list):
        return [shorten(v, limit) for v in value]
    return value


# Convenience functions for common patterns
def log_cdp_call(method: str, call_id: int, params: dict[str, Any] | None = None) -> None:
    """Log an outgoing CDP command."""
    logger.debug(f"CDP: -> {method} #{call_id} {shorten(params or {})}")


def log_cdp_result(method: str, call_id: int, result: dict[str, Any] | None = None) -> None:
    """Log CDP reply summary."""
    if result:
        logger.debug(f"CDP: <- {method} #{call_id} keys={sorted(result)}")
    else:
        logger.debug(f"CDP: <- {method} #{call_id} completed")


def log_cdp_event(method: str, params: dict[str, Any] | None = None) -> None:
    """Log an incoming CDP event."""
    logger.debug(f"CDP: event {method} {shorten(params or {})}")
