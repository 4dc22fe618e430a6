"""Logging configuration for the MCP tool OAuth service.

All loggers live under the ``mcp_tool_oauth`` namespace and write to stderr,
since stdout carries the MCP protocol in stdio transport mode.

Usage:
    from .logging_config import get_logger

    logger = get_logger("oauth.callback")
    logger.info("Callback received: state_present=%s", bool(state))
"""

from __future__ import annotations

import logging
import os
import sys

LOGGER_NAMESPACE = "mcp_tool_oauth"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure the package logger.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL environment
            variable, then INFO.
    """
    global _configured

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger(LOGGER_NAMESPACE)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the package namespace.

    Args:
        name: Dotted module name relative to the package (e.g. "oauth.exchange")

    Returns:
        logging.Logger named ``mcp_tool_oauth.<name>``
    """
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
