"""
Logging configuration for thread-mcp.

Quiet by default: HTTP and LLM client libraries only report errors.
The MCP stdio transport owns stdout, so log output goes to stderr or files.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

PACKAGE_LOGGER = "thread_mcp"
OPS_LOG_FILENAME = "thread-mcp-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

_NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai", "mcp", "urllib3")


def configure_quiet_mode(quiet: bool = True):
    """
    Set client library loggers to ERROR and hide deprecation warnings.

    Args:
        quiet: False restores the libraries' own levels.
    """
    level = logging.ERROR if quiet else logging.NOTSET
    if quiet:
        warnings.filterwarnings("ignore", category=DeprecationWarning)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S",
        ))
        root.addHandler(handler)

    for name in (PACKAGE_LOGGER,) + _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Attach a rotating operations log in a storage directory.

    Records INFO and above from the thread_mcp loggers, whatever the
    stderr verbosity. Returns the handler so callers can detach it.
    """
    directory = Path(store_path)
    directory.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        str(directory / OPS_LOG_FILENAME),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S",
    ))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.addHandler(handler)
    if package_logger.level == logging.NOTSET or package_logger.level > logging.INFO:
        package_logger.setLevel(logging.INFO)
    return handler
