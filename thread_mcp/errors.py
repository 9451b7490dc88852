"""
Exceptions and error logging for thread-mcp.

Not-found outcomes are returned as data, never raised. Exceptions are for
bad input (ValidationError) and storage failures (StorageError).

log_exception() keeps full stack traces in a file while the tool layer
returns clean messages to the client.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


ERROR_LOG_FILENAME = "thread-mcp-errors.log"


class ThreadError(Exception):
    """Base class for thread-mcp errors."""


class ValidationError(ThreadError, ValueError):
    """Input reaching the core is malformed or a precondition is unmet."""


class StorageError(ThreadError):
    """A storage backend failed."""


class RemoteStorageError(StorageError):
    """The remote conversation server returned an error or was unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _error_log_path(store_path: Optional[Path] = None) -> Path:
    """Resolve error log path, respecting THREAD_MCP_STORAGE_DIR."""
    if store_path is not None:
        return Path(store_path) / ERROR_LOG_FILENAME
    store = os.environ.get("THREAD_MCP_STORAGE_DIR")
    if store:
        return Path(store) / ERROR_LOG_FILENAME
    return Path.home() / ".thread-mcp" / ERROR_LOG_FILENAME


def log_exception(exc: Exception, context: str = "", store_path: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., tool name)
        store_path: Directory holding the log (default: storage dir)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # error log is best effort
    return log_path
