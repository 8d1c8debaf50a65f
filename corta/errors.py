"""
Error types and error logging utilities for corta.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class CortaError(Exception):
    """Base class for corta errors."""


class StoreError(CortaError):
    """The relational page store rejected or failed an operation."""


class IndexClientError(CortaError):
    """Error communicating with the semantic index service."""


class DocumentNotFound(IndexClientError):
    """The index has no document with the requested ID."""


class GenerationError(CortaError):
    """The text-generation service failed or returned nothing usable."""


class InvalidTransition(CortaError):
    """A sync status change that the status machine does not allow."""

    def __init__(self, page_id: str, current: str, target: str):
        self.page_id = page_id
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move page {page_id} from sync status {current!r} to {target!r}"
        )


def _error_log_path() -> Path:
    """Resolve error log path, respecting CORTA_STORE_PATH."""
    store = os.environ.get("CORTA_STORE_PATH")
    if store:
        return Path(store) / "corta-errors.log"
    return Path.home() / ".corta" / "corta-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
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
        pass  # Can't write error log, don't crash over it
    return log_path
