"""
Error types for snapsync, plus a helper to log tracebacks for the CLI.

AuthError and NetworkError abort a sync pass or drain and are retried on the
next interval. RenderError goes back to whoever asked for derived media.
StorageUnavailable is fatal for the current process.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class SnapSyncError(Exception):
    """Base class for snapsync errors."""


class AuthError(SnapSyncError):
    """Missing, expired or rejected access token."""


class NetworkError(SnapSyncError):
    """Transport failure talking to the remote service."""


class RemoteError(SnapSyncError):
    """The remote service answered with an error status."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class RemoteNotFound(RemoteError):
    """The remote file or folder does not exist."""


class RenderError(SnapSyncError):
    """The filter renderer could not produce an image."""


class StorageUnavailable(SnapSyncError):
    """The local database could not be opened."""


class RecordNotFound(SnapSyncError, KeyError):
    """No local record with the requested id."""


def log_exception(exc: Exception, log_path: Path, context: str = "") -> Path:
    """
    Append the current traceback to log_path.

    Args:
        exc: The exception that occurred
        log_path: File to append to
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write(f" {type(exc).__name__}: {exc}\n")
            f.write(traceback.format_exc())
    except OSError:
        pass  # the error log is best effort
    return log_path
