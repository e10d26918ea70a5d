"""
Error taxonomy for the meme library, and error logging for the CLI.

Every failure that leaves the engine is a LibraryError subclass; raw
sqlite3 and OS errors are wrapped at the boundary where they occur.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class LibraryError(Exception):
    """Base class for all meme library errors."""
    code = "LIBRARY_ERROR"


class NotFound(LibraryError):
    """A referenced meme id or content file does not exist."""
    code = "NOT_FOUND"


class ValidationError(LibraryError, ValueError):
    """Malformed input: empty namespace, oversized text, bad page index..."""
    code = "INVALID_INPUT"


class DuplicateContent(LibraryError):
    """The content being added is already in the library."""
    code = "DUPLICATE_CONTENT"

    def __init__(self, message: str, existing_id: int | None = None):
        super().__init__(message)
        self.existing_id = existing_id


class StorageUnavailable(LibraryError):
    """The database cannot be opened, read or locked."""
    code = "STORAGE_UNAVAILABLE"


class IncompatibleSchema(LibraryError):
    """The on-disk schema is newer than this code understands."""
    code = "INCOMPATIBLE_SCHEMA"


class IOFailure(LibraryError):
    """A filesystem read, write or removal failed."""
    code = "IO_FAILURE"


ERROR_LOG_FILENAME = "memelib-errors.log"


def error_log_path(data_dir: Optional[Path] = None) -> Path:
    """Error log of a library; without data_dir, that of the default library."""
    if data_dir is None:
        env = os.environ.get("MEMELIB_DATA_DIR")
        data_dir = Path(env).expanduser() if env else Path.home() / ".memelib"
    return Path(data_dir) / ERROR_LOG_FILENAME


def log_exception(exc: BaseException, context: str = "", data_dir: Optional[Path] = None) -> Path:
    """
    Append exc with its traceback to the error log.

    Args:
        exc: The exception that occurred
        context: Where it happened (e.g. "memelib CLI")
        data_dir: Library whose log to write (default library if None)

    Returns:
        Path to the error log file
    """
    log_path = error_log_path(data_dir)
    header = f"[{datetime.now(timezone.utc).isoformat()}] {type(exc).__name__}"
    code = getattr(exc, "code", None)
    if code:
        header += f" {code}"
    if context:
        header += f" in {context}"
    record = "\n".join(["", "=" * 60, header, "".join(traceback.format_exception(exc))])
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # owner-only: tracebacks carry paths and meme text
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(record)
    except OSError:
        pass  # the caller is already reporting the original error
    return log_path
