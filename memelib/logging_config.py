"""
Logging setup.

Everything logs under the "memelib" logger. Nothing reaches stderr unless
debug mode is on; each open Library additionally appends its own mutations
to memelib-ops.log in its data directory.
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path


OPS_LOG_FILENAME = "memelib-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

_LOGGER_NAME = "memelib"
_DEBUG_HANDLER_NAME = "memelib-debug"


def configure_quiet_mode(quiet: bool = True) -> None:
    """Only warnings and errors from memelib pass, unless an ops log lowers the level."""
    if quiet:
        logging.getLogger(_LOGGER_NAME).setLevel(logging.WARNING)


def enable_debug_mode() -> None:
    """Send memelib DEBUG records to stderr."""
    lib_logger = logging.getLogger(_LOGGER_NAME)
    lib_logger.setLevel(logging.DEBUG)
    if any(h.get_name() == _DEBUG_HANDLER_NAME for h in lib_logger.handlers):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_DEBUG_HANDLER_NAME)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    lib_logger.addHandler(handler)


def library_logger(name: str, data_dir: Path) -> logging.LoggerAdapter:
    """Logger whose records carry the library they concern."""
    return logging.LoggerAdapter(logging.getLogger(name), {"data_dir": str(data_dir)})


class _LibraryFilter(logging.Filter):
    """Pass only records logged through library_logger() for one data dir."""

    def __init__(self, data_dir: Path):
        super().__init__()
        self.data_dir = str(data_dir)

    def filter(self, record: logging.LogRecord) -> bool:
        return getattr(record, "data_dir", None) == self.data_dir


# data dir -> [handler, number of open libraries using it]
_ops_handlers: dict[str, list] = {}
_ops_lock = threading.Lock()


def configure_ops_log(data_dir: Path) -> RotatingFileHandler:
    """
    Attach the operations log of one library.

    Records at INFO and above that were logged for this library go to
    {data_dir}/memelib-ops.log regardless of quiet mode. Libraries open
    on the same directory share one handler. Several processes may share
    the file, so each line carries the pid.

    Returns:
        The handler, to pass to remove_ops_log() on close
    """
    key = str(data_dir)
    with _ops_lock:
        entry = _ops_handlers.get(key)
        if entry is not None:
            entry[1] += 1
            return entry[0]

        handler = RotatingFileHandler(
            str(Path(data_dir) / OPS_LOG_FILENAME),
            maxBytes=OPS_LOG_MAX_BYTES,
            backupCount=OPS_LOG_BACKUPS,
            encoding="utf-8",
        )
        handler.setLevel(logging.INFO)
        handler.addFilter(_LibraryFilter(data_dir))
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(process)d] %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        _ops_handlers[key] = [handler, 1]

    lib_logger = logging.getLogger(_LOGGER_NAME)
    lib_logger.addHandler(handler)
    if lib_logger.level == logging.NOTSET or lib_logger.level > logging.INFO:
        lib_logger.setLevel(logging.INFO)
    return handler


def remove_ops_log(handler: RotatingFileHandler) -> None:
    """Release a handler returned by configure_ops_log(); the last user closes it."""
    with _ops_lock:
        for key, entry in list(_ops_handlers.items()):
            if entry[0] is handler:
                entry[1] -= 1
                if entry[1] > 0:
                    return
                del _ops_handlers[key]
                break
    logging.getLogger(_LOGGER_NAME).removeHandler(handler)
    handler.close()
