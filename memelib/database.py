"""
SQLite handle for a meme library.

One Database object owns every connection to the library file:

- a single write connection, serialized by a lock, on which each mutation
  runs as one BEGIN IMMEDIATE transaction (rolled back on any exception)
- one read connection per thread; each read operation runs inside a
  deferred transaction so that all of its statements see one WAL snapshot

Lock contention ("database is locked") is retried a bounded number of
times with exponential backoff, then surfaced as StorageUnavailable.
"""

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar

from .errors import LibraryError, StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_BASE_DELAY = 0.05   # seconds
RETRY_MAX_DELAY = 1.0


def _is_busy_error(exc: sqlite3.Error) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


def _casefold(value):
    """SQL casefold(): Unicode-aware counterpart of lower()."""
    return value.casefold() if isinstance(value, str) else value


class Database:
    """Explicitly owned connection set for one SQLite file."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 5000,
        busy_retries: int = 5,
    ):
        """
        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long SQLite itself waits on a lock
            busy_retries: Extra attempts after SQLite gives up
        """
        self._db_path = Path(db_path)
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retries = busy_retries
        self._write_lock = threading.Lock()
        self._local = threading.local()
        self._read_conns: list[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._closed = False
        self._on_commit: list[Callable[[], None]] = []
        self._write_conn: Optional[sqlite3.Connection] = self._connect()

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None: transactions are issued explicitly
            conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=self._busy_timeout_ms / 1000,
            )
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailable(f"Cannot open database {self._db_path}: {e}") from e
        try:
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
            self.retry(lambda: conn.execute("PRAGMA journal_mode=WAL"), "enable WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.create_function("casefold", 1, _casefold, deterministic=True)
        except (LibraryError, sqlite3.Error) as e:
            conn.close()
            if isinstance(e, LibraryError):
                raise
            raise StorageUnavailable(f"Cannot open database {self._db_path}: {e}") from e
        return conn

    def retry(self, fn: Callable[[], T], what: str) -> T:
        """Run fn, retrying on lock contention with exponential backoff."""
        delay = RETRY_BASE_DELAY
        for attempt in range(self._busy_retries + 1):
            try:
                return fn()
            except sqlite3.OperationalError as e:
                if not _is_busy_error(e):
                    raise StorageUnavailable(f"Database error during {what}: {e}") from e
                if attempt >= self._busy_retries:
                    raise StorageUnavailable(
                        f"Database is locked ({what}); gave up after {attempt + 1} attempts"
                    ) from e
                logger.debug("Database busy during %s, retrying in %.2fs", what, delay)
                time.sleep(delay)
                delay = min(delay * 2, RETRY_MAX_DELAY)
        raise AssertionError("unreachable")

    def _require_open(self) -> None:
        if self._closed:
            raise StorageUnavailable("Library is closed")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Exclusive write transaction.

        Commits when the block exits normally; rolls back on any exception,
        so a failed mutation leaves no partial effect. Callbacks registered
        with on_commit() run after COMMIT, still under the write lock, so
        they observe commits in database order.
        """
        self._require_open()
        with self._write_lock:
            conn = self._write_conn
            self._on_commit = []
            self.retry(lambda: conn.execute("BEGIN IMMEDIATE"), "begin write")
            try:
                yield conn
            except BaseException as exc:
                self._on_commit = []
                self._rollback(conn)
                if isinstance(exc, sqlite3.Error):
                    raise StorageUnavailable(f"Database error: {exc}") from exc
                raise
            try:
                self.retry(lambda: conn.execute("COMMIT"), "commit")
            except LibraryError:
                self._on_commit = []
                self._rollback(conn)
                raise
            callbacks, self._on_commit = self._on_commit, []
            for callback in callbacks:
                callback()

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run callback once the current transaction() has committed."""
        self._on_commit.append(callback)

    def data_version(self) -> int:
        """
        PRAGMA data_version of the write connection.

        The value changes only when another connection, i.e. another
        Library object or process, commits to the file.
        """
        self._require_open()
        with self._write_lock:
            return self.retry(
                lambda: self._write_conn.execute("PRAGMA data_version").fetchone()[0],
                "read data version",
            )

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.warning("Rollback failed: %s", e)

    def _read_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
            with self._conns_lock:
                self._read_conns.append(conn)
        return conn

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """
        Consistent read view.

        Nested snapshots on the same thread share the outer transaction.
        """
        self._require_open()
        conn = self._read_connection()
        if conn.in_transaction:
            yield conn
            return
        self.retry(lambda: conn.execute("BEGIN"), "begin read")
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Database error: {e}") from e
        finally:
            self._rollback(conn)  # read-only: nothing to keep

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close every connection. Further use raises StorageUnavailable."""
        if self._closed:
            return
        self._closed = True
        with self._conns_lock:
            conns, self._read_conns = self._read_conns, []
        for conn in conns:
            conn.close()
        with self._write_lock:
            if self._write_conn is not None:
                self._write_conn.close()
                self._write_conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
