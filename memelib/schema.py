"""
Schema creation and migration for the library database.

The schema version lives in table_version (single row, id = 1). A fresh
database is created at version 1 and then brought forward by the same
ordered migrations an old database would run, so both paths end in an
identical schema.
"""

import logging
import sqlite3
from typing import Callable

from .database import Database
from .errors import IncompatibleSchema

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

# executescript() would commit the open transaction, so statements are
# kept as lists and executed one at a time inside it.
_CREATE_TABLE_VERSION = """
    CREATE TABLE IF NOT EXISTS table_version (
        id INTEGER PRIMARY KEY,
        version_code INTEGER NOT NULL
    )
"""

_CREATE_V1 = [
    """
    CREATE TABLE IF NOT EXISTS meme (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content TEXT NOT NULL,
        extra_data TEXT,
        summary TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        fav INTEGER NOT NULL DEFAULT 0,
        trash INTEGER NOT NULL DEFAULT 0,
        create_time TEXT NOT NULL,
        update_time TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tag (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        namespace TEXT NOT NULL,
        value TEXT NOT NULL,
        UNIQUE (namespace, value)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meme_tag (
        meme_id INTEGER NOT NULL REFERENCES meme(id),
        tag_id INTEGER NOT NULL REFERENCES tag(id) ON DELETE CASCADE,
        PRIMARY KEY (meme_id, tag_id)
    )
    """,
]


def _migrate_1_to_2(conn: sqlite3.Connection) -> None:
    """Indexes for paging order, content lookup and tag joins."""
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_meme_update
        ON meme(update_time DESC, id DESC)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_meme_content
        ON meme(content)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_meme_tag_tag
        ON meme_tag(tag_id)
    """)


# target version -> migration from (target - 1)
MIGRATIONS: dict[int, Callable[[sqlite3.Connection], None]] = {
    2: _migrate_1_to_2,
}


def _read_version(conn: sqlite3.Connection) -> int | None:
    row = conn.execute(
        "SELECT version_code FROM table_version WHERE id = 1"
    ).fetchone()
    return None if row is None else int(row[0])


class SchemaManager:
    """Tracks the on-disk schema version and applies migrations."""

    def __init__(self, db: Database):
        self._db = db

    def ensure_schema(self) -> int:
        """
        Create or migrate the schema to SCHEMA_VERSION.

        Runs in one IMMEDIATE transaction, so concurrent openers serialize
        and a failed migration leaves the old schema intact.

        Returns:
            The schema version after this call

        Raises:
            IncompatibleSchema: If the database is newer than this code
        """
        with self._db.transaction() as conn:
            conn.execute(_CREATE_TABLE_VERSION)
            version = _read_version(conn)

            if version is None:
                for stmt in _CREATE_V1:
                    conn.execute(stmt)
                conn.execute(
                    "INSERT INTO table_version (id, version_code) VALUES (1, 1)"
                )
                version = 1
                logger.info("Created library schema at version 1")

            if version > SCHEMA_VERSION:
                raise IncompatibleSchema(
                    f"Library schema version {version} is newer than supported "
                    f"({SCHEMA_VERSION}); upgrade memelib to open it"
                )

            while version < SCHEMA_VERSION:
                target = version + 1
                logger.info("Upgrading library schema %d -> %d", version, target)
                MIGRATIONS[target](conn)
                conn.execute(
                    "UPDATE table_version SET version_code = ? WHERE id = 1",
                    (target,),
                )
                version = target

        return version

    def current_version(self) -> int:
        """The persisted schema version (0 if never initialized)."""
        with self._db.snapshot() as conn:
            try:
                version = _read_version(conn)
            except sqlite3.OperationalError:
                return 0
        return version or 0

    @staticmethod
    def engine_version() -> str:
        """SQLite library version, for diagnostics only."""
        return sqlite3.sqlite_version
