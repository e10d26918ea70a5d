"""
Meme rows.

Functions here take an open connection and never commit: the caller owns
the transaction (Database.transaction or Database.snapshot), which is what
makes a multi-step mutation atomic.
"""

import sqlite3
from typing import Optional

from .errors import NotFound
from .types import Meme, utc_now


_MEME_COLUMNS = """
    meme.id, meme.content, meme.extra_data, meme.summary, meme.description,
    meme.fav, meme.trash, meme.create_time, meme.update_time
"""


def row_to_meme(row: sqlite3.Row) -> Meme:
    return Meme(
        id=row["id"],
        content=row["content"],
        extra_data=row["extra_data"],
        summary=row["summary"],
        desc=row["description"],
        fav=bool(row["fav"]),
        trash=bool(row["trash"]),
        created_at=row["create_time"],
        updated_at=row["update_time"],
    )


# -------------------------------------------------------------------------
# Write Operations
# -------------------------------------------------------------------------

def insert_meme(
    conn: sqlite3.Connection,
    content: str,
    summary: str,
    desc: str,
    extra_data: Optional[str] = None,
) -> int:
    """Insert a new meme with fav = trash = false. Returns its id."""
    now = utc_now()
    cursor = conn.execute("""
        INSERT INTO meme (content, extra_data, summary, description,
                          fav, trash, create_time, update_time)
        VALUES (?, ?, ?, ?, 0, 0, ?, ?)
    """, (content, extra_data, summary, desc, now, now))
    return cursor.lastrowid


def update_meme(
    conn: sqlite3.Connection,
    id: int,
    *,
    summary: Optional[str] = None,
    desc: Optional[str] = None,
    extra_data: Optional[str] = None,
) -> None:
    """
    Update the supplied fields and bump update_time.

    None means "not supplied". update_time is bumped even when no field is
    given, because a tag-only update still modifies the meme.

    Raises:
        NotFound: If no meme has this id
    """
    assignments = ["update_time = ?"]
    params: list = [utc_now()]
    if summary is not None:
        assignments.append("summary = ?")
        params.append(summary)
    if desc is not None:
        assignments.append("description = ?")
        params.append(desc)
    if extra_data is not None:
        assignments.append("extra_data = ?")
        params.append(extra_data)
    params.append(id)

    cursor = conn.execute(
        f"UPDATE meme SET {', '.join(assignments)} WHERE id = ?", params
    )
    if cursor.rowcount == 0:
        raise NotFound(f"Meme not found: {id}")


def set_flag(conn: sqlite3.Connection, id: int, flag: str, value: bool) -> bool:
    """
    Set the fav or trash flag. Does not touch update_time.

    Returns:
        True if the stored value changed

    Raises:
        NotFound: If no meme has this id
    """
    if flag not in ("fav", "trash"):
        raise ValueError(f"Unknown flag: {flag}")
    row = conn.execute(f"SELECT {flag} FROM meme WHERE id = ?", (id,)).fetchone()
    if row is None:
        raise NotFound(f"Meme not found: {id}")
    if bool(row[0]) == bool(value):
        return False
    conn.execute(f"UPDATE meme SET {flag} = ? WHERE id = ?", (int(bool(value)), id))
    return True


# -------------------------------------------------------------------------
# Read Operations
# -------------------------------------------------------------------------

def get_meme(conn: sqlite3.Connection, id: int) -> Meme:
    """
    Raises:
        NotFound: If no meme has this id
    """
    row = conn.execute(
        f"SELECT {_MEME_COLUMNS} FROM meme WHERE id = ?", (id,)
    ).fetchone()
    if row is None:
        raise NotFound(f"Meme not found: {id}")
    return row_to_meme(row)


def exists(conn: sqlite3.Connection, id: int) -> bool:
    return conn.execute("SELECT 1 FROM meme WHERE id = ?", (id,)).fetchone() is not None


def find_by_content(conn: sqlite3.Connection, content: str) -> Optional[int]:
    """Id of the oldest meme referencing this content file, if any."""
    row = conn.execute(
        "SELECT id FROM meme WHERE content = ? ORDER BY id LIMIT 1", (content,)
    ).fetchone()
    return None if row is None else row[0]


def count_memes(conn: sqlite3.Connection) -> int:
    """Count all memes, trashed included."""
    return conn.execute("SELECT COUNT(*) FROM meme").fetchone()[0]


def count_flagged(conn: sqlite3.Connection) -> tuple[int, int]:
    """(favorites not in trash, trashed)"""
    row = conn.execute("""
        SELECT
            COALESCE(SUM(CASE WHEN fav = 1 AND trash = 0 THEN 1 ELSE 0 END), 0),
            COALESCE(SUM(CASE WHEN trash = 1 THEN 1 ELSE 0 END), 0)
        FROM meme
    """).fetchone()
    return row[0], row[1]


def meme_select_columns() -> str:
    """Column list shared with the search query builder."""
    return _MEME_COLUMNS
