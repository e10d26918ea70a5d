"""
Tag dictionary and lookup index.

Tags live in two places:

- SQL tables `tag` (the dictionary of (namespace, value) pairs) and
  `meme_tag` (links). These are the source of truth and are only touched
  inside the caller's transaction.
- TagIndex, an in-memory sorted structure serving autocomplete (prefix)
  and fuzzy lookups. It is loaded from the dictionary when the library
  opens and updated after each committed mutation.

Lookups are case-insensitive: keys are compared after str.casefold().
"""

import bisect
import difflib
import logging
import sqlite3
import threading
from typing import Iterable, Optional

from .types import Tag

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Dictionary and links (SQL)
# -------------------------------------------------------------------------

def get_or_insert_tag(conn: sqlite3.Connection, tag: Tag) -> tuple[int, bool]:
    """
    Look up a tag id, inserting the tag if it doesn't exist.

    Returns:
        (tag id, True if the tag was created)
    """
    row = conn.execute(
        "SELECT id FROM tag WHERE namespace = ? AND value = ?",
        (tag.namespace, tag.value),
    ).fetchone()
    if row is not None:
        return row[0], False
    cursor = conn.execute(
        "INSERT INTO tag (namespace, value) VALUES (?, ?)",
        (tag.namespace, tag.value),
    )
    return cursor.lastrowid, True


def _linked_tags(conn: sqlite3.Connection, meme_id: int) -> dict[Tag, int]:
    cursor = conn.execute("""
        SELECT tag.id, tag.namespace, tag.value
        FROM meme_tag JOIN tag ON meme_tag.tag_id = tag.id
        WHERE meme_tag.meme_id = ?
    """, (meme_id,))
    return {Tag(row["namespace"], row["value"]): row["id"] for row in cursor}


def replace_meme_tags(
    conn: sqlite3.Connection,
    meme_id: int,
    tags: list[Tag],
    *,
    prune_unused: bool = True,
) -> tuple[list[Tag], list[Tag]]:
    """
    Make `tags` the complete tag set of a meme.

    Links not in `tags` are removed; with prune_unused, a tag left without
    any link is deleted from the dictionary.

    Returns:
        (tags added to the dictionary, tags removed from the dictionary)
    """
    current = _linked_tags(conn, meme_id)
    wanted = set(tags)

    created: list[Tag] = []
    pruned: list[Tag] = []

    for tag, tag_id in current.items():
        if tag in wanted:
            continue
        conn.execute(
            "DELETE FROM meme_tag WHERE meme_id = ? AND tag_id = ?",
            (meme_id, tag_id),
        )
        if prune_unused:
            remaining = conn.execute(
                "SELECT COUNT(*) FROM meme_tag WHERE tag_id = ?", (tag_id,)
            ).fetchone()[0]
            if remaining == 0:
                conn.execute("DELETE FROM tag WHERE id = ?", (tag_id,))
                pruned.append(tag)

    for tag in tags:
        if tag in current:
            continue
        tag_id, was_created = get_or_insert_tag(conn, tag)
        conn.execute(
            "INSERT OR IGNORE INTO meme_tag (meme_id, tag_id) VALUES (?, ?)",
            (meme_id, tag_id),
        )
        if was_created:
            created.append(tag)

    return created, pruned


def tags_for_meme(conn: sqlite3.Connection, meme_id: int) -> list[Tag]:
    """All tags of a meme, ordered by (namespace, value)."""
    return sorted(_linked_tags(conn, meme_id))


def tags_for_memes(conn: sqlite3.Connection, meme_ids: list[int]) -> dict[int, list[Tag]]:
    """Tags for several memes at once; ids without tags map to []."""
    result: dict[int, list[Tag]] = {i: [] for i in meme_ids}
    if not meme_ids:
        return result
    placeholders = ",".join("?" * len(meme_ids))
    cursor = conn.execute(f"""
        SELECT meme_tag.meme_id, tag.namespace, tag.value
        FROM meme_tag JOIN tag ON meme_tag.tag_id = tag.id
        WHERE meme_tag.meme_id IN ({placeholders})
        ORDER BY tag.namespace, tag.value
    """, meme_ids)
    for row in cursor:
        result[row["meme_id"]].append(Tag(row["namespace"], row["value"]))
    return result


def all_tags(conn: sqlite3.Connection) -> list[Tag]:
    """Every (namespace, value) pair in the dictionary."""
    cursor = conn.execute("SELECT namespace, value FROM tag")
    return [Tag(row["namespace"], row["value"]) for row in cursor]


def count_tags(conn: sqlite3.Connection) -> int:
    """Count distinct (namespace, value) pairs in the dictionary."""
    return conn.execute("SELECT COUNT(*) FROM tag").fetchone()[0]


# -------------------------------------------------------------------------
# In-memory lookup index
# -------------------------------------------------------------------------

# Ranks for fuzzy matches, best first
_RANK_EXACT = 0
_RANK_PREFIX = 1
_RANK_SUBSTRING = 2
_RANK_SIMILAR = 3


def _prefix_scan(entries: list[tuple[str, str]], prefix: str, limit: int) -> list[str]:
    """Entries are sorted (casefolded key, original) pairs."""
    key = prefix.casefold()
    i = bisect.bisect_left(entries, (key,))
    out: list[str] = []
    while i < len(entries) and len(out) < limit:
        folded, original = entries[i]
        if not folded.startswith(key):
            break
        out.append(original)
        i += 1
    return out


def _insort_unique(entries: list[tuple[str, str]], item: str) -> bool:
    entry = (item.casefold(), item)
    i = bisect.bisect_left(entries, entry)
    if i < len(entries) and entries[i] == entry:
        return False
    entries.insert(i, entry)
    return True


def _remove_sorted(entries: list[tuple[str, str]], item: str) -> bool:
    entry = (item.casefold(), item)
    i = bisect.bisect_left(entries, entry)
    if i < len(entries) and entries[i] == entry:
        del entries[i]
        return True
    return False


class TagIndex:
    """
    Sorted prefix structure over the tag dictionary.

    Every public method holds the lock only for a bisect/slice or a copy.
    A rebuild reads the dictionary and builds its structure without the
    lock; updates that arrive meanwhile are journaled and replayed on top
    before the new structure is swapped in.
    """

    def __init__(self, *, prefix_limit: int = 50, fuzzy_limit: int = 20, fuzzy_cutoff: float = 0.6):
        self.prefix_limit = prefix_limit
        self.fuzzy_limit = fuzzy_limit
        self.fuzzy_cutoff = fuzzy_cutoff
        self._lock = threading.Lock()
        self._namespaces: list[tuple[str, str]] = []
        self._values: dict[str, list[tuple[str, str]]] = {}
        self._journal: Optional[list[tuple[str, Tag]]] = None

    # -- maintenance --

    @staticmethod
    def _build(tags: Iterable[Tag]) -> tuple[list[tuple[str, str]], dict[str, list[tuple[str, str]]]]:
        values: dict[str, list[tuple[str, str]]] = {}
        for tag in tags:
            values.setdefault(tag.namespace, []).append((tag.value.casefold(), tag.value))
        for entries in values.values():
            entries.sort()
        namespaces = sorted((ns.casefold(), ns) for ns in values)
        return namespaces, values

    def _add_locked(self, tag: Tag) -> None:
        entries = self._values.get(tag.namespace)
        if entries is None:
            entries = self._values[tag.namespace] = []
            _insort_unique(self._namespaces, tag.namespace)
        _insort_unique(entries, tag.value)

    def _discard_locked(self, tag: Tag) -> None:
        entries = self._values.get(tag.namespace)
        if entries is None:
            return
        _remove_sorted(entries, tag.value)
        if not entries:
            del self._values[tag.namespace]
            _remove_sorted(self._namespaces, tag.namespace)

    def apply(self, added: Iterable[Tag] = (), removed: Iterable[Tag] = ()) -> None:
        """Reflect a committed change to the dictionary."""
        added, removed = list(added), list(removed)
        if not added and not removed:
            return
        with self._lock:
            for tag in removed:
                self._discard_locked(tag)
            for tag in added:
                self._add_locked(tag)
            if self._journal is not None:
                self._journal.extend(("remove", t) for t in removed)
                self._journal.extend(("add", t) for t in added)

    def begin_rebuild(self) -> None:
        """Start journaling updates; call before reading the dictionary."""
        with self._lock:
            self._journal = []

    def finish_rebuild(self, tags: Iterable[Tag]) -> int:
        """Swap in a structure built from `tags`. Returns the tag count."""
        namespaces, values = self._build(tags)
        with self._lock:
            journal, self._journal = self._journal or [], None
            self._namespaces, self._values = namespaces, values
            for op, tag in journal:
                if op == "add":
                    self._add_locked(tag)
                else:
                    self._discard_locked(tag)
            total = sum(len(v) for v in self._values.values())
        logger.debug("Tag index rebuilt: %d tags (%d journaled updates)", total, len(journal))
        return total

    def cancel_rebuild(self) -> None:
        """Stop journaling after a rebuild could not read the dictionary."""
        with self._lock:
            self._journal = None

    def load(self, tags: Iterable[Tag]) -> int:
        """Replace the whole index (no concurrent writers expected)."""
        self.begin_rebuild()
        return self.finish_rebuild(tags)

    # -- lookups --

    def values_with_prefix(self, namespace: str, prefix: str, limit: Optional[int] = None) -> list[str]:
        """Distinct values under `namespace` starting with `prefix`."""
        limit = limit or self.prefix_limit
        with self._lock:
            entries = self._values.get(namespace)
            if not entries:
                return []
            return _prefix_scan(entries, prefix, limit)

    def namespaces_with_prefix(self, prefix: str, limit: Optional[int] = None) -> list[str]:
        """Distinct namespaces starting with `prefix`."""
        limit = limit or self.prefix_limit
        with self._lock:
            return _prefix_scan(self._namespaces, prefix, limit)

    def tags_by_value_fuzzy(self, value: str, limit: Optional[int] = None) -> list[Tag]:
        """
        Tags whose value approximately matches `value`, best first.

        Ranking: exact, prefix, substring, then difflib similarity above
        the cutoff. Ties are broken by similarity, namespace and value,
        so identical data always yields identical output.
        """
        limit = limit or self.fuzzy_limit
        query = value.strip().casefold()
        if not query:
            return []
        with self._lock:
            candidates = [
                (ns, original) for ns, entries in self._values.items()
                for _, original in entries
            ]

        scored = []
        for ns, original in candidates:
            folded = original.casefold()
            ratio = difflib.SequenceMatcher(None, query, folded).ratio()
            if folded == query:
                rank = _RANK_EXACT
            elif folded.startswith(query):
                rank = _RANK_PREFIX
            elif query in folded:
                rank = _RANK_SUBSTRING
            elif ratio >= self.fuzzy_cutoff:
                rank = _RANK_SIMILAR
            else:
                continue
            scored.append((rank, -ratio, ns, original))

        scored.sort()
        return [Tag(ns, original) for _, _, ns, original in scored[:limit]]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._values.values())
