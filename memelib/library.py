"""
Core API for the meme library.

Library is the single object callers hold: it is constructed at process
start, owns the database handle, content store and tag index, and is
closed at shutdown. Every operation of the application contract is a
method here:

- add_meme() / update_meme(): hash, copy, then row and tags in one transaction
- set_favorite() / set_trash(): flag changes
- search_memes(): paginated statement search under a mode
- values_with_prefix() / namespaces_with_prefix() / tags_by_value_fuzzy():
  autocomplete lookups served from the in-memory tag index
"""

import tomllib
from pathlib import Path
from typing import Iterable, Optional, Union

from . import meme_store, search, tag_index
from .config import LibraryConfig, get_default_data_dir, load_or_create_config
from .content import FILES_DIRNAME, ContentStore, file_digest, remove_source
from .database import Database
from .errors import (
    DuplicateContent,
    IOFailure,
    LibraryError,
    NotFound,
    StorageUnavailable,
    ValidationError,
)
from .logging_config import configure_ops_log, library_logger, remove_ops_log
from .schema import SchemaManager
from .tag_index import TagIndex
from .types import (
    MAX_DESC_LENGTH,
    MAX_EXTRA_DATA_LENGTH,
    MAX_SUMMARY_LENGTH,
    SQLITE_MAX_INT,
    SQLITE_MIN_INT,
    Meme,
    SearchMode,
    Tag,
    normalize_tags,
    validate_text,
)

DB_FILENAME = "memelib.db"

TagsArg = Optional[Iterable[Union[Tag, dict, tuple]]]


def _validate_id(id) -> int:
    if isinstance(id, bool) or not isinstance(id, int):
        raise ValidationError(f"Meme id must be an integer: {id!r}")
    if not SQLITE_MIN_INT <= id <= SQLITE_MAX_INT:
        # no row can carry an id SQLite cannot store
        raise NotFound(f"Meme not found: {id}")
    return id


def _validate_flag(value) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"Flag value must be a boolean: {value!r}")
    return value


class Library:
    """
    A tagged meme library rooted at one data directory.

    Usage:
        with Library() as lib:
            meme_id = lib.add_meme("cat.png", "cat meme", tags=[Tag("animal", "cat")])
            lib.search_memes("animal:cat")
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        *,
        config: Optional[LibraryConfig] = None,
        ops_log: bool = True,
    ):
        """
        Open (creating if needed) the library in `data_dir`.

        Args:
            data_dir: Root of all persistent state (default: MEMELIB_DATA_DIR or ~/.memelib)
            config: Use this configuration instead of memelib.toml
            ops_log: Write mutations to memelib-ops.log

        Raises:
            StorageUnavailable: If the directory or database cannot be opened
            IncompatibleSchema: If the database was written by a newer version
            ValidationError: If the configuration is invalid
        """
        self._data_dir = Path(data_dir).expanduser().resolve() if data_dir else get_default_data_dir()
        self._db: Optional[Database] = None
        self._ops_handler = None
        self._index_version: Optional[int] = None
        self._log = library_logger(__name__, self._data_dir)
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create data directory {self._data_dir}: {e}") from e

        if config is None:
            try:
                config = load_or_create_config(self._data_dir)
            except (tomllib.TOMLDecodeError, ValueError) as e:
                raise ValidationError(f"Invalid library config: {e}") from e
            except OSError as e:
                raise StorageUnavailable(f"Cannot read library config: {e}") from e
        config.validate()
        self._config = config

        if ops_log:
            self._ops_handler = configure_ops_log(self._data_dir)

        try:
            self._db = Database(
                self._data_dir / DB_FILENAME,
                busy_timeout_ms=config.busy_timeout_ms,
                busy_retries=config.busy_retries,
            )
            self._schema = SchemaManager(self._db)
            version = self._schema.ensure_schema()
            self._content = ContentStore(self._data_dir / FILES_DIRNAME)
            self._index = TagIndex(
                prefix_limit=config.prefix_limit,
                fuzzy_limit=config.fuzzy_limit,
                fuzzy_cutoff=config.fuzzy_cutoff,
            )
            self.rebuild_index()
        except BaseException:
            self.close()
            raise
        self._log.info("Opened library %s (schema v%d)", self._data_dir, version)

    @property
    def config(self) -> LibraryConfig:
        return self._config

    @property
    def page_size(self) -> int:
        return self._config.page_size

    # -------------------------------------------------------------------------
    # Schema / version
    # -------------------------------------------------------------------------

    def table_version(self) -> int:
        """Persisted schema version."""
        return self._schema.current_version()

    def data_dir(self) -> Path:
        """Root directory of the database, content files, config and logs."""
        return self._data_dir

    def engine_version(self) -> str:
        """SQLite version string, for diagnostics."""
        return self._schema.engine_version()

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add_meme(
        self,
        file: Union[str, Path],
        summary: str,
        desc: str = "",
        tags: TagsArg = None,
        remove_after_add: bool = False,
        extra_data: Optional[str] = None,
    ) -> int:
        """
        Ingest a file as a new meme.

        The file is copied into the library under its sha256 name and the
        row and tag links are written in one transaction. The source is
        deleted only after that transaction has committed.

        Args:
            file: Path of the source file
            summary: Short indexed text
            desc: Long-form indexed text
            tags: Tags as Tag, {"namespace", "value"} dicts or pairs
            remove_after_add: Delete the source file once stored
            extra_data: Opaque metadata string

        Returns:
            The new meme's id

        Raises:
            ValidationError: Bad summary/desc/extra data/tags
            IOFailure: Source unreadable, copy failed, or source removal failed
            DuplicateContent: Identical content exists and duplicates are rejected
        """
        validate_text("summary", summary, MAX_SUMMARY_LENGTH)
        validate_text("desc", desc, MAX_DESC_LENGTH)
        if extra_data is not None:
            validate_text("extra_data", extra_data, MAX_EXTRA_DATA_LENGTH)
        tag_list = normalize_tags(tags)

        source = Path(file).expanduser()
        if not source.is_file():
            raise IOFailure(f"Not a readable file: {source}")
        digest = file_digest(source)

        written = False
        try:
            with self._db.transaction() as conn:
                if self._config.duplicates == "reject":
                    existing = meme_store.find_by_content(conn, digest)
                    if existing is not None:
                        raise DuplicateContent(
                            f"Content already in library as meme {existing}",
                            existing_id=existing,
                        )
                written = self._content.ingest(source, digest)
                meme_id = meme_store.insert_meme(conn, digest, summary, desc, extra_data)
                created, _ = tag_index.replace_meme_tags(
                    conn, meme_id, tag_list, prune_unused=self._config.prune_unused_tags,
                )
                self._db.on_commit(lambda: self._index.apply(added=created))
        except BaseException:
            if written:
                self._discard_orphan(digest)
            raise

        self._log.info("add meme=%d content=%s tags=%d", meme_id, digest, len(tag_list))

        if remove_after_add:
            if source.resolve() == self._content.path_for(digest).resolve():
                # the source is the stored content itself
                self._log.info("add meme=%d kept source %s: it is library content", meme_id, source)
                return meme_id
            try:
                remove_source(source)
            except IOFailure:
                self._log.warning("add meme=%d committed, source %s kept", meme_id, source)
                raise
            self._log.info("removed source %s", source)
        return meme_id

    def _discard_orphan(self, digest: str) -> None:
        """Delete a content file no row references (after a failed add)."""
        try:
            with self._db.transaction() as conn:
                if meme_store.find_by_content(conn, digest) is None:
                    self._content.discard(digest)
        except LibraryError as e:
            self._log.warning("Could not clean up content %s: %s", digest, e)

    def update_meme(
        self,
        id: int,
        summary: Optional[str] = None,
        desc: Optional[str] = None,
        tags: TagsArg = None,
        extra_data: Optional[str] = None,
    ) -> Meme:
        """
        Partially update a meme.

        None means "not supplied": the field keeps its value. An empty
        string clears summary/desc; an empty list removes every tag.
        Supplied tags replace the meme's whole tag set.

        Returns:
            The meme after the update, with tags

        Raises:
            NotFound: If no meme has this id
            ValidationError: Bad field values
        """
        meme_id = _validate_id(id)
        if summary is not None:
            validate_text("summary", summary, MAX_SUMMARY_LENGTH)
        if desc is not None:
            validate_text("desc", desc, MAX_DESC_LENGTH)
        if extra_data is not None:
            validate_text("extra_data", extra_data, MAX_EXTRA_DATA_LENGTH)
        tag_list = normalize_tags(tags) if tags is not None else None

        with self._db.transaction() as conn:
            meme_store.update_meme(conn, meme_id, summary=summary, desc=desc, extra_data=extra_data)
            if tag_list is not None:
                created, pruned = tag_index.replace_meme_tags(
                    conn, meme_id, tag_list, prune_unused=self._config.prune_unused_tags,
                )
                self._db.on_commit(lambda: self._index.apply(added=created, removed=pruned))

        changed = [name for name, v in (("summary", summary), ("desc", desc),
                                        ("tags", tag_list), ("extra_data", extra_data))
                   if v is not None]
        self._log.info("update meme=%d fields=%s", meme_id, ",".join(changed) or "-")
        return self.get_meme(meme_id)

    def set_favorite(self, id: int, value: bool) -> None:
        """Mark or unmark a meme as favorite. Idempotent."""
        self._set_flag(id, "fav", value)

    def set_trash(self, id: int, value: bool) -> None:
        """Move a meme to the trash (soft delete) or restore it. Idempotent."""
        self._set_flag(id, "trash", value)

    def _set_flag(self, id: int, flag: str, value: bool) -> None:
        meme_id = _validate_id(id)
        value = _validate_flag(value)
        with self._db.transaction() as conn:
            changed = meme_store.set_flag(conn, meme_id, flag, value)
        if changed:
            self._log.info("%s meme=%d value=%s", flag, meme_id, value)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_meme(self, id: int) -> Meme:
        """
        Get a meme with its tags.

        Raises:
            NotFound: If no meme has this id
        """
        meme_id = _validate_id(id)
        with self._db.snapshot() as conn:
            meme = meme_store.get_meme(conn, meme_id)
            meme.tags = tag_index.tags_for_meme(conn, meme_id)
        return meme

    def tags_for_meme(self, id: int) -> list[Tag]:
        """
        Tags of a meme, ordered by (namespace, value).

        Raises:
            NotFound: If no meme has this id
        """
        meme_id = _validate_id(id)
        with self._db.snapshot() as conn:
            if not meme_store.exists(conn, meme_id):
                raise NotFound(f"Meme not found: {meme_id}")
            return tag_index.tags_for_meme(conn, meme_id)

    def search_memes(
        self,
        statement: str = "",
        page: int = 0,
        mode: Union[SearchMode, str] = SearchMode.NORMAL,
        *,
        with_tags: bool = False,
    ) -> list[Meme]:
        """
        One page of matching memes, most recently updated first.

        Pages are 0-based and hold `page_size` memes (30 by default); a
        page past the end is empty. An empty statement matches every meme
        in the mode.

        Raises:
            ValidationError: Bad statement, page or mode
        """
        if statement is None:
            statement = ""
        if not isinstance(statement, str):
            raise ValidationError(f"Search statement must be a string: {statement!r}")
        mode = SearchMode.parse(mode)
        with self._db.snapshot() as conn:
            memes = search.search_memes(conn, statement, page, mode, self._config.page_size)
            if with_tags and memes:
                by_id = tag_index.tags_for_memes(conn, [m.id for m in memes])
                for meme in memes:
                    meme.tags = by_id[meme.id]
        return memes

    def count_matches(self, statement: str = "", mode: Union[SearchMode, str] = SearchMode.NORMAL) -> int:
        """Number of memes a statement matches, across all pages."""
        mode = SearchMode.parse(mode)
        with self._db.snapshot() as conn:
            return search.count_matches(conn, statement or "", mode)

    def real_path(self, basename: str) -> Path:
        """
        Absolute path of a meme's content file.

        Raises:
            ValidationError: If basename is not a plain file name
            NotFound: If the file is missing on disk
        """
        return self._content.real_path(basename)

    # -------------------------------------------------------------------------
    # Tag Lookups
    # -------------------------------------------------------------------------

    def values_with_prefix(self, namespace: str, prefix: str = "") -> list[str]:
        """Tag values under `namespace` starting with `prefix` (case-insensitive)."""
        self._refresh_index()
        return self._index.values_with_prefix(namespace, prefix or "")

    def namespaces_with_prefix(self, prefix: str = "") -> list[str]:
        """Namespaces starting with `prefix` (case-insensitive)."""
        self._refresh_index()
        return self._index.namespaces_with_prefix(prefix or "")

    def tags_by_value_fuzzy(self, value: str) -> list[Tag]:
        """Tags whose value approximately matches, best match first."""
        self._refresh_index()
        return self._index.tags_by_value_fuzzy(value or "")

    def _refresh_index(self) -> None:
        """Rebuild the index if another Library or process has committed since."""
        if self._db.data_version() != self._index_version:
            self.rebuild_index()

    def rebuild_index(self) -> int:
        """Reload the tag lookup index from the database. Returns the tag count."""
        # read before the dictionary, so a commit in between triggers another rebuild
        self._index_version = self._db.data_version()
        self._index.begin_rebuild()
        try:
            with self._db.snapshot() as conn:
                tags = tag_index.all_tags(conn)
        except BaseException:
            self._index.cancel_rebuild()
            raise
        return self._index.finish_rebuild(tags)

    # -------------------------------------------------------------------------
    # Counts
    # -------------------------------------------------------------------------

    def count_memes(self) -> int:
        """All memes, trashed and favorite included."""
        with self._db.snapshot() as conn:
            return meme_store.count_memes(conn)

    def count_tags(self) -> int:
        """Distinct (namespace, value) pairs in the tag dictionary."""
        with self._db.snapshot() as conn:
            return tag_index.count_tags(conn)

    def stats(self) -> dict:
        """Counts and diagnostics in one snapshot."""
        with self._db.snapshot() as conn:
            memes = meme_store.count_memes(conn)
            favorites, trashed = meme_store.count_flagged(conn)
            tags = tag_index.count_tags(conn)
        return {
            "memes": memes,
            "tags": tags,
            "favorites": favorites,
            "trashed": trashed,
            "schema_version": self.table_version(),
            "engine_version": self.engine_version(),
            "data_dir": str(self._data_dir),
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the database and the operations log. Safe to call twice."""
        if self._db is not None:
            self._db.close()
        if self._ops_handler is not None:
            remove_ops_log(self._ops_handler)
            self._ops_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
