"""
Content files.

Asset bytes are stored under <data_dir>/files, named by the hex sha256 of
their content. The basename is the content reference kept in the meme
row, so identical bytes always map to the same file.
"""

import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path

from .errors import IOFailure, NotFound, ValidationError

logger = logging.getLogger(__name__)

FILES_DIRNAME = "files"

_CHUNK_SIZE = 1 << 20
_BASENAME_RE = re.compile(r'^[^/\\\x00]+$')


def file_digest(path: Path) -> str:
    """Hex sha256 of a file's bytes."""
    h = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                h.update(chunk)
    except OSError as e:
        raise IOFailure(f"Cannot read {path}: {e.strerror or e}") from e
    return h.hexdigest()


def _fsync_dir(directory: Path) -> None:
    if os.name == "nt":
        return  # directories can't be opened for fsync on Windows
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class ContentStore:
    """Content-addressed file storage under one directory."""

    def __init__(self, files_dir: Path):
        self._dir = Path(files_dir)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Cannot create content directory {self._dir}: {e}") from e

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, digest: str) -> Path:
        """Where content with this digest is (or would be) stored."""
        return self._dir / digest

    def ingest(self, source: Path, digest: str) -> bool:
        """
        Copy `source` into the store as `digest`, durably.

        The copy goes to a temporary file in the same directory, is fsynced
        and then renamed into place, so a crash never leaves a partial
        file under a content name. The bytes are hashed as they are copied;
        if they no longer match `digest` nothing is stored.

        Returns:
            True if a new file was written, False if it already existed

        Raises:
            IOFailure: If the source can't be read or changed since it was hashed
        """
        target = self.path_for(digest)
        if target.exists():
            return False
        tmp_path = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".ingest-")
            tmp_path = Path(tmp_name)
            h = hashlib.sha256()
            with os.fdopen(fd, "wb") as out, open(source, "rb") as src:
                for chunk in iter(lambda: src.read(_CHUNK_SIZE), b""):
                    h.update(chunk)
                    out.write(chunk)
                out.flush()
                os.fsync(out.fileno())
            if h.hexdigest() != digest:
                raise IOFailure(f"{source} changed while being added to the library")
            os.replace(tmp_path, target)
            tmp_path = None
            _fsync_dir(self._dir)
        except OSError as e:
            raise IOFailure(f"Cannot copy {source} into library: {e.strerror or e}") from e
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
        logger.debug("Stored content %s from %s", digest, source)
        return True

    def discard(self, basename: str) -> None:
        """Remove a content file written by a failed add."""
        try:
            (self._dir / basename).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove orphaned content %s: %s", basename, e)

    def real_path(self, basename: str) -> Path:
        """
        Absolute path of a stored content file.

        Raises:
            ValidationError: If basename is not a plain file name
            NotFound: If the file is missing on disk
        """
        if not basename or basename in (".", "..") or not _BASENAME_RE.match(basename):
            raise ValidationError(f"Invalid content reference: {basename!r}")
        path = (self._dir / basename).resolve()
        if not path.is_file():
            raise NotFound(f"Content file missing from library: {basename}")
        return path


def remove_source(source: Path) -> None:
    """Delete an ingested source file."""
    try:
        os.remove(source)
    except OSError as e:
        raise IOFailure(f"Asset added, but could not remove source {source}: {e.strerror or e}") from e
