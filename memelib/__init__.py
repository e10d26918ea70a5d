"""
memelib - a tagged meme library.

Stores image and text assets with namespaced tags in a local SQLite
library, with paginated search, favorites, soft delete (trash) and tag
autocomplete.

Quick start:
    from memelib import Library, Tag

    with Library() as lib:
        meme_id = lib.add_meme("cat.png", "cat meme", tags=[Tag("animal", "cat")])
        for meme in lib.search_memes("animal:cat"):
            print(meme.id, meme.summary, lib.real_path(meme.content))

Default data directory: ~/.memelib (override with MEMELIB_DATA_DIR)
"""

from .errors import (
    DuplicateContent,
    IncompatibleSchema,
    IOFailure,
    LibraryError,
    NotFound,
    StorageUnavailable,
    ValidationError,
)
from .library import Library
from .protocol import LibraryProtocol
from .schema import SCHEMA_VERSION
from .types import Meme, SearchMode, Tag

__version__ = "0.1.0"
__all__ = [
    "Library",
    "LibraryProtocol",
    "Meme",
    "Tag",
    "SearchMode",
    "SCHEMA_VERSION",
    "LibraryError",
    "NotFound",
    "ValidationError",
    "DuplicateContent",
    "StorageUnavailable",
    "IncompatibleSchema",
    "IOFailure",
]
