"""
Shared pytest fixtures for memelib tests.

Every library lives under tmp_path, so tests never touch ~/.memelib.
"""

import itertools
from pathlib import Path

import pytest

from memelib.config import LibraryConfig
from memelib.library import Library


_counter = itertools.count()


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path, monkeypatch):
    """Point the default data dir (and the error log) at tmp_path."""
    monkeypatch.setenv("MEMELIB_DATA_DIR", str(tmp_path / "default-data"))


@pytest.fixture
def make_file(tmp_path):
    """
    Factory for source files with distinct content.

    make_file() -> new file with unique bytes
    make_file(data=b"...") -> file with exactly these bytes
    """
    src_dir = tmp_path / "incoming"
    src_dir.mkdir(exist_ok=True)

    def _make(name: str | None = None, data: bytes | None = None) -> Path:
        n = next(_counter)
        path = src_dir / (name or f"asset-{n}.png")
        path.write_bytes(data if data is not None else f"image bytes {n}".encode())
        return path

    return _make


@pytest.fixture
def open_library(tmp_path):
    """
    Factory opening libraries under tmp_path with config overrides.

    Libraries are closed at teardown.
    """
    opened: list[Library] = []

    def _open(name: str = "lib", **overrides) -> Library:
        data_dir = tmp_path / name
        config = LibraryConfig(path=data_dir, **overrides) if overrides else None
        library = Library(data_dir, config=config)
        opened.append(library)
        return library

    yield _open
    for library in opened:
        library.close()


@pytest.fixture
def lib(open_library):
    """A fresh library with default configuration."""
    return open_library()


@pytest.fixture
def small_pages(open_library):
    """A library whose search pages hold 3 memes."""
    return open_library("paged", page_size=3)
