"""
Protocol definition for the library API.

LibraryProtocol is the contract the presentation layer programs against.
Library implements it; test doubles and IPC proxies can too.
"""

from pathlib import Path
from typing import Iterable, Optional, Protocol, Union, runtime_checkable

from .types import Meme, SearchMode, Tag


@runtime_checkable
class LibraryProtocol(Protocol):
    """The operations a meme library offers to its callers."""

    # -- Schema / version --

    def table_version(self) -> int: ...

    def data_dir(self) -> Path: ...

    def engine_version(self) -> str: ...

    # -- Write operations --

    def add_meme(
        self,
        file: Union[str, Path],
        summary: str,
        desc: str = "",
        tags: Optional[Iterable[Union[Tag, dict, tuple]]] = None,
        remove_after_add: bool = False,
        extra_data: Optional[str] = None,
    ) -> int: ...

    def update_meme(
        self,
        id: int,
        summary: Optional[str] = None,
        desc: Optional[str] = None,
        tags: Optional[Iterable[Union[Tag, dict, tuple]]] = None,
        extra_data: Optional[str] = None,
    ) -> Meme: ...

    def set_favorite(self, id: int, value: bool) -> None: ...

    def set_trash(self, id: int, value: bool) -> None: ...

    # -- Read operations --

    def search_memes(
        self,
        statement: str = "",
        page: int = 0,
        mode: Union[SearchMode, str] = SearchMode.NORMAL,
        *,
        with_tags: bool = False,
    ) -> list[Meme]: ...

    def real_path(self, basename: str) -> Path: ...

    def get_meme(self, id: int) -> Meme: ...

    def tags_for_meme(self, id: int) -> list[Tag]: ...

    # -- Tag lookups --

    def values_with_prefix(self, namespace: str, prefix: str = "") -> list[str]: ...

    def namespaces_with_prefix(self, prefix: str = "") -> list[str]: ...

    def tags_by_value_fuzzy(self, value: str) -> list[Tag]: ...

    # -- Counts --

    def count_memes(self) -> int: ...

    def count_tags(self) -> int: ...

    # -- Lifecycle --

    def close(self) -> None: ...
