"""
Data types for the meme library.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .errors import ValidationError


MAX_SUMMARY_LENGTH = 1024
MAX_DESC_LENGTH = 65536
MAX_EXTRA_DATA_LENGTH = 1_048_576
MAX_NAMESPACE_LENGTH = 128
MAX_TAG_VALUE_LENGTH = 1024

# Range of an SQLite INTEGER (signed 64-bit)
SQLITE_MAX_INT = 2**63 - 1
SQLITE_MIN_INT = -(2**63)

# Namespaces are addressable in search statements as ns:value, so they
# cannot contain whitespace, quotes or the separator itself.
_NAMESPACE_BLOCKED_RE = re.compile(r'[\s:"\x00-\x1f\x7f]')

# Text fields: no NUL or C0 control chars other than tab/newline/CR
_TEXT_BLOCKED_RE = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.ffffff.

    Microseconds are kept so that updated_at orders rapid successive writes.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


class SearchMode(str, Enum):
    """Which slice of the library a search looks at."""

    NORMAL = "Normal"
    ONLY_FAV = "OnlyFav"
    ONLY_TRASH = "OnlyTrash"

    @classmethod
    def parse(cls, value: "SearchMode | str") -> "SearchMode":
        """Accept a SearchMode or its wire name (case-insensitive)."""
        if isinstance(value, SearchMode):
            return value
        for mode in cls:
            if str(value).casefold() == mode.value.casefold():
                return mode
        raise ValidationError(
            f"Search mode must be one of Normal, OnlyFav, OnlyTrash: {value!r}"
        )

    def where_clause(self) -> str:
        if self is SearchMode.ONLY_TRASH:
            return "meme.trash = 1"
        if self is SearchMode.ONLY_FAV:
            return "meme.fav = 1 AND meme.trash = 0"
        return "meme.trash = 0"


@dataclass(frozen=True, order=True)
class Tag:
    """A (namespace, value) pair classifying memes."""
    namespace: str
    value: str

    def to_dict(self) -> dict:
        return {"namespace": self.namespace, "value": self.value}

    @classmethod
    def from_dict(cls, d: dict) -> "Tag":
        return cls(namespace=d.get("namespace", ""), value=d.get("value", ""))

    @classmethod
    def parse(cls, text: str) -> "Tag":
        """Parse 'namespace:value' (the form used on the command line)."""
        if ":" not in text:
            raise ValidationError(f"Invalid tag {text!r}. Use namespace:value")
        namespace, value = text.split(":", 1)
        tag = cls(namespace.strip(), value.strip())
        validate_tag(tag)
        return tag

    def __str__(self) -> str:
        return f"{self.namespace}:{self.value}"


@dataclass
class Meme:
    """A stored asset and its metadata."""
    id: int
    content: str
    summary: str
    desc: str
    extra_data: Optional[str] = None
    fav: bool = False
    trash: bool = False
    created_at: str = ""
    updated_at: str = ""
    tags: list[Tag] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize with the field names used by the application's IPC layer."""
        d = {
            "id": self.id,
            "content": self.content,
            "extraData": self.extra_data,
            "summary": self.summary,
            "desc": self.desc,
            "fav": self.fav,
            "trash": self.trash,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.tags:
            d["tags"] = [t.to_dict() for t in self.tags]
        return d

    def __str__(self) -> str:
        flags = ("*" if self.fav else " ") + ("T" if self.trash else " ")
        return f"{self.id:>6} {flags} {self.updated_at[:10]} {self.summary}"


def validate_text(name: str, text: str, max_length: int) -> None:
    """Validate a free-text field (summary, desc, extra data)."""
    if not isinstance(text, str):
        raise ValidationError(f"{name} must be a string, got {type(text).__name__}")
    if len(text) > max_length:
        raise ValidationError(f"{name} is too long ({len(text)} > {max_length} characters)")
    if _TEXT_BLOCKED_RE.search(text):
        raise ValidationError(f"{name} contains control characters")


def validate_namespace(namespace: str) -> None:
    if not isinstance(namespace, str) or not namespace:
        raise ValidationError("Tag namespace must be a non-empty string")
    if len(namespace) > MAX_NAMESPACE_LENGTH:
        raise ValidationError(
            f"Tag namespace must be 1-{MAX_NAMESPACE_LENGTH} characters: {namespace[:40]!r}"
        )
    if _NAMESPACE_BLOCKED_RE.search(namespace):
        raise ValidationError(
            f"Tag namespace cannot contain whitespace, quotes or ':': {namespace!r}"
        )


def validate_tag(tag: Tag) -> None:
    """Validate both halves of a tag."""
    validate_namespace(tag.namespace)
    if not isinstance(tag.value, str) or not tag.value.strip():
        raise ValidationError(f"Tag value must be a non-empty string (namespace {tag.namespace!r})")
    if len(tag.value) > MAX_TAG_VALUE_LENGTH:
        raise ValidationError(f"Tag value must be 1-{MAX_TAG_VALUE_LENGTH} characters")
    if _TEXT_BLOCKED_RE.search(tag.value) or "\n" in tag.value:
        raise ValidationError(f"Tag value contains control characters: {tag.value[:40]!r}")


def normalize_tags(tags) -> list[Tag]:
    """Coerce tags given as Tag, dict or (namespace, value) pairs.

    Validates each tag and drops exact duplicates, preserving first-seen order.
    """
    result: list[Tag] = []
    seen: set[Tag] = set()
    for raw in tags or []:
        if isinstance(raw, Tag):
            tag = raw
        elif isinstance(raw, dict):
            tag = Tag.from_dict(raw)
        elif isinstance(raw, (tuple, list)) and len(raw) == 2:
            tag = Tag(raw[0], raw[1])
        else:
            raise ValidationError(f"Cannot interpret {raw!r} as a tag")
        validate_tag(tag)
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result
