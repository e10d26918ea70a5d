"""
Library configuration (memelib.toml in the data directory).

The file fixes the constants callers rely on (page size, lookup bounds)
and the policies the engine applies (duplicates, tag pruning):

    [library]
    version = 1
    created = "2024-05-01T12:00:00+00:00"

    [search]
    page_size = 30

    [tags]
    prefix_limit = 50
    fuzzy_limit = 20
    fuzzy_cutoff = 0.6
    prune_unused = true

    [content]
    duplicates = "reject"   # or "allow"

    [storage]
    busy_timeout_ms = 5000
    busy_retries = 5
"""

import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import tomli_w

from .errors import ValidationError


CONFIG_FILENAME = "memelib.toml"
CONFIG_VERSION = 1

DEFAULT_PAGE_SIZE = 30
DUPLICATE_POLICIES = ("reject", "allow")

# (section, key in file, LibraryConfig attribute)
_SETTINGS = [
    ("search", "page_size", "page_size"),
    ("tags", "prefix_limit", "prefix_limit"),
    ("tags", "fuzzy_limit", "fuzzy_limit"),
    ("tags", "fuzzy_cutoff", "fuzzy_cutoff"),
    ("tags", "prune_unused", "prune_unused_tags"),
    ("content", "duplicates", "duplicates"),
    ("storage", "busy_timeout_ms", "busy_timeout_ms"),
    ("storage", "busy_retries", "busy_retries"),
]


def get_default_data_dir() -> Path:
    """
    Data directory used when none is given.

    Priority:
    1. MEMELIB_DATA_DIR environment variable
    2. ~/.memelib
    """
    env = os.environ.get("MEMELIB_DATA_DIR")
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".memelib").resolve()


@dataclass
class LibraryConfig:
    """Settings of one library."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    page_size: int = DEFAULT_PAGE_SIZE
    prefix_limit: int = 50
    fuzzy_limit: int = 20
    fuzzy_cutoff: float = 0.6
    prune_unused_tags: bool = True
    duplicates: str = "reject"
    busy_timeout_ms: int = 5000
    busy_retries: int = 5

    @property
    def config_path(self) -> Path:
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        return self.config_path.exists()

    def validate(self) -> None:
        """Raise ValidationError for values the engine cannot work with."""
        for attr in ("page_size", "prefix_limit", "fuzzy_limit", "busy_timeout_ms", "busy_retries"):
            value = getattr(self, attr)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{attr} must be an integer: {value!r}")
        if self.page_size < 1:
            raise ValidationError(f"search.page_size must be positive: {self.page_size}")
        if self.prefix_limit < 1 or self.fuzzy_limit < 1:
            raise ValidationError("tags.prefix_limit and tags.fuzzy_limit must be positive")
        if not isinstance(self.fuzzy_cutoff, (int, float)) or not 0.0 <= self.fuzzy_cutoff <= 1.0:
            raise ValidationError(f"tags.fuzzy_cutoff must be between 0 and 1: {self.fuzzy_cutoff!r}")
        if self.duplicates not in DUPLICATE_POLICIES:
            raise ValidationError(
                f"content.duplicates must be one of {', '.join(DUPLICATE_POLICIES)}: {self.duplicates!r}"
            )
        if self.busy_timeout_ms < 0 or self.busy_retries < 0:
            raise ValidationError("storage.busy_timeout_ms and storage.busy_retries must not be negative")


def load_config(data_dir: Path) -> LibraryConfig:
    """
    Read memelib.toml from a data directory.

    Keys missing from the file take their defaults.

    Raises:
        FileNotFoundError: If there is no config file
        tomllib.TOMLDecodeError: If the file is not TOML
        ValueError: If the version is not an integer or newer than supported,
            or a setting is invalid
    """
    config_path = data_dir / CONFIG_FILENAME
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    library = data.get("library", {})
    version = library.get("version", CONFIG_VERSION)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError(f"Config version must be an integer: {version!r}")
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    config = LibraryConfig(path=data_dir, version=version, created=library.get("created", ""))
    for section, key, attr in _SETTINGS:
        if key in data.get(section, {}):
            setattr(config, attr, data[section][key])
    config.validate()
    return config


def save_config(config: LibraryConfig) -> None:
    """Write memelib.toml, creating the data directory if needed."""
    config.path.mkdir(parents=True, exist_ok=True)

    data: dict[str, dict] = {
        "library": {"version": config.version, "created": config.created},
    }
    for section, key, attr in _SETTINGS:
        data.setdefault(section, {})[key] = getattr(config, attr)

    # Written aside and renamed so a concurrent opener never reads half a file
    fd, tmp_name = tempfile.mkstemp(dir=config.path, prefix=".memelib-", suffix=".toml")
    try:
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
        os.replace(tmp_name, config.config_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_or_create_config(data_dir: Path) -> LibraryConfig:
    """The library's config; a default one is written on first open."""
    if (data_dir / CONFIG_FILENAME).exists():
        return load_config(data_dir)
    config = LibraryConfig(path=data_dir)
    save_config(config)
    return config
