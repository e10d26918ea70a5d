"""
Tests for library configuration (memelib.toml).
"""

from pathlib import Path

import pytest

from memelib.config import (
    CONFIG_FILENAME,
    LibraryConfig,
    get_default_data_dir,
    load_config,
    load_or_create_config,
    save_config,
)
from memelib.errors import ValidationError
from memelib.library import Library


class TestConfigFile:

    def test_created_with_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path)
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.page_size == 30
        assert config.duplicates == "reject"
        assert config.prune_unused_tags is True

    def test_round_trip(self, tmp_path):
        config = LibraryConfig(path=tmp_path, page_size=12, fuzzy_cutoff=0.75,
                               duplicates="allow", prune_unused_tags=False)
        save_config(config)
        loaded = load_config(tmp_path)
        assert loaded.page_size == 12
        assert loaded.fuzzy_cutoff == 0.75
        assert loaded.duplicates == "allow"
        assert loaded.prune_unused_tags is False
        assert loaded.created == config.created

    def test_missing_sections_use_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[search]\npage_size = 5\n')
        config = load_config(tmp_path)
        assert config.page_size == 5
        assert config.prefix_limit == 50

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[library]\nversion = 99\n')
        with pytest.raises(ValueError):
            load_config(tmp_path)

    @pytest.mark.parametrize("version", ['"1"', "1.0", "true"])
    def test_non_integer_version_rejected(self, tmp_path, version):
        (tmp_path / CONFIG_FILENAME).write_text(f"[library]\nversion = {version}\n")
        with pytest.raises(ValueError, match="must be an integer"):
            load_config(tmp_path)

    def test_library_refuses_non_integer_version(self, tmp_path):
        data_dir = tmp_path / "lib"
        data_dir.mkdir()
        (data_dir / CONFIG_FILENAME).write_text('[library]\nversion = "one"\n')
        with pytest.raises(ValidationError):
            Library(data_dir)


class TestValidation:

    @pytest.mark.parametrize("overrides", [
        {"page_size": 0},
        {"prefix_limit": 0},
        {"fuzzy_cutoff": 1.5},
        {"duplicates": "sometimes"},
        {"busy_retries": -1},
    ])
    def test_invalid_values(self, tmp_path, overrides):
        with pytest.raises(ValidationError):
            LibraryConfig(path=tmp_path, **overrides).validate()

    def test_library_refuses_invalid_file(self, tmp_path):
        data_dir = tmp_path / "lib"
        data_dir.mkdir()
        (data_dir / CONFIG_FILENAME).write_text('[content]\nduplicates = "maybe"\n')
        with pytest.raises(ValidationError):
            Library(data_dir)

    def test_library_refuses_corrupt_file(self, tmp_path):
        data_dir = tmp_path / "lib"
        data_dir.mkdir()
        (data_dir / CONFIG_FILENAME).write_text("this is not = = toml")
        with pytest.raises(ValidationError):
            Library(data_dir)

    def test_library_uses_file_settings(self, tmp_path):
        data_dir = tmp_path / "lib"
        data_dir.mkdir()
        (data_dir / CONFIG_FILENAME).write_text('[search]\npage_size = 7\n')
        with Library(data_dir) as lib:
            assert lib.page_size == 7


class TestDataDir:

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMELIB_DATA_DIR", str(tmp_path / "custom"))
        assert get_default_data_dir() == (tmp_path / "custom").resolve()

    def test_home_default(self, monkeypatch):
        monkeypatch.delenv("MEMELIB_DATA_DIR", raising=False)
        assert get_default_data_dir() == (Path.home() / ".memelib").resolve()

    def test_library_defaults_to_env_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMELIB_DATA_DIR", str(tmp_path / "envlib"))
        with Library() as lib:
            assert lib.data_dir() == (tmp_path / "envlib").resolve()
        assert (tmp_path / "envlib" / "memelib.db").exists()
