"""
Tests for the memelib command line.
"""

import json

import pytest
from typer.testing import CliRunner

from memelib.cli import app


@pytest.fixture
def cli(tmp_path):
    """Invoke the CLI against a library under tmp_path."""
    runner = CliRunner()
    env = {"MEMELIB_DATA_DIR": str(tmp_path / "cli-lib")}

    def _invoke(*args: str):
        return runner.invoke(app, list(args), env=env)

    return _invoke


def _add(cli, make_file, summary, *extra) -> int:
    result = cli("add", str(make_file()), summary, *extra)
    assert result.exit_code == 0, result.output
    return int(result.output.strip())


class TestAddAndGet:

    def test_add_prints_id(self, cli, make_file):
        assert _add(cli, make_file, "cat meme", "-t", "animal:cat") == 1

    def test_get_json(self, cli, make_file):
        meme_id = _add(cli, make_file, "cat meme", "-d", "grumpy", "-t", "animal:cat")
        result = cli("--json", "get", str(meme_id))
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["summary"] == "cat meme"
        assert data["desc"] == "grumpy"
        assert data["tags"] == [{"namespace": "animal", "value": "cat"}]

    def test_get_missing(self, cli):
        result = cli("get", "42")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_bad_tag(self, cli, make_file):
        result = cli("add", str(make_file()), "x", "-t", "no-colon")
        assert result.exit_code == 1
        assert "namespace:value" in result.output

    def test_duplicate(self, cli, make_file):
        _add(cli, make_file, "first")
        src = make_file(data=b"twice")
        assert cli("add", str(src), "a").exit_code == 0
        result = cli("add", str(src), "b")
        assert result.exit_code == 1
        assert "already in library" in result.output

    def test_path(self, cli, make_file):
        meme_id = _add(cli, make_file, "x")
        content = json.loads(cli("--json", "get", str(meme_id)).output)["content"]
        result = cli("path", content)
        assert result.exit_code == 0
        assert result.output.strip().endswith(content)


class TestUpdateAndFlags:

    def test_update_desc(self, cli, make_file):
        meme_id = _add(cli, make_file, "x", "-t", "a:b")
        result = cli("--json", "update", str(meme_id), "--desc", "new")
        data = json.loads(result.output)
        assert data["desc"] == "new"
        assert data["summary"] == "x"
        assert data["tags"] == [{"namespace": "a", "value": "b"}]

    def test_clear_tags(self, cli, make_file):
        meme_id = _add(cli, make_file, "x", "-t", "a:b")
        data = json.loads(cli("--json", "update", str(meme_id), "--clear-tags").output)
        assert "tags" not in data

    def test_tag_and_clear_conflict(self, cli, make_file):
        meme_id = _add(cli, make_file, "x")
        result = cli("update", str(meme_id), "-t", "a:b", "--clear-tags")
        assert result.exit_code == 1

    def test_fav_and_trash(self, cli, make_file):
        a = _add(cli, make_file, "a")
        b = _add(cli, make_file, "b")
        assert cli("fav", str(a)).exit_code == 0
        assert cli("trash", str(b)).exit_code == 0

        favs = json.loads(cli("--json", "search", "--mode", "OnlyFav").output)
        assert [m["id"] for m in favs] == [a]
        trashed = json.loads(cli("--json", "search", "-m", "onlytrash").output)
        assert [m["id"] for m in trashed] == [b]

        assert cli("trash", str(b), "--restore").exit_code == 0
        assert cli("fav", str(a), "--off").exit_code == 0
        assert json.loads(cli("--json", "search", "--mode", "OnlyFav").output) == []


class TestSearchAndLookups:

    def test_search(self, cli, make_file):
        cat = _add(cli, make_file, "cat meme", "-t", "animal:cat")
        _add(cli, make_file, "dog meme", "-t", "animal:dog")
        results = json.loads(cli("--json", "search", "animal:cat").output)
        assert [m["id"] for m in results] == [cat]

    def test_search_text_output(self, cli, make_file):
        _add(cli, make_file, "cat meme", "-t", "animal:cat")
        result = cli("search", "cat", "--tags")
        assert result.exit_code == 0
        assert "cat meme" in result.output
        assert "animal:cat" in result.output

    def test_negative_page(self, cli):
        result = cli("search", "--page=-1")
        assert result.exit_code == 1

    def test_complete(self, cli, make_file):
        _add(cli, make_file, "x", "-t", "animal:cat", "-t", "animal:cow", "-t", "mood:sad")
        assert cli("complete", "an").output.split() == ["animal"]
        assert cli("complete", "animal:c").output.split() == ["cat", "cow"]

    def test_fuzzy(self, cli, make_file):
        _add(cli, make_file, "x", "-t", "animal:kitten")
        result = cli("--json", "fuzzy", "kiten")
        assert json.loads(result.output) == [{"namespace": "animal", "value": "kitten"}]


class TestInfo:

    def test_stats(self, cli, make_file):
        _add(cli, make_file, "x", "-t", "a:b")
        data = json.loads(cli("--json", "stats").output)
        assert data["memes"] == 1
        assert data["tags"] == 1

    def test_info(self, cli, tmp_path):
        data = json.loads(cli("--json", "info").output)
        assert data["schema_version"] == 2
        assert data["data_dir"] == str((tmp_path / "cli-lib").resolve())

    def test_version(self, cli):
        result = cli("--version")
        assert result.exit_code == 0
        assert result.output.startswith("memelib ")
