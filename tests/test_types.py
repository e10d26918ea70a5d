"""
Tests for value types and input validation.
"""

import pytest

from memelib.errors import ValidationError
from memelib.types import (
    Meme,
    SearchMode,
    Tag,
    normalize_tags,
    validate_namespace,
    validate_tag,
)


class TestTag:

    def test_parse(self):
        assert Tag.parse("animal:cat") == Tag("animal", "cat")
        assert Tag.parse(" animal : big cat ") == Tag("animal", "big cat")

    def test_parse_keeps_later_colons(self):
        assert Tag.parse("src:http://x") == Tag("src", "http://x")

    @pytest.mark.parametrize("text", ["cat", ":cat", "animal:", "animal:  "])
    def test_parse_invalid(self, text):
        with pytest.raises(ValidationError):
            Tag.parse(text)

    def test_str(self):
        assert str(Tag("animal", "cat")) == "animal:cat"

    def test_ordering(self):
        assert sorted([Tag("b", "a"), Tag("a", "b"), Tag("a", "a")]) == [
            Tag("a", "a"), Tag("a", "b"), Tag("b", "a"),
        ]


class TestValidation:

    @pytest.mark.parametrize("namespace", ["", "has space", "a:b", 'q"uote', "x" * 129, "tab\t"])
    def test_bad_namespace(self, namespace):
        with pytest.raises(ValidationError):
            validate_namespace(namespace)

    def test_good_namespace(self):
        validate_namespace("animal")
        validate_namespace("作者")

    def test_bad_value(self):
        with pytest.raises(ValidationError):
            validate_tag(Tag("animal", "two\nlines"))
        with pytest.raises(ValidationError):
            validate_tag(Tag("animal", ""))

    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValidationError):
            normalize_tags(["animal:cat"])

    def test_normalize_none(self):
        assert normalize_tags(None) == []


class TestSearchMode:

    def test_parse_names(self):
        assert SearchMode.parse("Normal") is SearchMode.NORMAL
        assert SearchMode.parse("onlyfav") is SearchMode.ONLY_FAV
        assert SearchMode.parse(SearchMode.ONLY_TRASH) is SearchMode.ONLY_TRASH

    def test_parse_unknown(self):
        with pytest.raises(ValidationError):
            SearchMode.parse("All")


class TestMeme:

    def test_to_dict_wire_names(self):
        meme = Meme(id=3, content="abc", summary="s", desc="d", extra_data=None,
                    fav=True, created_at="2024-01-01T00:00:00.000000",
                    updated_at="2024-01-02T00:00:00.000000",
                    tags=[Tag("animal", "cat")])
        d = meme.to_dict()
        assert d["extraData"] is None
        assert d["createdAt"] == "2024-01-01T00:00:00.000000"
        assert d["updatedAt"] == "2024-01-02T00:00:00.000000"
        assert d["fav"] is True
        assert d["tags"] == [{"namespace": "animal", "value": "cat"}]

    def test_to_dict_omits_empty_tags(self):
        assert "tags" not in Meme(id=1, content="c", summary="", desc="").to_dict()
