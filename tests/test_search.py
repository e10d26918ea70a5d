"""
Tests for search statements, modes and pagination.
"""

import pytest

from memelib import SearchMode, Tag
from memelib.errors import ValidationError
from memelib.search import Term, parse_statement


class TestParseStatement:
    """Tokenizing statements into terms."""

    def test_empty(self):
        assert parse_statement("") == []
        assert parse_statement("   ") == []

    def test_plain_words(self):
        assert parse_statement("grumpy cat") == [Term("grumpy"), Term("cat")]

    def test_tag_term(self):
        assert parse_statement("animal:cat") == [Term("cat", namespace="animal")]

    def test_namespace_only(self):
        [term] = parse_statement("animal:")
        assert term.namespace == "animal"
        assert term.text == ""
        assert term.is_tag

    def test_quoted_phrase(self):
        assert parse_statement('"grumpy cat" dog') == [Term("grumpy cat"), Term("dog")]

    def test_quoted_tag_value(self):
        assert parse_statement('animal:"big cat"') == [Term("big cat", namespace="animal")]

    def test_colon_inside_quotes_is_literal(self):
        assert parse_statement('"note: hi"') == [Term("note: hi")]

    def test_value_may_contain_colon(self):
        assert parse_statement("src:http://x") == [Term("http://x", namespace="src")]

    def test_negation(self):
        assert parse_statement("-dog -animal:cat") == [
            Term("dog", negated=True),
            Term("cat", namespace="animal", negated=True),
        ]

    def test_lone_dash_is_text(self):
        assert parse_statement("a - b") == [Term("a"), Term("-"), Term("b")]

    def test_unbalanced_quote(self):
        with pytest.raises(ValidationError):
            parse_statement('"grumpy cat')


@pytest.fixture
def populated(lib, make_file):
    """Four memes with text and tags; returns the library and their ids."""
    ids = {
        "grumpy": lib.add_meme(make_file(), "Grumpy Cat", "the original grumpy",
                               tags=[Tag("animal", "cat"), Tag("mood", "angry")]),
        "doge": lib.add_meme(make_file(), "Doge", "such wow",
                             tags=[Tag("animal", "dog")]),
        "cat meme": lib.add_meme(make_file(), "cat meme", "",
                                 tags=[Tag("animal", "cat")]),
        "plain": lib.add_meme(make_file(), "nothing here", "Caterpillar in desc"),
    }
    return lib, ids


def _ids(memes):
    return {m.id for m in memes}


class TestSearchMatching:
    """Which memes a statement matches."""

    def test_empty_statement_matches_all(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes("")) == set(ids.values())

    def test_text_is_case_insensitive_and_covers_desc(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes("CAT")) == {ids["grumpy"], ids["cat meme"], ids["plain"]}

    def test_plain_term_matches_tag_value(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes("dog")) == {ids["doge"]}

    def test_tag_term_matches_exact_value(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes("animal:cat")) == {ids["grumpy"], ids["cat meme"]}
        assert lib.search_memes("animal:ca") == []

    def test_tag_term_case_insensitive(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes("Animal:CAT")) == {ids["grumpy"], ids["cat meme"]}

    def test_namespace_only(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes("mood:")) == {ids["grumpy"]}

    def test_terms_are_anded(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes("animal:cat grumpy")) == {ids["grumpy"]}

    def test_negation(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes("cat -grumpy")) == {ids["cat meme"], ids["plain"]}
        assert _ids(lib.search_memes("-animal:")) == {ids["plain"]}

    def test_quoted_phrase(self, populated):
        lib, ids = populated
        assert _ids(lib.search_memes('"cat meme"')) == {ids["cat meme"]}

    def test_no_match(self, populated):
        lib, _ = populated
        assert lib.search_memes("unicorn") == []

    def test_with_tags(self, populated):
        lib, ids = populated
        [meme] = lib.search_memes("doge", with_tags=True)
        assert meme.tags == [Tag("animal", "dog")]
        [meme] = lib.search_memes("doge")
        assert meme.tags == []

    def test_count_matches(self, populated):
        lib, _ = populated
        assert lib.count_matches("animal:cat") == 2
        assert lib.count_matches() == 4


class TestSearchModes:

    def test_modes_partition_by_flags(self, populated):
        lib, ids = populated
        lib.set_favorite(ids["grumpy"], True)
        lib.set_favorite(ids["doge"], True)
        lib.set_trash(ids["doge"], True)
        lib.set_trash(ids["plain"], True)

        assert _ids(lib.search_memes(mode=SearchMode.NORMAL)) == {ids["grumpy"], ids["cat meme"]}
        assert _ids(lib.search_memes(mode=SearchMode.ONLY_FAV)) == {ids["grumpy"]}
        assert _ids(lib.search_memes(mode=SearchMode.ONLY_TRASH)) == {ids["doge"], ids["plain"]}

    def test_mode_by_name(self, populated):
        lib, ids = populated
        lib.set_trash(ids["plain"], True)
        assert _ids(lib.search_memes(mode="OnlyTrash")) == {ids["plain"]}
        assert _ids(lib.search_memes(mode="onlytrash")) == {ids["plain"]}

    def test_unknown_mode(self, lib):
        with pytest.raises(ValidationError):
            lib.search_memes(mode="Everything")


class TestPagination:
    """Pages are 0-based, ordered by last update, newest first."""

    def test_default_page_size(self, lib):
        assert lib.page_size == 30

    def test_pages_partition_results(self, small_pages, make_file):
        lib = small_pages
        added = [lib.add_meme(make_file(), f"meme {i}") for i in range(7)]

        pages = [lib.search_memes(page=p) for p in range(4)]
        assert [len(p) for p in pages] == [3, 3, 1, 0]

        seen = [m.id for page in pages for m in page]
        assert len(seen) == len(set(seen))
        assert set(seen) == set(added)

    def test_newest_first(self, small_pages, make_file):
        lib = small_pages
        a = lib.add_meme(make_file(), "a")
        b = lib.add_meme(make_file(), "b")
        c = lib.add_meme(make_file(), "c")
        assert [m.id for m in lib.search_memes()] == [c, b, a]

    def test_update_moves_to_front(self, small_pages, make_file):
        lib = small_pages
        a = lib.add_meme(make_file(), "a")
        b = lib.add_meme(make_file(), "b")
        lib.update_meme(a, desc="touched")
        assert [m.id for m in lib.search_memes()] == [a, b]

    def test_page_past_end_is_empty(self, lib, make_file):
        lib.add_meme(make_file(), "x")
        assert lib.search_memes(page=5) == []

    @pytest.mark.parametrize("page", [10**18, 2**63, 2**70])
    def test_page_beyond_sqlite_range_is_empty(self, lib, make_file, page):
        lib.add_meme(make_file(), "x")
        assert lib.search_memes(page=page) == []
        assert lib.search_memes("x", page=page, mode=SearchMode.ONLY_FAV) == []

    def test_huge_page_still_validates_statement(self, lib):
        with pytest.raises(ValidationError):
            lib.search_memes('"unbalanced', page=2**70)

    @pytest.mark.parametrize("page", [-1, 1.5, "0", True])
    def test_invalid_page(self, lib, page):
        with pytest.raises(ValidationError):
            lib.search_memes(page=page)
