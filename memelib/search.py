"""
Search statements.

A statement is a list of whitespace-separated terms, all of which must
match (AND):

    cat                 summary, desc or any tag value contains "cat"
    animal:cat          has tag animal:cat (value compared exactly)
    animal:             has any tag in namespace "animal"
    "grumpy cat"        quotes group words into one term
    animal:"big cat"    quoted tag value
    -dog                negation of any of the above

All comparisons are case-insensitive (casefold). A colon inside quotes is
literal text, so "note: hi" is a plain term.
"""

import sqlite3
from dataclasses import dataclass
from typing import Optional

from .errors import ValidationError
from .meme_store import meme_select_columns, row_to_meme
from .types import SQLITE_MAX_INT, Meme, SearchMode, validate_namespace


@dataclass(frozen=True)
class Term:
    """One parsed search term."""
    text: str
    namespace: Optional[str] = None
    negated: bool = False

    @property
    def is_tag(self) -> bool:
        return self.namespace is not None


def parse_statement(statement: str) -> list[Term]:
    """
    Split a statement into terms.

    Raises:
        ValidationError: On an unbalanced quote or an invalid namespace
    """
    terms: list[Term] = []
    s = statement or ""
    i, n = 0, len(s)
    while i < n:
        if s[i].isspace():
            i += 1
            continue

        negated = False
        if s[i] == "-" and i + 1 < n and not s[i + 1].isspace():
            negated = True
            i += 1

        buf: list[str] = []
        namespace: Optional[str] = None
        quoted = False
        while i < n and not s[i].isspace():
            c = s[i]
            if c == '"':
                end = s.find('"', i + 1)
                if end == -1:
                    raise ValidationError(f"Unbalanced quote in search statement: {statement!r}")
                buf.append(s[i + 1:end])
                quoted = True
                i = end + 1
                continue
            if c == ":" and namespace is None and not quoted and buf:
                namespace = "".join(buf)
                buf = []
                i += 1
                continue
            buf.append(c)
            i += 1

        text = "".join(buf)
        if namespace is not None:
            validate_namespace(namespace)
            terms.append(Term(text=text, namespace=namespace, negated=negated))
        elif text:
            terms.append(Term(text=text, negated=negated))
    return terms


_TAG_EXISTS = """EXISTS (
    SELECT 1 FROM meme_tag JOIN tag ON tag.id = meme_tag.tag_id
    WHERE meme_tag.meme_id = meme.id AND {cond}
)"""


def _term_sql(term: Term) -> tuple[str, list]:
    if term.is_tag:
        if term.text:
            cond = _TAG_EXISTS.format(
                cond="casefold(tag.namespace) = ? AND casefold(tag.value) = ?"
            )
            params = [term.namespace.casefold(), term.text.casefold()]
        else:
            cond = _TAG_EXISTS.format(cond="casefold(tag.namespace) = ?")
            params = [term.namespace.casefold()]
    else:
        needle = term.text.casefold()
        cond = (
            "(instr(casefold(meme.summary), ?) > 0"
            " OR instr(casefold(meme.description), ?) > 0"
            " OR " + _TAG_EXISTS.format(cond="instr(casefold(tag.value), ?) > 0") + ")"
        )
        params = [needle, needle, needle]
    if term.negated:
        cond = f"NOT {cond}"
    return cond, params


def build_where(terms: list[Term], mode: SearchMode) -> tuple[str, list]:
    """WHERE clause (without the keyword) for terms under a mode."""
    clauses = [mode.where_clause()]
    params: list = []
    for term in terms:
        sql, term_params = _term_sql(term)
        clauses.append(sql)
        params.extend(term_params)
    return " AND ".join(clauses), params


def validate_page(page) -> int:
    if isinstance(page, bool) or not isinstance(page, int):
        raise ValidationError(f"Page must be an integer: {page!r}")
    if page < 0:
        raise ValidationError(f"Page must be >= 0 (pages are 0-based): {page}")
    return page


def search_memes(
    conn: sqlite3.Connection,
    statement: str,
    page: int,
    mode: SearchMode,
    page_size: int,
) -> list[Meme]:
    """
    One page of memes matching a statement, most recently updated first.

    Ties on update_time are broken by id (descending), which makes the
    order total: consecutive pages never repeat or skip a row as long as
    nothing is written in between.
    """
    page = validate_page(page)
    where, params = build_where(parse_statement(statement), mode)
    offset = page * page_size
    if offset > SQLITE_MAX_INT:
        return []  # past any row SQLite can hold
    cursor = conn.execute(f"""
        SELECT {meme_select_columns()}
        FROM meme
        WHERE {where}
        ORDER BY meme.update_time DESC, meme.id DESC
        LIMIT ? OFFSET ?
    """, (*params, page_size, offset))
    return [row_to_meme(row) for row in cursor]


def count_matches(conn: sqlite3.Connection, statement: str, mode: SearchMode) -> int:
    """Total number of memes a statement matches under a mode."""
    where, params = build_where(parse_statement(statement), mode)
    return conn.execute(
        f"SELECT COUNT(*) FROM meme WHERE {where}", params
    ).fetchone()[0]
