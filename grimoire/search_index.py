"""
Search index over item text fields.

The index is derived data: for each item and each text-bearing field it
stores the field's search terms (see ``types.tokenize``). It can always be
rebuilt from the items table, and exists so queries can report which field
matched without re-reading every item body.

The index never opens or commits transactions itself. The repository calls
it on its own connection inside the same unit of work as the row write, so
row and index changes commit or roll back together.
"""

import logging
import re
import sqlite3
from typing import Iterable, Optional

from .item_store import escape_like
from .types import Category, Item, SearchHit, tokenize

logger = logging.getLogger(__name__)

INDEXED_FIELDS = ("name", "description", "content", "tags")

# Rank tiers, best first
RANK_EXACT_NAME = 0
RANK_NAME = 1
RANK_TAG = 2
RANK_TEXT = 3

# Words joined by plain separators; any other term is also matched literally
_WORDS_RE = re.compile(r"\w+(?:[\s\-.,:;/]+\w+)*")


def derive_terms(item: Item) -> dict[str, str]:
    """Search terms per indexed field for an item (empty fields omitted)."""
    values = {
        "name": tokenize(item.name),
        "description": tokenize(item.description),
        "content": tokenize(item.content),
        # One tag per line so a term never matches across two tags
        "tags": "\n".join(tokenize(t) for t in item.tags),
    }
    return {f: terms for f, terms in values.items() if terms}


def _contains(field: str, text: list, literal: str) -> bool:
    """Whether the stored field text holds ``literal`` (tags one at a time)."""
    value = text[INDEXED_FIELDS.index(field)]
    if not value:
        return False
    if field == "tags":
        return any(literal in tag for tag in value.split(","))
    return literal in value.casefold()


def _rank(field: str, terms: str, needle: str) -> int:
    if field == "name":
        return RANK_EXACT_NAME if terms == needle else RANK_NAME
    if field == "tags":
        return RANK_TAG
    return RANK_TEXT


class SearchIndex:
    """
    Token index stored in the ``search_index`` table.

    Matching is containment on normalized terms: a field matches when its
    terms contain the query's terms, so "review" finds "code-review".
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    @staticmethod
    def create_schema(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS search_index (
                item_id INTEGER NOT NULL,
                field TEXT NOT NULL,
                terms TEXT NOT NULL,
                PRIMARY KEY (item_id, field)
            )
        """)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def index(self, item: Item) -> None:
        """Replace all entries for ``item.id`` with freshly derived terms."""
        if item.id is None:
            raise ValueError("Cannot index an item without an id")
        self.remove(item.id)
        self._conn.executemany(
            "INSERT INTO search_index (item_id, field, terms) VALUES (?, ?, ?)",
            [(item.id, f, terms) for f, terms in derive_terms(item).items()],
        )

    def remove(self, item_id: int) -> None:
        """Drop all entries for an item. No-op when there are none."""
        self._conn.execute("DELETE FROM search_index WHERE item_id = ?", (item_id,))

    def clear(self) -> None:
        self._conn.execute("DELETE FROM search_index")

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def entries(self, item_id: int) -> dict[str, str]:
        """Stored terms per field for one item."""
        cursor = self._conn.execute(
            "SELECT field, terms FROM search_index WHERE item_id = ?", (item_id,)
        )
        return {row[0]: row[1] for row in cursor}

    def indexed_ids(self) -> set[int]:
        cursor = self._conn.execute("SELECT DISTINCT item_id FROM search_index")
        return {row[0] for row in cursor}

    def query(
        self,
        term: str,
        category: Optional[Category] = None,
        tag: Optional[str] = None,
    ) -> list[SearchHit]:
        """
        Find items whose indexed fields contain ``term``.

        A term made of words and separators ("git-commit", "Commit Message")
        matches on terms alone. A term carrying other punctuation ("c++",
        "#deploy") must also appear literally in the field text.

        Args:
            term: Free text; tokenized like the indexed fields
            category: Only items of this category
            tag: Only items carrying this (normalized) tag

        Returns:
            One hit per item, best rank first, then most recently updated.
            Empty when the term has no searchable characters.
        """
        needle = tokenize(term)
        if not needle:
            return []
        literal = term.strip().casefold()
        if _WORDS_RE.fullmatch(literal):
            literal = None

        sql = """
            SELECT s.item_id, s.field, s.terms, i.updated_at,
                   i.name, i.description, i.content, i.tags
            FROM search_index s
            LEFT JOIN items i ON i.id = s.item_id
            WHERE instr(s.terms, ?) > 0
        """
        params: list = [needle]
        if category is not None:
            sql += " AND i.category = ?"
            params.append(Category.parse(category).value)
        if tag is not None:
            sql += r" AND (',' || i.tags || ',') LIKE ? ESCAPE '\'"
            params.append(f"%,{escape_like(tag.strip().casefold())},%")

        best: dict[int, tuple[int, str, Optional[str]]] = {}
        for item_id, field, terms, updated_at, *text in self._conn.execute(sql, params):
            if literal is not None and not _contains(field, text, literal):
                continue
            rank = _rank(field, terms, needle)
            current = best.get(item_id)
            if current is None or rank < current[0] or (
                rank == current[0]
                and INDEXED_FIELDS.index(field) < INDEXED_FIELDS.index(current[1])
            ):
                best[item_id] = (rank, field, updated_at)

        # Stable sorts: updated_at desc (ties by id desc), then rank asc
        ordered = sorted(best.items(), key=lambda kv: kv[0], reverse=True)
        ordered.sort(key=lambda kv: kv[1][2] or "", reverse=True)
        ordered.sort(key=lambda kv: kv[1][0])
        return [SearchHit(item_id=item_id, matched_field=v[1]) for item_id, v in ordered]

    def stale_ids(self, items: Iterable[Item]) -> list[int]:
        """
        Ids whose index entries differ from the terms derived from ``items``,
        plus ids that are indexed but not among ``items`` (orphans).
        """
        stale = []
        seen = set()
        for item in items:
            seen.add(item.id)
            if self.entries(item.id) != derive_terms(item):
                stale.append(item.id)
        stale.extend(sorted(self.indexed_ids() - seen))
        return stale
