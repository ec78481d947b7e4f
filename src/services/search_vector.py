"""
Weighted full-text search documents for bookmarks.

Field weights (higher tiers rank first):
  - A: title
  - B: description (user note), summary_short
  - C: summary_long, url

The ``simple`` text search configuration is used: bookmarks are stored in many
languages, so no language-specific stemming is applied.
"""
import re
from collections import defaultdict
from dataclasses import dataclass, field
from functools import reduce

from sqlalchemy import ColumnElement, Text, func, literal, literal_column
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from models.bookmark_content import BookmarkContent

TS_CONFIG = "simple"
WEIGHTS = ("A", "B", "C", "D")
# PostgreSQL caps tsvector positions at 16383
MAX_POSITION = 16383

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


@dataclass
class SearchDocument:
    """Ordered (weight, text) segments making up a bookmark's search document."""

    segments: list[tuple[str, str]] = field(default_factory=list)

    def add(self, weight: str, text: str | None) -> None:
        """Append a segment; missing fields contribute empty text."""
        if weight not in WEIGHTS:
            raise ValueError(f"Invalid weight: {weight}")
        self.segments.append((weight, text or ""))

    @property
    def is_empty(self) -> bool:
        """True when no segment has any text."""
        return not any(text.strip() for _, text in self.segments)

    def lexemes(self) -> dict[str, list[tuple[int, str]]]:
        """Lowercased tokens with their (position, weight) occurrences."""
        result: dict[str, list[tuple[int, str]]] = defaultdict(list)
        position = 0
        for weight, text in self.segments:
            for token in _TOKEN_RE.findall(text.lower()):
                position = min(position + 1, MAX_POSITION)
                result[token].append((position, weight))
        return dict(result)

    def to_tsvector_text(self) -> str:
        """
        Render the document in tsvector text format, e.g. ``'example':1A 'note':3B``.

        Used where the database has no native tsvector type.
        """
        entries = []
        for lexeme, occurrences in sorted(self.lexemes().items()):
            positions = ",".join(
                f"{pos}{weight if weight != 'D' else ''}" for pos, weight in occurrences
            )
            escaped = lexeme.replace("'", "''")
            entries.append(f"'{escaped}':{positions}")
        return " ".join(entries)

    def to_sql(self) -> ColumnElement:
        """Build ``setweight(to_tsvector('simple', ...), 'A') || ...`` for PostgreSQL."""
        config = literal_column(f"'{TS_CONFIG}'::regconfig")
        parts = [
            func.setweight(
                func.to_tsvector(config, literal(text, Text)),
                literal_column(f"'{weight}'"),
            )
            for weight, text in self.segments
        ]
        if not parts:
            return func.to_tsvector(config, literal("", Text))
        return reduce(lambda left, right: left.op("||")(right), parts)


def build_search_vector(bookmark: Bookmark, content: BookmarkContent | None) -> SearchDocument:
    """
    Build the weighted search document for a bookmark.

    Pure function. Missing fields (including a missing content row) are treated as
    empty text.
    """
    document = SearchDocument()
    document.add("A", bookmark.title)
    document.add("B", bookmark.description)
    document.add("B", content.summary_short if content else None)
    document.add("C", content.summary_long if content else None)
    document.add("C", bookmark.url)
    return document


async def update_search_vector(
    db: AsyncSession,
    bookmark: Bookmark,
    content: BookmarkContent,
) -> SearchDocument:
    """
    Recompute and assign ``content.search_vector``; written on the next flush.

    On PostgreSQL the vector is computed server-side from the same segments; other
    dialects store the tsvector text rendering.

    Returns:
        The SearchDocument that was written.
    """
    document = build_search_vector(bookmark, content)
    if db.get_bind().dialect.name == "postgresql":
        content.search_vector = document.to_sql()
    else:
        content.search_vector = document.to_tsvector_text()
    return document
