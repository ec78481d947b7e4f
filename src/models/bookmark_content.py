"""Enrichment output stored one-to-one with a bookmark."""
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR
from sqlalchemy.orm import Mapped, deferred, mapped_column, relationship

from models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from models.bookmark import Bookmark


# tsvector on PostgreSQL; other dialects keep the rendered tsvector text
SearchVectorType = TSVECTOR().with_variant(Text(), "sqlite")


class BookmarkContent(Base, TimestampMixin):
    """Summaries, language, model metadata and the full-text search vector."""

    __tablename__ = "bookmark_contents"
    __table_args__ = (
        Index(
            "ix_bookmark_contents_search_vector",
            "search_vector",
            postgresql_using="gin",
        ),
    )

    bookmark_id: Mapped[int] = mapped_column(
        ForeignKey("bookmarks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    summary_short: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_long: Mapped[str | None] = mapped_column(Text, nullable=True)
    language: Mapped[str | None] = mapped_column(String(20), nullable=True)
    model_identifier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    model_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )
    # Deferred: large and only read by search queries
    search_vector: Mapped[str | None] = deferred(
        mapped_column(SearchVectorType, nullable=True),
    )

    bookmark: Mapped["Bookmark"] = relationship(back_populates="content")
