"""Bookmark model for storing user bookmarks."""
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin
from models.tag import bookmark_tags

if TYPE_CHECKING:
    from models.bookmark_content import BookmarkContent
    from models.tag import Tag
    from models.user import User


class BookmarkStatus(StrEnum):
    """Processing state of a bookmark."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class Bookmark(Base, TimestampMixin):
    """Bookmark model - a saved URL and the enrichment pipeline's status for it."""

    __tablename__ = "bookmarks"
    __table_args__ = (
        # Dedup key is scoped to the owner
        Index(
            "uq_bookmarks_user_id_normalized_url",
            "user_id",
            "normalized_url",
            unique=True,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # User note; the pipeline never writes it
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    favicon_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[BookmarkStatus] = mapped_column(
        Enum(
            BookmarkStatus,
            name="bookmark_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=BookmarkStatus.PENDING,
        index=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None,
    )

    user: Mapped["User"] = relationship(back_populates="bookmarks")
    content: Mapped["BookmarkContent | None"] = relationship(
        back_populates="bookmark",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    # Edges are written through the junction table by the tag service
    tag_objects: Mapped[list["Tag"]] = relationship(
        secondary=bookmark_tags,
        back_populates="bookmarks",
        viewonly=True,
        order_by="Tag.name",
    )
