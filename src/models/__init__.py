"""SQLAlchemy models."""
from models.base import Base, TimestampMixin
from models.tag import Tag, bookmark_tags  # Must be before bookmark due to import
from models.bookmark import Bookmark, BookmarkStatus
from models.bookmark_content import BookmarkContent
from models.user import User

__all__ = [
    "Base",
    "Bookmark",
    "BookmarkContent",
    "BookmarkStatus",
    "Tag",
    "TimestampMixin",
    "User",
    "bookmark_tags",
]
