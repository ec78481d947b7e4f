"""Service layer for bookmark creation and user edits."""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models.bookmark import Bookmark, BookmarkStatus
from models.bookmark_content import BookmarkContent
from schemas.bookmark import BookmarkCreate, BookmarkUpdate
from services.exceptions import BookmarkNotFoundError
from services.search_vector import update_search_vector
from services.tag_service import ensure_tags, merge_tags_onto_bookmark
from services.url_normalizer import normalize_url

logger = logging.getLogger(__name__)


class DuplicateUrlError(Exception):
    """Raised when the user already has a bookmark with the same normalized URL."""

    def __init__(self, url: str, existing_bookmark_id: int | None = None) -> None:
        self.url = url
        self.existing_bookmark_id = existing_bookmark_id
        super().__init__(f"A bookmark with URL '{url}' already exists")


async def _find_by_normalized_url(
    db: AsyncSession,
    user_id: int,
    normalized_url: str,
) -> Bookmark | None:
    result = await db.execute(
        select(Bookmark).where(
            Bookmark.user_id == user_id,
            Bookmark.normalized_url == normalized_url,
        ),
    )
    return result.scalar_one_or_none()


async def create_bookmark(
    db: AsyncSession,
    user_id: int,
    data: BookmarkCreate,
) -> Bookmark:
    """
    Create a pending bookmark for a user.

    User-supplied tags are attached before returning, so they are already present
    when the processing pipeline merges model-suggested tags.

    Args:
        db: Database session.
        user_id: User ID to create the bookmark for.
        data: Bookmark creation data.

    Returns:
        The created bookmark (status pending).

    Raises:
        DuplicateUrlError: If the user already has a bookmark with the same normalized URL.

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    url_str = data.url
    normalized = normalize_url(url_str)

    existing = await _find_by_normalized_url(db, user_id, normalized)
    if existing is not None:
        raise DuplicateUrlError(url_str, existing.id)

    bookmark = Bookmark(
        user_id=user_id,
        url=url_str,
        normalized_url=normalized,
        title=data.title,
        description=data.description,
        status=BookmarkStatus.PENDING,
    )
    try:
        async with db.begin_nested():
            db.add(bookmark)
            await db.flush()
    except IntegrityError as e:
        # Fallback for race condition: unique index on (user_id, normalized_url)
        if "uq_bookmarks_user_id_normalized_url" in str(e) or "UNIQUE" in str(e):
            existing = await _find_by_normalized_url(db, user_id, normalized)
            raise DuplicateUrlError(url_str, existing.id if existing else None) from e
        raise

    if data.tags:
        tag_ids = await ensure_tags(db, user_id, data.tags)
        await merge_tags_onto_bookmark(db, bookmark.id, tag_ids)

    logger.info(
        "Created bookmark: id=%s user_id=%s normalized_url=%s tags=%s",
        bookmark.id,
        user_id,
        normalized,
        len(data.tags),
    )
    return bookmark


async def get_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
) -> Bookmark | None:
    """
    Get a bookmark by ID, scoped to the owner, with content and tags loaded.

    Returns:
        The bookmark if found and owned by the user, None otherwise.
    """
    result = await db.execute(
        select(Bookmark)
        .options(selectinload(Bookmark.content), selectinload(Bookmark.tag_objects))
        .where(Bookmark.id == bookmark_id, Bookmark.user_id == user_id)
        .execution_options(populate_existing=True),
    )
    return result.scalar_one_or_none()


async def update_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    data: BookmarkUpdate,
) -> Bookmark:
    """
    Apply a user edit to the note and/or summaries.

    Only fields explicitly present in ``data`` are written. The search vector is
    recomputed whenever one of them changes, so search never drifts from what is
    displayed. Processing status is never touched here.

    Raises:
        BookmarkNotFoundError: If the bookmark does not exist or is not owned by the user.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        raise BookmarkNotFoundError(bookmark_id)

    changes = data.model_dump(exclude_unset=True)
    changed = False

    if "description" in changes and changes["description"] != bookmark.description:
        bookmark.description = changes["description"]
        changed = True

    summary_changes = {
        key: changes[key] for key in ("summary_short", "summary_long") if key in changes
    }
    content = bookmark.content
    if summary_changes:
        if content is None:
            content = BookmarkContent(bookmark_id=bookmark.id, meta={})
            db.add(content)
            bookmark.content = content
        for key, value in summary_changes.items():
            if getattr(content, key) != value:
                setattr(content, key, value)
                changed = True

    if changed and content is not None:
        await update_search_vector(db, bookmark, content)

    await db.flush()
    logger.info("Updated bookmark: id=%s fields=%s", bookmark_id, sorted(changes))
    return await get_bookmark(db, user_id, bookmark_id)


async def delete_bookmark(db: AsyncSession, user_id: int, bookmark_id: int) -> None:
    """
    Delete a bookmark with its content row and tag edges. Tags themselves are kept.

    Raises:
        BookmarkNotFoundError: If the bookmark does not exist or is not owned by the user.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        raise BookmarkNotFoundError(bookmark_id)

    await db.delete(bookmark)
    await db.flush()
    logger.info("Deleted bookmark: id=%s user_id=%s", bookmark_id, user_id)
