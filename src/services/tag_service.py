"""Service layer for tag reconciliation and bookmark tag edges."""
import logging

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from models.tag import Tag, bookmark_tags
from schemas.bookmark import normalize_tag_names
from services.exceptions import BookmarkNotFoundError

logger = logging.getLogger(__name__)


class TagNotFoundError(Exception):
    """Raised when a tag is not attached to the bookmark."""

    def __init__(self, tag_id: int) -> None:
        self.tag_id = tag_id
        super().__init__(f"Tag {tag_id} not found on bookmark")


async def _create_tag(db: AsyncSession, user_id: int, name: str) -> int:
    """
    Insert a tag, treating a unique-constraint violation as "already exists".

    The insert runs in a SAVEPOINT so a conflicting concurrent insert only rolls back
    this one statement; the winner's row is then re-read.
    """
    try:
        async with db.begin_nested():
            tag = Tag(user_id=user_id, name=name)
            db.add(tag)
            await db.flush()
        return tag.id
    except IntegrityError:
        logger.info("Tag created concurrently, re-reading: user_id=%s name=%s", user_id, name)
        result = await db.execute(
            select(Tag.id).where(Tag.user_id == user_id, Tag.name == name),
        )
        tag_id = result.scalar_one_or_none()
        if tag_id is None:
            raise
        return tag_id


async def ensure_tags(
    db: AsyncSession,
    user_id: int,
    tag_names: list[str],
) -> list[int]:
    """
    Get existing tags or create missing ones, returning their IDs.

    Names are trimmed and lowercased; duplicates and blanks are dropped. Safe to call
    concurrently for the same user.

    Args:
        db: Database session.
        user_id: User ID to scope tags.
        tag_names: Tag names to resolve.

    Returns:
        Tag IDs in the order of the normalized names.
    """
    normalized = normalize_tag_names(tag_names)
    if not normalized:
        return []

    result = await db.execute(
        select(Tag.name, Tag.id).where(
            Tag.user_id == user_id,
            Tag.name.in_(normalized),
        ),
    )
    ids_by_name = {name: tag_id for name, tag_id in result}

    for name in normalized:
        if name not in ids_by_name:
            ids_by_name[name] = await _create_tag(db, user_id, name)

    return [ids_by_name[name] for name in normalized]


async def get_bookmark_tag_ids(db: AsyncSession, bookmark_id: int) -> set[int]:
    """Return the IDs of the tags currently attached to a bookmark."""
    result = await db.execute(
        select(bookmark_tags.c.tag_id).where(bookmark_tags.c.bookmark_id == bookmark_id),
    )
    return set(result.scalars())


async def get_bookmark_tag_names(db: AsyncSession, bookmark_id: int) -> list[str]:
    """Return the names of the tags attached to a bookmark, sorted."""
    result = await db.execute(
        select(Tag.name)
        .join(bookmark_tags, Tag.id == bookmark_tags.c.tag_id)
        .where(bookmark_tags.c.bookmark_id == bookmark_id)
        .order_by(Tag.name),
    )
    return list(result.scalars())


async def merge_tags_onto_bookmark(
    db: AsyncSession,
    bookmark_id: int,
    tag_ids: list[int] | set[int],
) -> set[int]:
    """
    Attach tags to a bookmark, keeping every tag it already has.

    Reads the current edge set, computes the union with ``tag_ids``, then rewrites the
    bookmark's edges as exactly that union. The resulting set is always a superset of
    the edges present before the call; this never narrows a bookmark's tags.

    Args:
        db: Database session.
        bookmark_id: Bookmark to tag.
        tag_ids: Tag IDs to add.

    Returns:
        The bookmark's tag IDs after the merge.
    """
    # Edges are written with Core statements, so pending ORM rows must exist first
    await db.flush()

    existing = await get_bookmark_tag_ids(db, bookmark_id)
    merged = existing | set(tag_ids)

    await db.execute(
        delete(bookmark_tags).where(bookmark_tags.c.bookmark_id == bookmark_id),
    )
    if merged:
        await db.execute(
            insert(bookmark_tags),
            [{"bookmark_id": bookmark_id, "tag_id": tag_id} for tag_id in sorted(merged)],
        )

    logger.debug(
        "Merged tags: bookmark_id=%s existing=%s added=%s",
        bookmark_id,
        len(existing),
        len(merged) - len(existing),
    )
    return merged


async def _require_owned_bookmark(db: AsyncSession, user_id: int, bookmark_id: int) -> None:
    result = await db.execute(
        select(Bookmark.id).where(Bookmark.id == bookmark_id, Bookmark.user_id == user_id),
    )
    if result.scalar_one_or_none() is None:
        raise BookmarkNotFoundError(bookmark_id)


async def add_tag_to_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    tag_name: str,
) -> Tag:
    """
    Attach a tag (created if needed) to a bookmark owned by the user.

    Raises:
        BookmarkNotFoundError: If the bookmark does not exist or is not owned by the user.
        ValueError: If the tag name is blank.
    """
    await _require_owned_bookmark(db, user_id, bookmark_id)
    tag_ids = await ensure_tags(db, user_id, [tag_name])
    if not tag_ids:
        raise ValueError("Tag name cannot be empty")
    await merge_tags_onto_bookmark(db, bookmark_id, tag_ids)
    return await db.get_one(Tag, tag_ids[0])


async def remove_tag_from_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    tag_id: int,
) -> None:
    """
    Detach one tag from a bookmark. The tag itself is kept.

    Raises:
        BookmarkNotFoundError: If the bookmark does not exist or is not owned by the user.
        TagNotFoundError: If the tag is not attached to the bookmark.
    """
    await _require_owned_bookmark(db, user_id, bookmark_id)
    result = await db.execute(
        delete(bookmark_tags).where(
            bookmark_tags.c.bookmark_id == bookmark_id,
            bookmark_tags.c.tag_id == tag_id,
        ),
    )
    if result.rowcount == 0:
        raise TagNotFoundError(tag_id)
