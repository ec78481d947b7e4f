"""
Search vector backfill task.

Recomputes ``bookmark_contents.search_vector`` for every bookmark that has content,
e.g. after the weighting scheme changes or after rows were written by hand.

Usage:
    python -m tasks.backfill_search_vectors

Each row is written in its own SAVEPOINT: a row that fails is logged and skipped,
and the rest of the run continues.
"""
import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import async_session_factory
from models.bookmark import Bookmark
from models.bookmark_content import BookmarkContent
from services.search_vector import update_search_vector

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200


@dataclass
class BackfillStats:
    """Statistics from a backfill run."""

    processed: int = 0
    updated: int = 0
    failed: int = 0

    failed_bookmark_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        """Convert to simple dict for logging/return."""
        return {
            "processed": self.processed,
            "updated": self.updated,
            "failed": self.failed,
        }


async def backfill_search_vectors(
    db: AsyncSession,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> BackfillStats:
    """
    Recompute the search vector of every bookmark with a content row.

    Args:
        db: Database session. Committed after each batch.
        batch_size: Number of bookmarks loaded per query.

    Returns:
        BackfillStats with per-row success and failure counts.
    """
    stats = BackfillStats()
    last_id = 0

    while True:
        result = await db.execute(
            select(Bookmark, BookmarkContent)
            .join(BookmarkContent, BookmarkContent.bookmark_id == Bookmark.id)
            .where(Bookmark.id > last_id)
            .order_by(Bookmark.id)
            .limit(batch_size),
        )
        rows = result.all()
        if not rows:
            break

        for bookmark, content in rows:
            # Plain int: bookmark attributes may be expired after a rolled-back savepoint
            bookmark_id = bookmark.id
            last_id = bookmark_id
            stats.processed += 1
            try:
                async with db.begin_nested():
                    await update_search_vector(db, bookmark, content)
                    await db.flush()
            except SQLAlchemyError:
                logger.exception("Failed to backfill search vector: bookmark_id=%s", bookmark_id)
                stats.failed += 1
                stats.failed_bookmark_ids.append(bookmark_id)
                continue
            stats.updated += 1

        await db.commit()
        logger.info("Backfill progress: %s", stats.to_dict())

    return stats


async def run_backfill(
    db: AsyncSession | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> BackfillStats:
    """
    Run the backfill.

    Args:
        db: Database session. If None, creates one from async_session_factory.
        batch_size: Number of bookmarks loaded per query.

    Returns:
        BackfillStats for the whole run.
    """
    logger.info("Starting search vector backfill")

    if db is not None:
        stats = await backfill_search_vectors(db, batch_size=batch_size)
    else:
        async with async_session_factory() as session:
            stats = await backfill_search_vectors(session, batch_size=batch_size)

    logger.info("Backfill complete: %s", stats.to_dict())
    return stats


def main() -> None:
    """Entry point for running the backfill as a script."""
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_backfill())


if __name__ == "__main__":
    main()
