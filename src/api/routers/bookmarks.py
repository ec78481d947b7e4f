"""Bookmark endpoints: create-and-enrich, read, user edits, reprocess, delete and tag edits."""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import (
    get_async_session,
    get_current_user,
    get_processing_locks,
    get_processor,
    get_settings,
)
from core.config import Settings
from core.single_flight import KeyedLock
from models.user import User
from schemas.bookmark import (
    BookmarkCreate,
    BookmarkResponse,
    BookmarkUpdate,
    ProcessingResultResponse,
    TagAdd,
)
from services import bookmark_service, tag_service
from services.bookmark_processor import BookmarkProcessor, ProcessingResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


async def _run_processing(
    db: AsyncSession,
    processor: BookmarkProcessor,
    locks: KeyedLock,
    settings: Settings,
    user_id: int,
    bookmark_id: int,
    force_reprocess: bool,
) -> ProcessingResult:
    """
    Run the pipeline for one bookmark under its lock and commit the outcome.

    The commit happens before the lock is released, so the next run for the same
    bookmark always sees this run's tag edges.
    """
    async with locks.hold(bookmark_id):
        try:
            async with asyncio.timeout(settings.process_timeout):
                result = await processor.process(
                    db, user_id, bookmark_id, force_reprocess=force_reprocess,
                )
        except TimeoutError:
            logger.error(
                "Processing exceeded %ss: bookmark_id=%s",
                settings.process_timeout,
                bookmark_id,
            )
            raise HTTPException(status_code=504, detail="Bookmark processing timed out")
        await db.commit()
    return result


@router.post("/", response_model=BookmarkResponse, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    processor: BookmarkProcessor = Depends(get_processor),
    locks: KeyedLock = Depends(get_processing_locks),
    settings: Settings = Depends(get_settings),
) -> BookmarkResponse:
    """
    Create a bookmark and enrich it inline.

    A failed enrichment is not an HTTP error: the bookmark is returned with
    ``status="failed"`` and an ``error_message``.
    """
    bookmark = await bookmark_service.create_bookmark(db, current_user.id, data)
    bookmark_id = bookmark.id
    # Keep the pending bookmark even if processing times out
    await db.commit()

    await _run_processing(
        db, processor, locks, settings, current_user.id, bookmark_id, force_reprocess=False,
    )
    bookmark = await bookmark_service.get_bookmark(db, current_user.id, bookmark_id)
    return BookmarkResponse.model_validate(bookmark)


@router.get("/{bookmark_id}", response_model=BookmarkResponse)
async def get_bookmark(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Get a single bookmark by ID, with its summaries and tags."""
    bookmark = await bookmark_service.get_bookmark(db, current_user.id, bookmark_id)
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.patch("/{bookmark_id}", response_model=BookmarkResponse)
async def update_bookmark(
    bookmark_id: int,
    data: BookmarkUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Edit the note and/or summaries of a bookmark."""
    bookmark = await bookmark_service.update_bookmark(
        db, current_user.id, bookmark_id, data,
    )
    return BookmarkResponse.model_validate(bookmark)


@router.post("/{bookmark_id}/reprocess", response_model=ProcessingResultResponse)
async def reprocess_bookmark(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    processor: BookmarkProcessor = Depends(get_processor),
    locks: KeyedLock = Depends(get_processing_locks),
    settings: Settings = Depends(get_settings),
) -> ProcessingResultResponse:
    """
    Re-run enrichment regardless of the bookmark's current status.

    Existing tags are kept; model-suggested tags are added to them.
    """
    result = await _run_processing(
        db, processor, locks, settings, current_user.id, bookmark_id, force_reprocess=True,
    )
    bookmark = await bookmark_service.get_bookmark(db, current_user.id, bookmark_id)
    return ProcessingResultResponse(
        bookmark_id=result.bookmark_id,
        status=result.status,
        error_message=result.error_message,
        skipped=result.skipped,
        bookmark=BookmarkResponse.model_validate(bookmark),
    )


@router.post("/{bookmark_id}/tags", response_model=BookmarkResponse)
async def add_tag(
    bookmark_id: int,
    data: TagAdd,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    locks: KeyedLock = Depends(get_processing_locks),
) -> BookmarkResponse:
    """Attach a tag to a bookmark by name, creating the tag if needed."""
    async with locks.hold(bookmark_id):
        await tag_service.add_tag_to_bookmark(db, current_user.id, bookmark_id, data.name)
        await db.commit()
    bookmark = await bookmark_service.get_bookmark(db, current_user.id, bookmark_id)
    return BookmarkResponse.model_validate(bookmark)


@router.delete("/{bookmark_id}/tags/{tag_id}", status_code=204)
async def remove_tag(
    bookmark_id: int,
    tag_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    locks: KeyedLock = Depends(get_processing_locks),
) -> None:
    """Detach a tag from a bookmark. The tag itself is kept."""
    async with locks.hold(bookmark_id):
        await tag_service.remove_tag_from_bookmark(db, current_user.id, bookmark_id, tag_id)
        await db.commit()


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    locks: KeyedLock = Depends(get_processing_locks),
) -> None:
    """Delete a bookmark, its summaries and its tag edges."""
    async with locks.hold(bookmark_id):
        await bookmark_service.delete_bookmark(db, current_user.id, bookmark_id)
        await db.commit()
