"""
Bookmark enrichment pipeline.

Sequences page extraction, summarization, tag reconciliation and search vector
maintenance for one bookmark, and records the outcome in the bookmark's status:

    pending -> processed | failed
    processed | failed -> processed | failed   (only with force_reprocess)

Callers must ensure at most one concurrent run per bookmark id; two racing runs would
both read-merge-write the same tag edge set.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings
from models.base import utc_now
from models.bookmark import Bookmark, BookmarkStatus
from models.bookmark_content import BookmarkContent
from schemas.bookmark import MAX_TITLE_LENGTH
from services.content_extractor import (
    ContentExtractor,
    ExtractedContent,
    ExtractionError,
    FetchError,
)
from services.exceptions import BookmarkNotFoundError, PersistenceError
from services.search_vector import update_search_vector
from services.summarizer import (
    SummarizationClient,
    SummarizationError,
    SummarizeInput,
    SummaryResult,
)
from services.tag_service import ensure_tags, merge_tags_onto_bookmark

logger = logging.getLogger(__name__)


class ContentSource(Protocol):
    """Fetches and extracts a page (see ContentExtractor)."""

    async def fetch_and_extract(self, url: str) -> ExtractedContent:  # noqa: D102
        ...


class Summarizer(Protocol):
    """Produces a validated summary for a page (see SummarizationClient)."""

    async def summarize(self, data: SummarizeInput) -> SummaryResult:  # noqa: D102
        ...


@dataclass
class ProcessingResult:
    """Outcome of one call to BookmarkProcessor.process."""

    bookmark_id: int
    status: BookmarkStatus
    error_message: str | None = None
    skipped: bool = False

    @property
    def succeeded(self) -> bool:
        """True when the bookmark ended in the processed state."""
        return self.status == BookmarkStatus.PROCESSED


class BookmarkProcessor:
    """Runs the enrichment pipeline for a single bookmark."""

    def __init__(
        self,
        extractor: ContentSource,
        summarizer: Summarizer,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.extractor = extractor
        self.summarizer = summarizer
        self.now = now or utc_now

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookmarkProcessor":
        """Build a processor wired to the real page fetcher and model client."""
        return cls(
            extractor=ContentExtractor.from_settings(settings),
            summarizer=SummarizationClient.from_settings(settings),
        )

    async def process(
        self,
        db: AsyncSession,
        user_id: int,
        bookmark_id: int,
        force_reprocess: bool = False,
    ) -> ProcessingResult:
        """
        Enrich a bookmark and record the outcome.

        Without ``force_reprocess`` only pending bookmarks are run; processed and failed
        bookmarks are returned unchanged (``skipped=True``). With it, the full pipeline
        runs regardless of status. Fetch, extraction and summarization failures are not
        raised: they leave the bookmark ``failed`` with an ``error_message`` and nothing
        else written. On success all enrichment writes happen in one SAVEPOINT, and the
        bookmark is only marked ``processed`` once they have all succeeded.

        Args:
            db: Database session. Not committed here.
            user_id: Caller's user ID; the bookmark must belong to this user.
            bookmark_id: Bookmark to process.
            force_reprocess: Re-run even if the bookmark already completed a run.

        Returns:
            ProcessingResult with the resulting status.

        Raises:
            BookmarkNotFoundError: If the bookmark does not exist or is not owned by the user.
            PersistenceError: If writing results to the store fails.
        """
        bookmark = await self._load_bookmark(db, user_id, bookmark_id)

        if not force_reprocess and bookmark.status != BookmarkStatus.PENDING:
            logger.info(
                "Skipping bookmark already in terminal state: id=%s status=%s",
                bookmark_id,
                bookmark.status,
            )
            return ProcessingResult(
                bookmark_id=bookmark_id,
                status=bookmark.status,
                error_message=bookmark.error_message,
                skipped=True,
            )

        logger.info(
            "Processing bookmark: id=%s url=%s status=%s force_reprocess=%s",
            bookmark_id,
            bookmark.url,
            bookmark.status,
            force_reprocess,
        )

        try:
            extracted = await self.extractor.fetch_and_extract(bookmark.url)
        except FetchError as e:
            return await self._mark_failed(db, bookmark, f"Fetch failed: {e}")
        except ExtractionError as e:
            return await self._mark_failed(db, bookmark, f"Extraction failed: {e}")

        try:
            summary = await self.summarizer.summarize(
                SummarizeInput(
                    url=bookmark.url,
                    title=extracted.title,
                    meta_description=extracted.meta_description,
                    content_text=extracted.text_content,
                ),
            )
        except SummarizationError as e:
            return await self._mark_failed(db, bookmark, f"Summarization failed: {e}")

        try:
            async with db.begin_nested():
                await self._persist_enrichment(db, bookmark, extracted, summary)
        except SQLAlchemyError as e:
            logger.exception("Failed to persist enrichment: id=%s", bookmark_id)
            raise PersistenceError(
                f"Failed to persist enrichment for bookmark {bookmark_id}: {e}",
            ) from e

        logger.info("Bookmark processed: id=%s", bookmark_id)
        return ProcessingResult(bookmark_id=bookmark_id, status=BookmarkStatus.PROCESSED)

    async def _load_bookmark(self, db: AsyncSession, user_id: int, bookmark_id: int) -> Bookmark:
        try:
            result = await db.execute(
                select(Bookmark).where(
                    Bookmark.id == bookmark_id,
                    Bookmark.user_id == user_id,
                ),
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load bookmark {bookmark_id}: {e}") from e
        bookmark = result.scalar_one_or_none()
        if bookmark is None:
            raise BookmarkNotFoundError(bookmark_id)
        return bookmark

    async def _mark_failed(
        self,
        db: AsyncSession,
        bookmark: Bookmark,
        error_message: str,
    ) -> ProcessingResult:
        logger.warning(
            "Bookmark processing failed: id=%s error=%s",
            bookmark.id,
            error_message,
        )
        bookmark.status = BookmarkStatus.FAILED
        bookmark.error_message = error_message
        bookmark.last_processed_at = self.now()
        try:
            await db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to record failure for bookmark {bookmark.id}: {e}",
            ) from e
        return ProcessingResult(
            bookmark_id=bookmark.id,
            status=BookmarkStatus.FAILED,
            error_message=error_message,
        )

    async def _persist_enrichment(
        self,
        db: AsyncSession,
        bookmark: Bookmark,
        extracted: ExtractedContent,
        summary: SummaryResult,
    ) -> None:
        payload = summary.payload
        model_title = payload.title[:MAX_TITLE_LENGTH]

        content = await db.scalar(
            select(BookmarkContent).where(BookmarkContent.bookmark_id == bookmark.id),
        )
        previous_meta = dict(content.meta or {}) if content is not None else {}
        if content is None:
            content = BookmarkContent(bookmark_id=bookmark.id)
            db.add(content)

        # Enrichment write path: overwrite is intended here
        content.summary_short = payload.summary_short
        content.summary_long = payload.summary_long
        content.language = payload.language
        content.model_identifier = summary.model_identifier
        content.model_version = summary.model_version
        content.meta = {
            "category": payload.category,
            "source_type": extracted.source_type,
            "extracted_title": extracted.title,
            "model_title": model_title,
            "content_truncated": summary.content_truncated,
            "text_extracted": not extracted.is_degraded,
        }

        tag_ids = await ensure_tags(db, bookmark.user_id, payload.tags)
        await merge_tags_onto_bookmark(db, bookmark.id, tag_ids)

        # A title equal to the previous run's (stored, cut) model title was adopted, not typed
        previous_model_title = (previous_meta.get("model_title") or "")[:MAX_TITLE_LENGTH]
        if not bookmark.title or bookmark.title == previous_model_title:
            bookmark.title = model_title
        if extracted.favicon_url:
            bookmark.favicon_url = extracted.favicon_url
        bookmark.source_type = extracted.source_type

        await update_search_vector(db, bookmark, content)

        bookmark.status = BookmarkStatus.PROCESSED
        bookmark.error_message = None
        bookmark.last_processed_at = self.now()
        await db.flush()
