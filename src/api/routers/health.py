"""Service health: database reachability, model configuration and pipeline backlog."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.session import get_async_session
from models.bookmark import Bookmark, BookmarkStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    llm_provider: str
    llm_model: str
    # Bookmark counts per processing status; empty when the database is down
    bookmarks_by_status: dict[str, int]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Report database reachability, the configured summarization model and how many
    bookmarks sit in each processing status.

    A growing ``failed`` count usually means the model provider or outbound fetches
    are unhealthy.
    """
    counts: dict[str, int] = {}
    try:
        rows = await db.execute(
            select(Bookmark.status, func.count()).group_by(Bookmark.status),
        )
        counts = {status.value: 0 for status in BookmarkStatus}
        for bookmark_status, count in rows:
            counts[BookmarkStatus(bookmark_status).value] = count
        database = "healthy"
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        database = "unhealthy"

    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        database=database,
        llm_provider=settings.llm_provider,
        llm_model=settings.llm_model,
        bookmarks_by_status=counts,
    )
