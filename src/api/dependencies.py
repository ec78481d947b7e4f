"""FastAPI dependencies for injection."""
from fastapi import Depends

from core.auth import get_current_user
from core.config import Settings, get_settings
from core.single_flight import KeyedLock
from db.session import get_async_session
from services.bookmark_processor import BookmarkProcessor

# Serializes pipeline runs per bookmark id within this process
processing_locks = KeyedLock()


def get_processor(settings: Settings = Depends(get_settings)) -> BookmarkProcessor:
    """Processor wired to the real page fetcher and model client. Overridden in tests."""
    return BookmarkProcessor.from_settings(settings)


def get_processing_locks() -> KeyedLock:
    """Return the process-wide per-bookmark lock registry."""
    return processing_locks


__all__ = [
    "get_async_session",
    "get_current_user",
    "get_processing_locks",
    "get_processor",
    "get_settings",
]
