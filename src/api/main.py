"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routers import bookmarks, health
from core.config import get_settings
from services.bookmark_service import DuplicateUrlError
from services.exceptions import BookmarkNotFoundError, PersistenceError
from services.tag_service import TagNotFoundError

app_settings = get_settings()

logging.basicConfig(
    level=app_settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Bookmark Enricher API",
    description="Saves bookmarks and enriches them with summaries, tags and search vectors.",
    version="0.1.0",
)


@app.exception_handler(BookmarkNotFoundError)
async def bookmark_not_found_handler(
    _request: Request, _exc: BookmarkNotFoundError,
) -> JSONResponse:
    """Unknown or foreign bookmark."""
    return JSONResponse(status_code=404, content={"detail": "Bookmark not found"})


@app.exception_handler(TagNotFoundError)
async def tag_not_found_handler(_request: Request, _exc: TagNotFoundError) -> JSONResponse:
    """Tag not attached to the bookmark."""
    return JSONResponse(status_code=404, content={"detail": "Tag not found on bookmark"})


@app.exception_handler(DuplicateUrlError)
async def duplicate_url_handler(_request: Request, exc: DuplicateUrlError) -> JSONResponse:
    """Same normalized URL already bookmarked by this user."""
    return JSONResponse(
        status_code=409,
        content={
            "detail": {
                "message": str(exc),
                "error_code": "DUPLICATE_URL",
                "existing_bookmark_id": exc.existing_bookmark_id,
            },
        },
    )


@app.exception_handler(PersistenceError)
async def persistence_error_handler(_request: Request, exc: PersistenceError) -> JSONResponse:
    """Store unavailable while writing processing results."""
    logger.error("Persistence failure: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Could not save bookmark processing results. Please retry."},
    )


app.include_router(health.router)
app.include_router(bookmarks.router)
