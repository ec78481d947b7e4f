"""Shared exceptions for service layer operations."""


class BookmarkNotFoundError(Exception):
    """Raised when a bookmark does not exist or is not owned by the caller."""

    def __init__(self, bookmark_id: int) -> None:
        self.bookmark_id = bookmark_id
        super().__init__(f"Bookmark {bookmark_id} not found")


class PersistenceError(Exception):
    """
    Raised when the store fails while writing enrichment results.

    Not retried here; the caller decides whether to surface or retry the request.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
