"""Pydantic schemas for bookmark endpoints."""
import logging
from datetime import datetime
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from models.bookmark import BookmarkStatus

logger = logging.getLogger(__name__)

MAX_TAG_LENGTH = 100
MAX_TITLE_LENGTH = 500

_http_url_adapter = TypeAdapter(HttpUrl)


def normalize_tag_name(tag: str) -> str:
    """Trim and lowercase a tag name."""
    return tag.strip().lower()


def normalize_tag_names(tags: list[str]) -> list[str]:
    """
    Normalize a list of tag names.

    Trims and lowercases each name, skips empty names and names longer than the
    column allows, and removes duplicates while keeping first-seen order.

    Args:
        tags: Raw tag names (user input or model output).

    Returns:
        Normalized, de-duplicated tag names.
    """
    normalized: list[str] = []
    seen: set[str] = set()
    for tag in tags:
        name = normalize_tag_name(tag)
        if not name:
            continue
        if len(name) > MAX_TAG_LENGTH:
            logger.warning("Skipping tag longer than %s characters: %s", MAX_TAG_LENGTH, name)
            continue
        if name not in seen:
            seen.add(name)
            normalized.append(name)
    return normalized


class BookmarkCreate(BaseModel):
    """Schema for creating a new bookmark."""

    url: str
    title: str | None = Field(default=None, max_length=MAX_TITLE_LENGTH)
    description: str | None = None
    tags: list[str] = []

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an http(s) URL but keep it as submitted (trimmed), not re-serialized."""
        url = v.strip()
        try:
            _http_url_adapter.validate_python(url)
        except ValidationError as e:
            raise ValueError(f"Invalid URL: {v}") from e
        return url

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> list[str]:
        """Normalize tags."""
        if v is None:
            return []
        return normalize_tag_names(v)


class BookmarkUpdate(BaseModel):
    """
    Schema for the user-edit path.

    Only the note and the summaries are editable here; enrichment fields belong to
    the processing pipeline.
    """

    description: str | None = None
    summary_short: str | None = None
    summary_long: str | None = None


class TagAdd(BaseModel):
    """Schema for attaching a tag to a bookmark by name."""

    name: str = Field(min_length=1, max_length=MAX_TAG_LENGTH)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        """Normalize and require a non-blank tag name."""
        name = normalize_tag_name(v)
        if not name:
            raise ValueError("Tag name cannot be empty")
        return name


class TagResponse(BaseModel):
    """Schema for a tag attached to a bookmark."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class BookmarkResponse(BaseModel):
    """
    Schema for full bookmark responses, including enrichment output and tags.

    Note: Uses model_validator to flatten the content row and tag relationship when
    they are eagerly loaded.
    """

    id: int
    url: str
    normalized_url: str
    title: str | None
    description: str | None
    favicon_url: str | None = None
    source_type: str | None = None
    status: BookmarkStatus
    error_message: str | None = None
    last_processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    summary_short: str | None = None
    summary_long: str | None = None
    language: str | None = None
    model_identifier: str | None = None
    tags: list[TagResponse] = []

    @model_validator(mode="before")
    @classmethod
    def flatten_relationships(cls, data: Any) -> Any:
        """
        Flatten content and tag_objects from a Bookmark model.

        Only reads relationships that are already loaded, to avoid triggering lazy
        loads outside the async context.
        """
        if not hasattr(data, "__dict__") or isinstance(data, dict):
            return data

        data_dict = {
            key: getattr(data, key)
            for key in [
                "id", "url", "normalized_url", "title", "description", "favicon_url",
                "source_type", "status", "error_message", "last_processed_at",
                "created_at", "updated_at",
            ]
        }
        content = data.__dict__.get("content")
        if content is not None:
            data_dict["summary_short"] = content.summary_short
            data_dict["summary_long"] = content.summary_long
            data_dict["language"] = content.language
            data_dict["model_identifier"] = content.model_identifier
        tag_objects = data.__dict__.get("tag_objects")
        data_dict["tags"] = (
            [TagResponse.model_validate(tag) for tag in tag_objects] if tag_objects else []
        )
        return data_dict


class ProcessingResultResponse(BaseModel):
    """Outcome of a processing run, returned by the reprocess endpoint."""

    bookmark_id: int
    status: BookmarkStatus
    error_message: str | None = None
    skipped: bool = False
    bookmark: BookmarkResponse | None = None
