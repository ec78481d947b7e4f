"""Schema for the structured output requested from the summarization model."""
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Matches bookmark_contents.language
MAX_LANGUAGE_LENGTH = 20


class SummaryPayload(BaseModel):
    """
    Title, summaries, language and tags produced by the model for one page.

    The model's output is untrusted: anything that does not fit this shape is rejected
    and the call is retried.
    """

    model_config = ConfigDict(extra="ignore")

    title: str = Field(description="Human-friendly title for the bookmark")
    summary_short: str | None = Field(
        default=None, description="1-2 sentence summary of the content",
    )
    summary_long: str | None = Field(
        default=None, description="Multi-paragraph detailed summary",
    )
    language: str = Field(
        max_length=MAX_LANGUAGE_LENGTH,
        description="Detected language code (e.g., 'en', 'ja')",
    )
    tags: list[str] = Field(
        description="3 to 5 relevant tags describing topic, domain, and use-case",
    )
    category: str | None = Field(
        default=None, description="Primary category of the content",
    )

    @field_validator("title", "language")
    @classmethod
    def require_non_blank(cls, value: str) -> str:
        """Reject empty or whitespace-only required strings."""
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("summary_short", "summary_long", "category")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        """Treat blank optional strings as absent."""
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @field_validator("tags")
    @classmethod
    def require_tags(cls, value: list[str]) -> list[str]:
        """Drop blank entries; at least one tag must remain."""
        tags = [tag.strip() for tag in value if tag and tag.strip()]
        if not tags:
            raise ValueError("at least one tag is required")
        return tags
