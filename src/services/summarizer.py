"""Summarize page content with an external language model."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel
from sik_llms import RegisteredClients, create_client, user_message

from core.config import Settings
from schemas.summary import SummaryPayload

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_CHARS = 15_000
ELLIPSIS = "..."
# A word boundary is only used if it falls within the last 20% of the budget
WORD_BOUNDARY_RATIO = 0.8

NO_CONTENT_PLACEHOLDER = "(No content available)"

_PROVIDER_MAP = {
    "anthropic": RegisteredClients.ANTHROPIC,
    "openai": RegisteredClients.OPENAI,
}


class SummarizationError(Exception):
    """Raised when the model produced no valid summary after all attempts."""

    def __init__(self, message: str, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


@dataclass
class SummarizeInput:
    """What is known about a page when asking for its summary."""

    url: str
    title: str | None = None
    meta_description: str | None = None
    content_text: str | None = None


@dataclass
class SummaryResult:
    """A validated model response plus the metadata needed to persist it."""

    payload: SummaryPayload
    model_identifier: str
    model_version: str
    attempts: int
    content_truncated: bool = False


@dataclass(frozen=True)
class SummarizerConfig:
    """Explicit configuration for SummarizationClient."""

    model_identifier: str
    model_version: str = "1.0"
    timeout: float = 60.0
    max_retries: int = 2
    backoff_base: float = 1.0
    max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS

    @classmethod
    def from_settings(cls, settings: Settings) -> "SummarizerConfig":
        """Build the config from application settings."""
        return cls(
            model_identifier=settings.llm_model,
            model_version=settings.llm_model_version,
            timeout=settings.llm_timeout,
            max_retries=settings.llm_max_retries,
            backoff_base=settings.llm_backoff_base,
            max_content_chars=settings.llm_max_content_chars,
        )


class ModelTransport(Protocol):
    """Sends one prompt to the model and returns its raw structured output."""

    async def complete(self, prompt: str) -> str | dict[str, Any] | BaseModel:
        """Return JSON text, a decoded JSON object, or a parsed model."""
        ...


class SikLlmsTransport:
    """ModelTransport backed by a sik-llms client using structured output."""

    def __init__(self, provider: str, model_name: str, max_output_tokens: int = 4000) -> None:
        client_type = _PROVIDER_MAP.get(provider)
        if client_type is None:
            raise ValueError(
                f"Unknown provider '{provider}'. Must be one of: {list(_PROVIDER_MAP)}",
            )
        self.client_type = client_type
        self.model_name = model_name
        self.max_output_tokens = max_output_tokens

    async def complete(self, prompt: str) -> str | dict[str, Any] | BaseModel:
        """Run the prompt and return the parsed payload (or raw text if unparsed)."""
        client = create_client(
            client_type=self.client_type,
            model_name=self.model_name,
            response_format=SummaryPayload,
            max_tokens=self.max_output_tokens,
        )
        response = await client.run_async(messages=[user_message(prompt)])
        parsed = getattr(response, "parsed", None)
        if parsed is not None:
            return parsed
        text = getattr(response, "response", None)
        if text:
            return text
        refusal = getattr(response, "refusal", None)
        raise ValueError(f"No content in model response{f': {refusal}' if refusal else ''}")


def truncate_content(content: str, max_chars: int = DEFAULT_MAX_CONTENT_CHARS) -> str:
    """
    Truncate content to a character budget for the model prompt.

    Content within budget is returned unchanged. Otherwise it is cut at ``max_chars``
    and, if the last space of the cut lies within the final 20% of the budget, cut
    back to that space so no word is split. An ellipsis marks the truncation.
    """
    if len(content) <= max_chars:
        return content

    truncated = content[:max_chars]
    last_space = truncated.rfind(" ")
    if last_space > max_chars * WORD_BOUNDARY_RATIO:
        return truncated[:last_space] + ELLIPSIS
    return truncated + ELLIPSIS


def build_prompt(
    data: SummarizeInput,
    max_chars: int = DEFAULT_MAX_CONTENT_CHARS,
) -> tuple[str, bool]:
    """
    Build the summarization prompt.

    Returns:
        Tuple of (prompt, content_truncated).
    """
    content = ""
    truncated = False
    if data.content_text:
        content = truncate_content(data.content_text, max_chars)
        truncated = content != data.content_text

    lines = [
        "You are a bookmark organizer. Given the plain text content of a web page and its "
        "URL, extract a short summary and a set of tags that describe the topic, domain, "
        "and use-case. Be concise but informative.",
        "",
        f"URL: {data.url}",
    ]
    if data.title:
        lines.append(f"Title: {data.title}")
    if data.meta_description:
        lines.append(f"Meta Description: {data.meta_description}")
    lines += [
        "",
        "Content:",
        content or NO_CONTENT_PLACEHOLDER,
        "",
        "Analyze this content and respond with a JSON object with exactly these fields:",
        "- title (required): A human-friendly title for the bookmark",
        "- summary_short (optional): A 1-2 sentence summary of the content",
        "- summary_long (optional): A multi-paragraph detailed summary",
        "- language (required): Detected language code (e.g., 'en', 'ja')",
        "- tags (required): 3 to 5 lowercase tags describing topic, domain, and use-case",
        "- category (optional): Primary category of the content",
        "Respond with the JSON object only.",
    ]
    return "\n".join(lines), truncated


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_summary_payload(raw: str | bytes | dict[str, Any] | BaseModel) -> SummaryPayload:
    """
    Validate a raw model response against SummaryPayload.

    Raises:
        pydantic.ValidationError: If the response is not valid JSON of the right shape.
    """
    if isinstance(raw, BaseModel):
        return SummaryPayload.model_validate(raw.model_dump())
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return SummaryPayload.model_validate_json(_strip_code_fence(raw))
    return SummaryPayload.model_validate(raw)


class SummarizationClient:
    """
    Produces a SummaryResult for a page, retrying transient failures.

    Every failure of an attempt (transport error, timeout, malformed or invalid output)
    is treated as transient. Retries block the calling task with exponential backoff:
    the delay before retry ``n`` (0-based) is ``backoff_base * 2**n`` seconds.
    """

    def __init__(self, config: SummarizerConfig, transport: ModelTransport) -> None:
        self.config = config
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "SummarizationClient":
        """Build a client talking to the configured provider."""
        transport = SikLlmsTransport(
            provider=settings.llm_provider,
            model_name=settings.llm_model,
            max_output_tokens=settings.llm_max_output_tokens,
        )
        return cls(SummarizerConfig.from_settings(settings), transport)

    async def summarize(self, data: SummarizeInput) -> SummaryResult:
        """
        Summarize and tag a page.

        Args:
            data: URL and whatever metadata/content was extracted (all optional but URL).

        Returns:
            SummaryResult with the validated payload.

        Raises:
            SummarizationError: If every attempt failed; carries the last cause.
        """
        prompt, truncated = build_prompt(data, self.config.max_content_chars)
        if truncated:
            logger.info(
                "Content truncated for model: url=%s original_length=%s budget=%s",
                data.url,
                len(data.content_text or ""),
                self.config.max_content_chars,
            )

        total_attempts = self.config.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(total_attempts):
            logger.info(
                "Model attempt %s/%s: url=%s model=%s",
                attempt + 1,
                total_attempts,
                data.url,
                self.config.model_identifier,
            )
            try:
                async with asyncio.timeout(self.config.timeout):
                    raw = await self.transport.complete(prompt)
                payload = parse_summary_payload(raw)
            except Exception as e:
                last_error = e
                logger.warning(
                    "Model attempt %s/%s failed: url=%s error=%s: %s",
                    attempt + 1,
                    total_attempts,
                    data.url,
                    type(e).__name__,
                    e,
                )
            else:
                logger.info(
                    "Model response validated: url=%s language=%s tags=%s",
                    data.url,
                    payload.language,
                    len(payload.tags),
                )
                return SummaryResult(
                    payload=payload,
                    model_identifier=self.config.model_identifier,
                    model_version=self.config.model_version,
                    attempts=attempt + 1,
                    content_truncated=truncated,
                )

            if attempt < total_attempts - 1:
                delay = self.config.backoff_base * 2 ** attempt
                logger.info("Retrying after %ss: url=%s", delay, data.url)
                await asyncio.sleep(delay)

        logger.error(
            "All model attempts exhausted: url=%s attempts=%s last_error=%s",
            data.url,
            total_attempts,
            last_error,
        )
        cause = f"{type(last_error).__name__}: {last_error}" if last_error else "unknown error"
        raise SummarizationError(
            f"Failed to get model response after {total_attempts} attempts: {cause}",
            attempts=total_attempts,
            last_error=last_error,
        )
