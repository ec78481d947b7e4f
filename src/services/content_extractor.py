"""Fetch web pages and extract readable article content and metadata."""
import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urljoin, urlparse

import httpx
import trafilatura
from bs4 import BeautifulSoup

from core.config import Settings

logger = logging.getLogger(__name__)

USER_AGENT = 'Mozilla/5.0 (compatible; BookmarkBot/1.0; +https://example.com/bot)'
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_BYTES = 2 * 1024 * 1024

HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')

VIDEO_HOSTS = ('youtube.com', 'youtu.be', 'vimeo.com')
TWEET_HOSTS = ('twitter.com', 'x.com')
DEFAULT_SOURCE_TYPE = 'article'
# Matches bookmarks.source_type
MAX_SOURCE_TYPE_LENGTH = 50


class FetchErrorKind(StrEnum):
    """Why a page fetch failed."""

    TIMEOUT = 'timeout'
    HTTP_STATUS = 'http_status'
    INVALID_CONTENT_TYPE = 'invalid_content_type'
    TOO_LARGE = 'too_large'
    REQUEST = 'request'


class FetchError(Exception):
    """Raised when a page cannot be fetched as HTML."""

    def __init__(self, kind: FetchErrorKind, message: str, status_code: int | None = None) -> None:
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)


class ExtractionError(Exception):
    """Raised when fetched HTML cannot be parsed at all."""

    pass


@dataclass
class FetchedPage:
    """Raw HTML of a fetched page (possibly truncated to the byte ceiling)."""

    html: str
    final_url: str
    status_code: int
    content_type: str
    truncated: bool = False


@dataclass
class ExtractedContent:
    """
    Readable content derived from a page for one pipeline run.

    ``text_content`` is None when no article body could be identified; the title and
    meta description are still populated from the page head in that case.
    """

    title: str | None
    meta_description: str | None
    text_content: str | None
    favicon_url: str | None
    source_type: str

    @property
    def is_degraded(self) -> bool:
        """True when article text could not be extracted."""
        return self.text_content is None


def _is_html(content_type: str) -> bool:
    lowered = content_type.lower()
    return any(html_type in lowered for html_type in HTML_CONTENT_TYPES)


def _advertised_length(headers: httpx.Headers) -> int | None:
    value = headers.get('content-length')
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


async def _read_limited(response: httpx.Response, max_bytes: int) -> tuple[bytes, bool]:
    """Read at most ``max_bytes`` of the body. Returns (body, truncated)."""
    chunks: list[bytes] = []
    size = 0
    async for chunk in response.aiter_bytes():
        remaining = max_bytes - size
        if len(chunk) > remaining:
            chunks.append(chunk[:remaining])
            return b''.join(chunks), True
        chunks.append(chunk)
        size += len(chunk)
    return b''.join(chunks), False


def _decode(body: bytes, encoding: str | None) -> str:
    try:
        return body.decode(encoding or 'utf-8', errors='replace')
    except LookupError:
        return body.decode('utf-8', errors='replace')


async def fetch_page_html(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
    max_bytes: int = DEFAULT_MAX_BYTES,
    user_agent: str = USER_AGENT,
) -> FetchedPage:
    """
    Fetch the HTML of a page.

    Follows redirects and bounds the whole request (connect, headers and body) by
    ``timeout``. A response advertising a Content-Length above ``max_bytes`` is
    rejected; a body that turns out larger than ``max_bytes`` is truncated to it.

    Args:
        url:
            The URL to fetch.
        timeout:
            Total request timeout in seconds.
        max_bytes:
            Byte ceiling for the body.
        user_agent:
            User-Agent header to send.

    Returns:
        FetchedPage with the decoded HTML.

    Raises:
        FetchError: On timeout, non-2xx status, non-HTML content type, oversize
            advertised body, or transport failure.
    """
    logger.info("Fetching page: url=%s timeout=%s max_bytes=%s", url, timeout, max_bytes)
    try:
        async with asyncio.timeout(timeout):
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=timeout,
                headers={'User-Agent': user_agent},
                http2=True,
            ) as client, client.stream('GET', url) as response:
                content_type = response.headers.get('content-type', '')
                logger.info(
                    "Received response: url=%s status=%s content_type=%s content_length=%s",
                    url,
                    response.status_code,
                    content_type,
                    response.headers.get('content-length'),
                )

                if not response.is_success:
                    raise FetchError(
                        FetchErrorKind.HTTP_STATUS,
                        f"HTTP {response.status_code}: {response.reason_phrase}".rstrip(': '),
                        status_code=response.status_code,
                    )

                if not _is_html(content_type):
                    raise FetchError(
                        FetchErrorKind.INVALID_CONTENT_TYPE,
                        f"Invalid content type: {content_type or '(none)'}",
                        status_code=response.status_code,
                    )

                advertised = _advertised_length(response.headers)
                if advertised is not None and advertised > max_bytes:
                    raise FetchError(
                        FetchErrorKind.TOO_LARGE,
                        f"Content too large: {advertised} bytes (limit {max_bytes})",
                        status_code=response.status_code,
                    )

                body, truncated = await _read_limited(response, max_bytes)
                if truncated:
                    logger.warning(
                        "Body exceeded max size, truncating: url=%s max_bytes=%s",
                        url,
                        max_bytes,
                    )

                return FetchedPage(
                    html=_decode(body, response.encoding),
                    final_url=str(response.url),
                    status_code=response.status_code,
                    content_type=content_type,
                    truncated=truncated,
                )
    except (TimeoutError, httpx.TimeoutException) as e:
        logger.warning("Request timeout: url=%s timeout=%s", url, timeout)
        raise FetchError(FetchErrorKind.TIMEOUT, f"Request timeout after {timeout}s") from e
    except httpx.RequestError as e:
        logger.warning("Request failed: url=%s error=%s", url, e)
        raise FetchError(FetchErrorKind.REQUEST, f"Request failed: {e}") from e


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str | None:
    tag = soup.find('meta', attrs=attrs)
    if tag and tag.get('content'):
        content = tag['content'].strip()
        return content or None
    return None


def _extract_head_title(soup: BeautifulSoup) -> str | None:
    title_tag = soup.find('title')
    if title_tag and title_tag.string and title_tag.string.strip():
        return title_tag.string.strip()
    return (
        _meta_content(soup, property='og:title')
        or _meta_content(soup, name='twitter:title')
    )


def _extract_favicon(soup: BeautifulSoup, base_url: str) -> str | None:
    for link in soup.find_all('link', href=True):
        rel = link.get('rel') or []
        if isinstance(rel, str):
            rel = rel.split()
        if 'icon' in {token.lower() for token in rel}:
            return urljoin(base_url, link['href'].strip())
    return None


def _host_matches(hostname: str, hosts: tuple[str, ...]) -> bool:
    return any(hostname == host or hostname.endswith(f'.{host}') for host in hosts)


def detect_source_type(og_type: str | None, url: str) -> str:
    """
    Classify a page as article, video, tweet, or whatever its og:type declares.

    An explicit og:type wins (cut to the column length); otherwise known video and
    social hosts are recognized; everything else is an article.
    """
    if og_type:
        return og_type[:MAX_SOURCE_TYPE_LENGTH]
    hostname = (urlparse(url).hostname or '').lower()
    if _host_matches(hostname, VIDEO_HOSTS):
        return 'video'
    if _host_matches(hostname, TWEET_HOSTS):
        return 'tweet'
    return DEFAULT_SOURCE_TYPE


def extract_readable_content(html: str, url: str) -> ExtractedContent:
    """
    Extract readable content and page metadata from HTML.

    Pure function with no I/O. Metadata comes from the document head (BeautifulSoup);
    the article body comes from trafilatura's main-content extraction, which drops
    navigation, ads and boilerplate. The title is the article title when an article
    is found, else ``<title>``, else og:title, else twitter:title. When no article can
    be identified the result is degraded rather than failed: ``text_content`` is None
    and only head metadata is returned.

    Args:
        html:
            Raw HTML string.
        url:
            URL the HTML was fetched from; used to resolve relative favicon links and
            to classify the source type.

    Returns:
        ExtractedContent for the page.

    Raises:
        ExtractionError: If the HTML cannot be parsed.
    """
    try:
        soup = BeautifulSoup(html, 'lxml')
        meta_description = (
            _meta_content(soup, name='description')
            or _meta_content(soup, property='og:description')
        )
        favicon_url = _extract_favicon(soup, url)
        source_type = detect_source_type(_meta_content(soup, property='og:type'), url)
        head_title = _extract_head_title(soup)
        text = trafilatura.extract(html, url=url, include_comments=False)
        text_content = text.strip() if text else None
        article_title = None
        if text_content:
            metadata = trafilatura.extract_metadata(html, default_url=url)
            if metadata is not None and metadata.title and metadata.title.strip():
                article_title = metadata.title.strip()
    except Exception as e:
        logger.error("Error extracting content: url=%s error=%s", url, e)
        raise ExtractionError(f"Failed to extract content: {e}") from e

    title = article_title or head_title
    if not text_content:
        logger.warning(
            "No article content identified, using page metadata only: url=%s title=%s",
            url,
            title,
        )
        text_content = None

    return ExtractedContent(
        title=title,
        meta_description=meta_description,
        text_content=text_content,
        favicon_url=favicon_url,
        source_type=source_type,
    )


class ContentExtractor:
    """Fetches a page and extracts its readable content under configured limits."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
        max_bytes: int = DEFAULT_MAX_BYTES,
        user_agent: str = USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.user_agent = user_agent

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContentExtractor":
        """Build an extractor from application settings."""
        return cls(
            timeout=settings.fetch_timeout,
            max_bytes=settings.fetch_max_bytes,
            user_agent=settings.fetch_user_agent,
        )

    async def fetch_and_extract(self, url: str) -> ExtractedContent:
        """
        Fetch ``url`` and extract its readable content.

        Raises:
            FetchError: If the page cannot be fetched.
            ExtractionError: If the fetched HTML cannot be parsed.
        """
        page = await fetch_page_html(
            url,
            timeout=self.timeout,
            max_bytes=self.max_bytes,
            user_agent=self.user_agent,
        )
        # Parsing is CPU-bound; keep it off the event loop
        content = await asyncio.to_thread(extract_readable_content, page.html, page.final_url)
        logger.info(
            "Extracted content: url=%s title=%s text_length=%s source_type=%s",
            url,
            content.title,
            len(content.text_content or ''),
            content.source_type,
        )
        return content
