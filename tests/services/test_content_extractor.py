"""
Tests for the content extractor.

Tests cover:
- fetch_page_html: HTTP fetching against respx-mocked responses (success, redirects,
    timeouts, bad status, non-HTML, size ceiling)
- detect_source_type: og:type and host heuristics
- extract_readable_content: Pure function tests for metadata and article extraction
- ContentExtractor: fetch + extract composition
"""
from collections.abc import AsyncIterator
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest
import respx

from core.config import Settings
from services.content_extractor import (
    USER_AGENT,
    ContentExtractor,
    ExtractionError,
    FetchError,
    FetchErrorKind,
    detect_source_type,
    extract_readable_content,
    fetch_page_html,
)

ARTICLE_PARAGRAPHS = "".join(
    f"<p>Paragraph {i} of the example article explains how bookmark enrichment "
    f"pipelines fetch pages, extract the readable text and summarize it with a "
    f"language model so that saved links become searchable later on.</p>"
    for i in range(8)
)

ARTICLE_HTML = f"""<!DOCTYPE html>
<html>
<head>
    <title>Example Article</title>
    <meta name="description" content="An example article about enrichment.">
    <meta property="og:description" content="OG description">
    <link rel="shortcut icon" href="/static/favicon.ico">
</head>
<body>
    <nav><a href="/">Home</a> <a href="/about">About</a></nav>
    <article>
        <h1>Example Article</h1>
        {ARTICLE_PARAGRAPHS}
    </article>
    <footer>Copyright Example Inc.</footer>
</body>
</html>"""


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


class TestFetchPageHtml:
    """Tests for fetch_page_html."""

    @respx.mock
    async def test__fetch_page_html__success(self) -> None:
        """Successful fetch returns decoded HTML and response metadata."""
        route = respx.get("https://example.com/article").mock(
            return_value=httpx.Response(
                200,
                headers={"content-type": "text/html; charset=utf-8"},
                content=ARTICLE_HTML.encode(),
            ),
        )

        page = await fetch_page_html("https://example.com/article")

        assert page.html == ARTICLE_HTML
        assert page.final_url == "https://example.com/article"
        assert page.status_code == 200
        assert page.content_type == "text/html; charset=utf-8"
        assert page.truncated is False
        assert route.calls.last.request.headers["user-agent"] == USER_AGENT

    @respx.mock
    async def test__fetch_page_html__custom_user_agent(self) -> None:
        route = respx.get("https://example.com/").mock(
            return_value=httpx.Response(200, headers={"content-type": "text/html"}, content=b"<p>x</p>"),  # noqa: E501
        )

        await fetch_page_html("https://example.com/", user_agent="TestBot/2.0")

        assert route.calls.last.request.headers["user-agent"] == "TestBot/2.0"

    @respx.mock
    async def test__fetch_page_html__follows_redirects(self) -> None:
        """Redirects are followed and the final URL is reported."""
        respx.get("https://example.com/old").mock(
            return_value=httpx.Response(301, headers={"location": "https://example.com/new"}),
        )
        respx.get("https://example.com/new").mock(
            return_value=httpx.Response(
                200, headers={"content-type": "text/html"}, content=b"<html></html>",
            ),
        )

        page = await fetch_page_html("https://example.com/old")

        assert page.final_url == "https://example.com/new"

    @respx.mock
    async def test__fetch_page_html__timeout(self) -> None:
        """A transport timeout becomes FetchError(timeout) mentioning the timeout."""
        respx.get("https://example.com/slow").mock(side_effect=httpx.ReadTimeout("timed out"))

        with pytest.raises(FetchError) as exc_info:
            await fetch_page_html("https://example.com/slow", timeout=2.5)

        assert exc_info.value.kind == FetchErrorKind.TIMEOUT
        assert "timeout" in str(exc_info.value).lower()
        assert "2.5" in str(exc_info.value)

    @respx.mock
    async def test__fetch_page_html__connection_error(self) -> None:
        respx.get("https://example.com/").mock(side_effect=httpx.ConnectError("Connection refused"))

        with pytest.raises(FetchError) as exc_info:
            await fetch_page_html("https://example.com/")

        assert exc_info.value.kind == FetchErrorKind.REQUEST
        assert "Connection refused" in str(exc_info.value)

    @respx.mock
    @pytest.mark.parametrize("status_code", [404, 500, 503])
    async def test__fetch_page_html__non_2xx_status(self, status_code: int) -> None:
        respx.get("https://example.com/missing").mock(
            return_value=httpx.Response(status_code, headers={"content-type": "text/html"}),
        )

        with pytest.raises(FetchError) as exc_info:
            await fetch_page_html("https://example.com/missing")

        assert exc_info.value.kind == FetchErrorKind.HTTP_STATUS
        assert exc_info.value.status_code == status_code
        assert str(status_code) in str(exc_info.value)

    @respx.mock
    @pytest.mark.parametrize("content_type", ["application/pdf", "image/png", "application/json", ""])  # noqa: E501
    async def test__fetch_page_html__non_html_content_type(self, content_type: str) -> None:
        headers = {"content-type": content_type} if content_type else {}
        respx.get("https://example.com/file").mock(
            return_value=httpx.Response(200, headers=headers, content=b"data"),
        )

        with pytest.raises(FetchError) as exc_info:
            await fetch_page_html("https://example.com/file")

        assert exc_info.value.kind == FetchErrorKind.INVALID_CONTENT_TYPE

    @respx.mock
    async def test__fetch_page_html__xhtml_accepted(self) -> None:
        respx.get("https://example.com/x").mock(
            return_value=httpx.Response(
                200, headers={"content-type": "application/xhtml+xml"}, content=b"<html/>",
            ),
        )

        page = await fetch_page_html("https://example.com/x")

        assert page.html == "<html/>"

    @respx.mock
    async def test__fetch_page_html__advertised_length_over_limit_rejected(self) -> None:
        """An advertised Content-Length above the ceiling fails before reading the body."""
        respx.get("https://example.com/huge").mock(
            return_value=httpx.Response(
                200,
                headers={"content-type": "text/html", "content-length": "5000"},
                content=b"<html></html>",
            ),
        )

        with pytest.raises(FetchError) as exc_info:
            await fetch_page_html("https://example.com/huge", max_bytes=1000)

        assert exc_info.value.kind == FetchErrorKind.TOO_LARGE

    @respx.mock
    async def test__fetch_page_html__unadvertised_oversize_body_truncated(self) -> None:
        """A body with no Content-Length is truncated to exactly the ceiling."""
        respx.get("https://example.com/stream").mock(
            return_value=httpx.Response(
                200,
                headers={"content-type": "text/html"},
                content=_chunks(b"a" * 600, b"b" * 600, b"c" * 600),
            ),
        )

        page = await fetch_page_html("https://example.com/stream", max_bytes=1000)

        assert page.truncated is True
        assert len(page.html) == 1000
        assert page.html == "a" * 600 + "b" * 400

    @respx.mock
    async def test__fetch_page_html__body_at_limit_not_truncated(self) -> None:
        respx.get("https://example.com/exact").mock(
            return_value=httpx.Response(
                200, headers={"content-type": "text/html"}, content=b"x" * 1000,
            ),
        )

        page = await fetch_page_html("https://example.com/exact", max_bytes=1000)

        assert page.truncated is False
        assert len(page.html) == 1000

    @respx.mock
    async def test__fetch_page_html__decodes_with_response_charset(self) -> None:
        respx.get("https://example.com/latin").mock(
            return_value=httpx.Response(
                200,
                headers={"content-type": "text/html; charset=iso-8859-1"},
                content="<p>café</p>".encode("iso-8859-1"),
            ),
        )

        page = await fetch_page_html("https://example.com/latin")

        assert page.html == "<p>café</p>"


class TestDetectSourceType:
    """Tests for detect_source_type."""

    def test__detect_source_type__og_type_wins(self) -> None:
        assert detect_source_type("video.movie", "https://example.com/a") == "video.movie"
        assert detect_source_type("article", "https://youtube.com/watch?v=1") == "article"

    def test__detect_source_type__overlong_og_type_cut(self) -> None:
        og_type = "website." + "x" * 80

        source_type = detect_source_type(og_type, "https://example.com/a")

        assert len(source_type) == 50
        assert source_type == og_type[:50]

    @pytest.mark.parametrize(
        "url",
        [
            "https://youtube.com/watch?v=abc",
            "https://www.youtube.com/watch?v=abc",
            "https://m.youtube.com/watch?v=abc",
            "https://youtu.be/abc",
            "https://vimeo.com/12345",
        ],
    )
    def test__detect_source_type__video_hosts(self, url: str) -> None:
        assert detect_source_type(None, url) == "video"

    @pytest.mark.parametrize("url", ["https://twitter.com/u/status/1", "https://x.com/u/status/1"])
    def test__detect_source_type__tweet_hosts(self, url: str) -> None:
        assert detect_source_type(None, url) == "tweet"

    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/post",
            # Substrings of known hosts are not matches
            "https://notyoutube.com/watch",
            "https://box.com/file",
            "https://example.com/youtube.com",
        ],
    )
    def test__detect_source_type__default_article(self, url: str) -> None:
        assert detect_source_type(None, url) == "article"


class TestExtractReadableContent:
    """Tests for extract_readable_content."""

    def test__extract_readable_content__article(self) -> None:
        content = extract_readable_content(ARTICLE_HTML, "https://example.com/posts/1")

        assert content.title == "Example Article"
        assert content.meta_description == "An example article about enrichment."
        assert content.favicon_url == "https://example.com/static/favicon.ico"
        assert content.source_type == "article"
        assert content.text_content is not None
        assert "Paragraph 0 of the example article" in content.text_content
        assert content.is_degraded is False

    def test__extract_readable_content__drops_navigation_boilerplate(self) -> None:
        content = extract_readable_content(ARTICLE_HTML, "https://example.com/posts/1")

        assert content.text_content is not None
        assert "About" not in content.text_content.split()

    def test__extract_readable_content__no_article_degrades(self) -> None:
        """No identifiable article yields title/description only, not an error."""
        html = """<html><head>
            <title>Just a Title</title>
            <meta name="description" content="Only metadata here">
        </head><body></body></html>"""

        content = extract_readable_content(html, "https://example.com/")

        assert content.text_content is None
        assert content.is_degraded is True
        assert content.title == "Just a Title"
        assert content.meta_description == "Only metadata here"

    def test__extract_readable_content__article_title_preferred_over_head_title(self) -> None:
        html = ARTICLE_HTML.replace(
            "<title>Example Article</title>", "<title>Example Blog | Home</title>",
        )

        with patch(
            "services.content_extractor.trafilatura.extract_metadata",
            return_value=SimpleNamespace(title="Example Article"),
        ) as extract_metadata:
            content = extract_readable_content(html, "https://example.com/posts/1")

        assert content.title == "Example Article"
        extract_metadata.assert_called_once()

    def test__extract_readable_content__head_title_when_article_has_none(self) -> None:
        html = ARTICLE_HTML.replace(
            "<title>Example Article</title>", "<title>Example Blog | Home</title>",
        )

        with patch(
            "services.content_extractor.trafilatura.extract_metadata",
            return_value=SimpleNamespace(title="  "),
        ):
            content = extract_readable_content(html, "https://example.com/posts/1")

        assert content.title == "Example Blog | Home"

    def test__extract_readable_content__degraded_page_skips_article_title(self) -> None:
        html = "<html><head><title>Head Title</title></head><body></body></html>"

        with patch(
            "services.content_extractor.trafilatura.extract_metadata",
            return_value=SimpleNamespace(title="Should Not Be Used"),
        ) as extract_metadata:
            content = extract_readable_content(html, "https://example.com/")

        assert content.title == "Head Title"
        extract_metadata.assert_not_called()

    def test__extract_readable_content__og_description_fallback(self) -> None:
        html = """<html><head>
            <meta property="og:description" content="From OG">
        </head><body></body></html>"""

        content = extract_readable_content(html, "https://example.com/")

        assert content.meta_description == "From OG"

    def test__extract_readable_content__title_falls_back_to_og_then_twitter(self) -> None:
        og_html = '<html><head><meta property="og:title" content="OG Title"></head></html>'
        tw_html = '<html><head><meta name="twitter:title" content="TW Title"></head></html>'

        assert extract_readable_content(og_html, "https://example.com/").title == "OG Title"
        assert extract_readable_content(tw_html, "https://example.com/").title == "TW Title"

    def test__extract_readable_content__no_metadata(self) -> None:
        content = extract_readable_content("<html><body></body></html>", "https://example.com/")

        assert content.title is None
        assert content.meta_description is None
        assert content.favicon_url is None
        assert content.source_type == "article"

    def test__extract_readable_content__og_type_and_absolute_favicon(self) -> None:
        html = """<html><head>
            <meta property="og:type" content=" video.other ">
            <link rel="icon" href="https://cdn.example.net/icon.png">
        </head></html>"""

        content = extract_readable_content(html, "https://example.com/watch")

        assert content.source_type == "video.other"
        assert content.favicon_url == "https://cdn.example.net/icon.png"

    def test__extract_readable_content__non_icon_links_ignored(self) -> None:
        html = """<html><head>
            <link rel="stylesheet" href="/style.css">
            <link rel="apple-touch-icon" href="/apple.png">
        </head></html>"""

        content = extract_readable_content(html, "https://example.com/")

        assert content.favicon_url is None

    def test__extract_readable_content__video_host_without_og_type(self) -> None:
        content = extract_readable_content(
            "<html><head><title>Clip</title></head></html>", "https://youtu.be/abc",
        )

        assert content.source_type == "video"

    def test__extract_readable_content__parser_failure_raises(self) -> None:
        with (
            patch(
                "services.content_extractor.trafilatura.extract",
                side_effect=RuntimeError("parser exploded"),
            ),
            pytest.raises(ExtractionError) as exc_info,
        ):
            extract_readable_content(ARTICLE_HTML, "https://example.com/")

        assert "parser exploded" in str(exc_info.value)


class TestContentExtractor:
    """Tests for ContentExtractor.fetch_and_extract."""

    @respx.mock
    async def test__fetch_and_extract__resolves_favicon_against_final_url(self) -> None:
        respx.get("https://short.example/a").mock(
            return_value=httpx.Response(301, headers={"location": "https://example.com/posts/1"}),
        )
        respx.get("https://example.com/posts/1").mock(
            return_value=httpx.Response(
                200, headers={"content-type": "text/html"}, content=ARTICLE_HTML.encode(),
            ),
        )

        content = await ContentExtractor().fetch_and_extract("https://short.example/a")

        assert content.title == "Example Article"
        assert content.favicon_url == "https://example.com/static/favicon.ico"
        assert content.text_content is not None

    @respx.mock
    async def test__fetch_and_extract__propagates_fetch_error(self) -> None:
        respx.get("https://example.com/gone").mock(return_value=httpx.Response(410))

        with pytest.raises(FetchError) as exc_info:
            await ContentExtractor().fetch_and_extract("https://example.com/gone")

        assert exc_info.value.kind == FetchErrorKind.HTTP_STATUS

    def test__from_settings__uses_fetch_options(self) -> None:
        settings = Settings(
            database_url="sqlite+aiosqlite:///:memory:",
            fetch_timeout=3.0,
            fetch_max_bytes=4096,
            fetch_user_agent="Bot/9",
        )

        extractor = ContentExtractor.from_settings(settings)

        assert extractor.timeout == 3.0
        assert extractor.max_bytes == 4096
        assert extractor.user_agent == "Bot/9"
