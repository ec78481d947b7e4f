"""Pytest fixtures for testing."""
import os

# Must be set before any app imports that trigger Settings validation
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
# Ensure tests run in dev mode (bypasses auth) regardless of local .env
os.environ["DEV_MODE"] = "true"

from collections.abc import AsyncGenerator  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from pydantic import BaseModel  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from db.session import enable_sqlite_savepoints  # noqa: E402
from models.base import Base  # noqa: E402
from models.user import User  # noqa: E402
from services.bookmark_processor import BookmarkProcessor  # noqa: E402
from services.content_extractor import ExtractedContent  # noqa: E402
from services.summarizer import SummarizationClient, SummarizerConfig  # noqa: E402


class FakeTransport:
    """
    ModelTransport test double.

    Returns (or raises) the queued responses in order; the last one repeats once the
    queue is exhausted.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str | dict[str, Any] | BaseModel:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def calls(self) -> int:
        return len(self.prompts)


class FakeExtractor:
    """ContentExtractor test double returning a fixed result or raising an error."""

    def __init__(self, result: ExtractedContent | BaseException) -> None:
        self.result = result
        self.urls: list[str] = []

    async def fetch_and_extract(self, url: str) -> ExtractedContent:
        self.urls.append(url)
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


def make_extracted(**overrides: Any) -> ExtractedContent:
    """ExtractedContent for a typical article page."""
    values: dict[str, Any] = {
        "title": "Example Article",
        "meta_description": "An example article.",
        "text_content": "This is the body of the example article about technology.",
        "favicon_url": "https://example.com/favicon.ico",
        "source_type": "article",
    }
    values.update(overrides)
    return ExtractedContent(**values)


def make_payload(**overrides: Any) -> dict[str, Any]:
    """A valid model response."""
    values: dict[str, Any] = {
        "title": "Example Article",
        "summary_short": "A short summary.",
        "language": "en",
        "tags": ["tech", "example"],
    }
    values.update(overrides)
    return values


def make_summarizer(transport: FakeTransport, max_retries: int = 2) -> SummarizationClient:
    """SummarizationClient over a fake transport with no backoff delay."""
    config = SummarizerConfig(
        model_identifier="test-model",
        model_version="1.0",
        timeout=5.0,
        max_retries=max_retries,
        backoff_base=0.0,
    )
    return SummarizationClient(config, transport)


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an async engine for testing (in-memory SQLite unless TEST_DATABASE_URL is set)."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        enable_sqlite_savepoints(engine)
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_connection(async_engine: AsyncEngine) -> AsyncGenerator[AsyncConnection]:
    """
    Create a connection with a transaction that will be rolled back after the test.

    This provides test isolation - each test runs in its own transaction
    that is rolled back, so tests don't affect each other.
    """
    async with async_engine.connect() as connection:
        transaction = await connection.begin()
        try:
            yield connection
        finally:
            await transaction.rollback()


@pytest.fixture
async def db_session(db_connection: AsyncConnection) -> AsyncGenerator[AsyncSession]:
    """
    Create an async session bound to the test transaction.

    Uses begin_nested() for savepoints, allowing the session's flush/commit
    to work within our outer test transaction.
    """
    session_factory = async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )

    async with session_factory() as session:
        yield session


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(external_id="test-user-123", email="test@example.com")
    db_session.add(user)
    await db_session.flush()
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """Create another test user for isolation tests."""
    user = User(external_id="other-user-456", email="other@example.com")
    db_session.add(user)
    await db_session.flush()
    return user


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Model transport returning the standard example payload."""
    return FakeTransport(make_payload())


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    """Extractor returning the standard example article."""
    return FakeExtractor(make_extracted())


@pytest.fixture
def processor(fake_extractor: FakeExtractor, fake_transport: FakeTransport) -> BookmarkProcessor:
    """Processor wired to the fake extractor and model transport."""
    return BookmarkProcessor(fake_extractor, make_summarizer(fake_transport))


@pytest.fixture
async def client(
    db_session: AsyncSession,
    processor: BookmarkProcessor,
) -> AsyncGenerator[AsyncClient]:
    """Create a test client with database session and processor overrides."""
    # Clear the settings cache so it picks up DATABASE_URL from environment
    from core.config import get_settings

    get_settings.cache_clear()

    from api.dependencies import get_processor
    from api.main import app
    from db.session import get_async_session

    async def override_get_async_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_processor] = lambda: processor

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
