"""Pytest configuration and shared fixtures.

Run with:
    pytest tests/                    # Run all tests
    pytest tests/test_orchestrator.py -v  # Run specific test file

Every test gets its own in-memory SQLite database (aiosqlite) with the
full schema, so components run against real SQL without a server.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fixbot.core.llm import ExtractionServiceError, GenerateResult
from fixbot.core.types import SendResult
from fixbot.db.models import ChannelMapping, Repository, User, Workspace
from fixbot.db.session import init_db, make_session_factory
from fixbot.pipeline.sequence import SequenceAllocator
from fixbot.pipeline.tenant import TenantResolver
from fixbot.tasks.repository import TaskRepository

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEAM_ID = "T0000ABCD"
TEAM_NAME = "Fix Crew"
BOT_USER_ID = "UBOT"
CHANNEL_ID = "C0BUGS"
MEMBER_SLACK_ID = "UALICE"


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
def allocator(session_factory: async_sessionmaker[AsyncSession]) -> SequenceAllocator:
    return SequenceAllocator(session_factory)


@pytest.fixture
def repository(
    session_factory: async_sessionmaker[AsyncSession], allocator: SequenceAllocator
) -> TaskRepository:
    return TaskRepository(session_factory, allocator)


@pytest_asyncio.fixture
async def workspace(session_factory: async_sessionmaker[AsyncSession]) -> Workspace:
    """Installed workspace; slug ``fix-crew-ABCD`` gives task prefix ``FIX``."""
    return await TenantResolver(session_factory).upsert_workspace(
        TEAM_ID, TEAM_NAME, BOT_USER_ID
    )


@pytest_asyncio.fixture
async def member(
    session_factory: async_sessionmaker[AsyncSession], workspace: Workspace
) -> User:
    async with session_factory() as db:
        user = User(
            workspace_id=workspace.id,
            slack_user_id=MEMBER_SLACK_ID,
            display_name="Alice",
        )
        db.add(user)
        await db.commit()
        return user


@pytest_asyncio.fixture
async def channel_mapping(
    session_factory: async_sessionmaker[AsyncSession], workspace: Workspace
) -> ChannelMapping:
    async with session_factory() as db:
        repo = Repository(
            workspace_id=workspace.id, name="web", full_name="fixcrew/web"
        )
        db.add(repo)
        await db.flush()
        mapping = ChannelMapping(
            workspace_id=workspace.id,
            slack_channel_id=CHANNEL_ID,
            slack_channel_name="bugs",
            repository_id=repo.id,
        )
        db.add(mapping)
        await db.commit()
        return mapping


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────

class FakeExtractionService:
    """Stands in for the LLM client.

    ``reply`` is either the text to return or an exception to raise.
    """

    model = "fake-model"

    def __init__(self, reply: str | BaseException = "{}") -> None:
        self.reply = reply
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> GenerateResult:
        self.prompts.append(prompt)
        if isinstance(self.reply, BaseException):
            raise self.reply
        return GenerateResult(text=self.reply, model=self.model)


class FakeSender:
    """Records outbound messages instead of calling Slack."""

    def __init__(self, result: SendResult | None = None) -> None:
        self.result = result or SendResult(ok=True)
        self.sent: list[dict[str, Any]] = []

    async def send_message(
        self,
        channel_id: str,
        text: str,
        thread_ts: str | None = None,
        blocks: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        self.sent.append(
            {"channel_id": channel_id, "text": text, "thread_ts": thread_ts, "blocks": blocks}
        )
        return self.result


@pytest.fixture
def fake_service() -> Callable[..., FakeExtractionService]:
    return FakeExtractionService


@pytest.fixture
def failing_service() -> FakeExtractionService:
    return FakeExtractionService(ExtractionServiceError("provider down", status_code=503))


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()
