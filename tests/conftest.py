"""pytest fixtures for FlockCount tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped SQLite database with all tables created
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- users: Two persisted users (alice, bob)
- auth / fake_analyzer / test_client: API client with injectable caller and vision model
"""

import os

# Settings are read when flockcount.app is imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from dataclasses import dataclass, field  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import flockcount.models  # noqa: E402,F401
from flockcount.core.database import setup_db_session  # noqa: E402
from flockcount.models.user import User  # noqa: E402
from flockcount.services.achievements import achievement_service  # noqa: E402
from flockcount.services.vision.analyzer import AnalysisResult  # noqa: E402
from flockcount.uow import create_uow_factory  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory over a fresh SQLite file with all tables created."""
    factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'flockcount.db'}")

    async with factory() as session:
        engine = session.bind
    async with engine.begin() as conn:  # type: ignore[union-attr]
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()  # type: ignore[union-attr]


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest_asyncio.fixture(scope="function")
async def users(uow_factory) -> dict[str, User]:
    """Persist two users, alice and bob."""
    async with await uow_factory() as uow:
        alice = await uow.users.add(User(username="alice", password="hash-a"))
        bob = await uow.users.add(User(username="bob", password="hash-b"))
    return {"alice": alice, "bob": bob}


@pytest_asyncio.fixture(scope="function")
async def seeded_achievements(uow_factory):
    """Seed the initial achievement definitions."""
    async with await uow_factory() as uow:
        await achievement_service.initialize_achievements(uow)


@dataclass
class FakeAnalyzer:
    """ImageAnalyzer returning a canned result or raising a canned error."""

    result: AnalysisResult = field(
        default_factory=lambda: AnalysisResult(count=12, breed="Leghorn", confidence=90, labels=["hens"])
    )
    error: Exception | None = None
    calls: list[str] = field(default_factory=list)

    async def analyze(self, image: str) -> AnalysisResult:
        self.calls.append(image)
        if self.error is not None:
            raise self.error
        return self.result


@dataclass
class AuthState:
    """Caller identity the session middleware would normally provide."""

    user_id: int | None = None


@pytest.fixture
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def auth() -> AuthState:
    return AuthState()


@pytest_asyncio.fixture
async def test_client(session_factory, uow_factory, fake_analyzer, auth):
    """Provide AsyncClient for testing API endpoints with database access."""
    from flockcount.api.dependencies import get_optional_user_id
    from flockcount.app import app

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.analyzer = fake_analyzer
    app.dependency_overrides[get_optional_user_id] = lambda: auth.user_id

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
