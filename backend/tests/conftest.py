"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database. StaticPool keeps a single
connection so the schema survives across sessions opened by the app.
"""

import os

os.environ.setdefault("SQLITE_DATABASE_URI", "sqlite:///:memory:")
os.environ.setdefault("AGGREGATE_CHECK_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.deps import get_db, get_notifier
from app.db.base import Base
from app.services.notifications import MemoryNotificationSink
import app.models  # noqa: F401

from tests.factories import ProjectFactory, UserFactory


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return MemoryNotificationSink()


@pytest_asyncio.fixture
async def finance_user(db_session):
    return await UserFactory.create(db_session, username="finance", roles=["finance"])


@pytest_asyncio.fixture
async def sales_user(db_session):
    return await UserFactory.create(db_session, username="sales", roles=["sales"])


@pytest_asyncio.fixture
async def translator_user(db_session):
    return await UserFactory.create(db_session, username="translator", roles=["translator"])


@pytest_asyncio.fixture
async def project(db_session, sales_user):
    return await ProjectFactory.create(db_session, created_by=sales_user.id, project_amount="1000")


@pytest_asyncio.fixture
async def client(session_factory, notifier):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth(user, role=None):
    """Request headers identifying the caller."""
    headers = {"X-User-Id": str(user.id)}
    if role:
        headers["X-Role"] = role
    return headers
