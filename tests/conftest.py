"""Shared fixtures: a throwaway SQLite database per test, user factories and an API client."""
import itertools
import os
import tempfile

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CLEANUP_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="timechat-uploads-")

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from timechat.core.security import create_access_token
from timechat.core.websocket.event_router import EventRouter
from timechat.database import Base
from timechat.models import User


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'timechat.db'}", poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make(name: str = None, email: str = None) -> User:
        n = next(counter)
        user = User(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            password_hash="not-a-real-hash",
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_users(make_user):
    async def _make(count: int):
        return [await make_user() for _ in range(count)]

    return _make


@pytest.fixture
def router() -> EventRouter:
    return EventRouter()


@pytest.fixture
async def client(session_factory, router, monkeypatch):
    from timechat.init_db import get_db
    from timechat.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr("timechat.services.notifications.event_router", router)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers
