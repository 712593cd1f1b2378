import os
import uuid
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./feeledger-test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from feeledger.api.v1.fee_structures import service as structure_service
from feeledger.api.v1.fee_structures.schemas import FeeStructureCreate
from feeledger.auth.dependencies import get_current_user
from feeledger.auth.schemas import CurrentUser
from feeledger.core.models import CoachingMember
from feeledger.db.session import Base, get_db, get_session_factory
from feeledger.main import app


@pytest.fixture()
async def engine(tmp_path):
    """File-backed SQLite so every session in a test sees the same tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fees.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def coaching_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def current_user(coaching_id) -> CurrentUser:
    return CurrentUser(id=uuid.uuid4(), coaching_id=coaching_id, role="SUPER_ADMIN", permissions={})


@pytest.fixture()
async def client(session_factory, current_user) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, one session per request."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = lambda: current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture()
def make_member(session_factory, coaching_id):
    async def _make(name: str = "Student", is_active: bool = True, **links) -> uuid.UUID:
        async with session_factory() as session:
            member = CoachingMember(coaching_id=coaching_id, name=name, is_active=is_active, **links)
            session.add(member)
            await session.commit()
            return member.id

    return _make


@pytest.fixture()
def make_structure(session_factory, coaching_id):
    async def _make(name: str = "Tuition", amount: str = "1000", **fields) -> uuid.UUID:
        payload = FeeStructureCreate(name=name, amount=Decimal(amount), **fields)
        async with session_factory() as session:
            created = await structure_service.create_fee_structure(session, coaching_id, payload)
            return created.id

    return _make


@pytest.fixture()
def start_date() -> date:
    return date(2026, 1, 5)
