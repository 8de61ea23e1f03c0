"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database, fakeredis in place of Redis,
an httpx client bound to the ASGI app, and seeded users/profiles.
"""

import os

# Settings are read at import time; configure before any app import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_talent.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("NOTIFICATION_EMAILS_ENABLED", "false")
os.environ.setdefault("APP_ENV", "testing")

import uuid
from datetime import date, timedelta
from decimal import Decimal

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from config.database import AsyncSessionLocal, Base, engine
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    Booking,
    BookingStatus,
    GigApplication,
    GigApplicationStatus,
    TalentProfile,
    User,
    UserRole,
)
from shared.utils.security import create_access_token


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


async def refetch(db, model, row_id):
    """Load a row as committed by the app, bypassing the identity map."""
    if not isinstance(row_id, uuid.UUID):
        row_id = uuid.UUID(str(row_id))
    return await db.scalar(
        select(model).where(model.id == row_id).execution_options(populate_existing=True)
    )


# ── Infrastructure ─────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def _schema():
    import shared.models.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client(redis):
    app.dependency_overrides[get_redis] = lambda: redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Users & Profiles ───────────────────────────────────────────────────────────

async def _make_user(db, email: str, name: str, role: UserRole) -> User:
    user = User(id=uuid.uuid4(), email=email, name=name, role=role)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def booker(db) -> User:
    return await _make_user(db, "booker@example.com", "Bea Booker", UserRole.BOOKER)


@pytest.fixture
async def other_booker(db) -> User:
    return await _make_user(db, "other@example.com", "Otto Other", UserRole.BOOKER)


@pytest.fixture
async def talent_user(db) -> User:
    return await _make_user(db, "talent@example.com", "Tal Ent", UserRole.TALENT)


@pytest.fixture
async def admin_user(db) -> User:
    return await _make_user(db, "admin@example.com", "Ada Admin", UserRole.ADMIN)


@pytest.fixture
async def talent_profile(db, talent_user: User) -> TalentProfile:
    profile = TalentProfile(
        id=uuid.uuid4(),
        user_id=talent_user.id,
        artist_name="The Tal Ents",
        act="Jazz Trio",
        location="Austin, TX",
    )
    db.add(profile)
    await db.commit()
    return profile


@pytest.fixture
async def pro_talent(db) -> TalentProfile:
    user = await _make_user(db, "pro@example.com", "Pia Pro", UserRole.TALENT)
    profile = TalentProfile(
        id=uuid.uuid4(),
        user_id=user.id,
        artist_name="Pia Pro Band",
        is_pro_subscriber=True,
        subscription_status="active",
    )
    db.add(profile)
    await db.commit()
    return profile


@pytest.fixture
async def booking(db, booker: User, talent_profile: TalentProfile) -> Booking:
    booking = Booking(
        id=uuid.uuid4(),
        user_id=booker.id,
        talent_id=talent_profile.id,
        status=BookingStatus.PENDING,
        event_type="Wedding",
        event_date=date.today() + timedelta(days=30),
        event_location="Austin, TX",
        budget=Decimal("1000.00"),
        budget_currency="USD",
    )
    db.add(booking)
    await db.commit()
    return booking


@pytest.fixture
async def gig(db, booker: User) -> Booking:
    gig = Booking(
        id=uuid.uuid4(),
        user_id=booker.id,
        talent_id=None,
        status=BookingStatus.PENDING,
        event_type="Corporate Party",
        event_date=date.today() + timedelta(days=14),
        is_gig_opportunity=True,
    )
    db.add(gig)
    await db.commit()
    return gig


@pytest.fixture
async def gig_application(db, gig: Booking, talent_profile: TalentProfile) -> GigApplication:
    application = GigApplication(
        id=uuid.uuid4(),
        gig_id=gig.id,
        talent_id=talent_profile.id,
        status=GigApplicationStatus.INTERESTED,
    )
    db.add(application)
    await db.commit()
    return application
