import itertools
import os
from datetime import timedelta
from decimal import Decimal

# settings are read once at import time; point them at SQLite before the package loads
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("METRICS_ENABLED", "false")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from campus_points.database import Base
from campus_points.models import (
    User,
    Role,
    Promotion,
    PromotionType,
    Event,
    EventGuest,
    EventOrganizer,
)
from campus_points.utils.timezone import utc_now_naive


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
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
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def now():
    return utc_now_naive()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make(
        role: Role = Role.REGULAR,
        points: int = 0,
        verified: bool = True,
        suspicious: bool = False,
        utorid: str = None,
    ) -> User:
        n = next(counter)
        user = User(
            utorid=utorid or f"user{n:04d}",
            name=f"Test User {n}",
            email=f"user{n}@mail.utoronto.ca",
            role=role.value,
            points_balance=points,
            verified_student=verified,
            is_suspicious=suspicious,
        )
        db.add(user)
        await db.flush()
        return user

    return _make


@pytest.fixture
def make_promotion(db, now):
    async def _make(
        type: PromotionType = PromotionType.AUTOMATIC,
        rate: float = None,
        points: int = 0,
        min_spend: Decimal = None,
        starts_in: timedelta = timedelta(days=-1),
        lasts: timedelta = timedelta(days=2),
        name: str = "Promo",
    ) -> Promotion:
        start = now + starts_in
        promotion = Promotion(
            name=name,
            description="",
            type=type.value,
            start_time=start,
            end_time=start + lasts,
            min_spend=min_spend,
            rate=rate,
            points=points,
        )
        db.add(promotion)
        await db.flush()
        return promotion

    return _make


@pytest.fixture
def make_event(db, now):
    async def _make(
        total_points: int = 100,
        guests=(),
        organizers=(),
        ended: bool = False,
        capacity: int = None,
    ) -> Event:
        start = now - timedelta(days=3) if ended else now - timedelta(hours=1)
        event = Event(
            name="Hack Night",
            description="",
            location="BA 1160",
            start_time=start,
            end_time=start + timedelta(days=1) if ended else now + timedelta(days=1),
            capacity=capacity,
            total_points=total_points,
            points_remain=total_points,
            points_awarded=0,
        )
        db.add(event)
        await db.flush()
        for user in guests:
            db.add(EventGuest(event_id=event.id, user_id=user.id))
        for user in organizers:
            db.add(EventOrganizer(event_id=event.id, user_id=user.id))
        await db.flush()
        return event

    return _make


@pytest.fixture
async def cashier(make_user):
    return await make_user(role=Role.CASHIER, utorid="cashier1")


@pytest.fixture
async def manager(make_user):
    return await make_user(role=Role.MANAGER, utorid="manager1")
