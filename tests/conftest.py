"""Pytest configuration and fixtures."""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardio_sched.config import Settings
from cardio_sched.core.models import Base, Provider, Service
from cardio_sched.scheduling.calendar import HolidayCalendar


# ---------------------------------------------------------------------------
# Fixed ids so tests can reference seeded rows directly
# ---------------------------------------------------------------------------

ANN = uuid.UUID("aaaaaaaa-0000-0000-0000-000000000001")  # attending, rooms + inpatient
BOB = uuid.UUID("aaaaaaaa-0000-0000-0000-000000000002")  # attending, rooms + echo
CAT = uuid.UUID("aaaaaaaa-0000-0000-0000-000000000003")  # fellow, rooms

ROOMS_AM = uuid.UUID("bbbbbbbb-0000-0000-0000-000000000001")
ROOMS_PM = uuid.UUID("bbbbbbbb-0000-0000-0000-000000000002")
CONSULTS = uuid.UUID("bbbbbbbb-0000-0000-0000-000000000003")
ECHO_AM = uuid.UUID("bbbbbbbb-0000-0000-0000-000000000004")
PTO = uuid.UUID("bbbbbbbb-0000-0000-0000-000000000005")


@pytest.fixture
def settings():
    return Settings(database_url="sqlite+aiosqlite://", api_key="")


@pytest.fixture
def holidays():
    return HolidayCalendar()


# ---------------------------------------------------------------------------
# In-memory SQLite engine + session
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as sess:
        yield sess


@pytest_asyncio.fixture
async def seed(session: AsyncSession):
    """Three providers and the services most tests need."""
    session.add_all(
        [
            Provider(
                id=ANN, name="Ann Adams", initials="AA", role="attending",
                capabilities=["Rooms", "Inpatient"], default_room_count=4,
            ),
            Provider(
                id=BOB, name="Bob Brown", initials="BB", role="attending",
                capabilities=["Rooms", "Echo TTE"], default_room_count=3,
            ),
            Provider(
                id=CAT, name="Cat Chen", initials="CC", role="fellow",
                capabilities=["Rooms"], default_room_count=2,
            ),
            Service(id=ROOMS_AM, name="Rooms AM", time_block="AM", requires_rooms=True),
            Service(id=ROOMS_PM, name="Rooms PM", time_block="PM", requires_rooms=True),
            Service(id=CONSULTS, name="Consults", time_block="BOTH", required_capability="Inpatient"),
            Service(id=ECHO_AM, name="Echo TTE AM", time_block="AM", required_capability="Echo TTE"),
            Service(id=PTO, name="PTO", time_block="BOTH"),
        ]
    )
    await session.commit()
    return {
        "ann": str(ANN),
        "bob": str(BOB),
        "cat": str(CAT),
        "rooms_am": str(ROOMS_AM),
        "rooms_pm": str(ROOMS_PM),
        "consults": str(CONSULTS),
        "echo_am": str(ECHO_AM),
        "pto": str(PTO),
    }
