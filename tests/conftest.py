# tests/conftest.py
import os
import sys
from pathlib import Path

# --- Part 1: Path Setup ---
# Must run before the application modules are imported.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# --- Part 2: Environment ---
# db.session builds its engine at import time; keep it away from any real database.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("CONFIG_PATH", str(REPO_ROOT / "tests" / "no-config.yaml"))

# --- Part 3: Application Imports ---
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.models import Base, UserRole
from factories import Seed, add_booking, add_rule, at, create_user

# Modules that open their own sessions; each gets pointed at the test database.
SESSION_USERS = (
    "services.availability_service",
    "services.reschedule_service",
    "services.booking_service",
    "api.deps",
)


# --- Part 4: Core Test Fixtures ---
@pytest_asyncio.fixture
async def session_factory(tmp_path, monkeypatch):
    """
    A fresh SQLite file per test, schema created from the models, and every
    service module's `Session` swapped for a factory bound to it.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    for mod in SESSION_USERS:
        monkeypatch.setattr(f"{mod}.Session", factory, raising=True)

    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(db_session: AsyncSession) -> Seed:
    """
    Tutor available Mondays 09:00-17:00 UTC with a 15 minute buffer, and one
    confirmed 60 minute booking on Monday 2030-01-07 at 10:00 UTC.
    """
    tutor = await create_user(db_session, UserRole.TUTOR)
    student = await create_user(db_session, UserRole.STUDENT)
    outsider = await create_user(db_session, UserRole.STUDENT)
    await add_rule(db_session, tutor.id, day=1, buffer=15)
    booking = await add_booking(db_session, tutor.id, student.id, at(10))
    return Seed(tutor=tutor, student=student, outsider=outsider, booking=booking)
