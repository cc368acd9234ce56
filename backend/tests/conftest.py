import os
import sys
import asyncio
from datetime import datetime, timezone

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Honour any externally provided DATABASE_URL (e.g. CI may set a file-backed DB)
# but fall back to an in-memory SQLite database so local runs remain isolated.
DEFAULT_DB_URL = os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Register every model with the declarative Base before create_all runs.
from matchledger import db, models  # noqa: E402,F401


@pytest.fixture(scope="session")
def session_loop():
    """Single event loop for all sync fixtures that need to run async DB code."""

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


@pytest.fixture(autouse=True, scope="session")
def ensure_database(session_loop):
    """Ensure the test database starts clean and honours DATABASE_URL."""

    mp = pytest.MonkeyPatch()
    desired_url = os.getenv("DATABASE_URL") or DEFAULT_DB_URL
    mp.setenv("DATABASE_URL", desired_url)

    if desired_url.startswith("sqlite") and ":memory:" not in desired_url:
        path = desired_url.split("///")[-1]
        if os.path.exists(path):
            os.remove(path)

    db.engine = None
    db.AsyncSessionLocal = None
    yield
    session_loop.run_until_complete(db.dispose_engine())
    mp.undo()


async def _reset_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.drop_all)
        await conn.run_sync(db.Base.metadata.create_all)


@pytest.fixture(autouse=True)
def reset_schema(session_loop):
    """Start every test from empty tables."""

    engine = db.engine or db.get_engine()
    session_loop.run_until_complete(_reset_schema(engine))
    yield


@pytest.fixture
def session_factory():
    return db.get_session_factory()


@pytest.fixture
def run(session_loop):
    """Run a coroutine to completion on the shared loop."""

    return session_loop.run_until_complete


async def _add_players(factory, players):
    async with factory() as session:
        session.add_all(models.Player(id=pid, name=name) for pid, name in players)
        await session.commit()


@pytest.fixture
def players(run, session_factory):
    """Seed a small roster: a, b, c, d (named Alice, Bob, Carol, Dave)."""

    roster = [("a", "Alice"), ("b", "Bob"), ("c", "Carol"), ("d", "Dave")]
    run(_add_players(session_factory, roster))
    return [pid for pid, _ in roster]


class FixedClock:
    """Callable clock whose time can be moved by tests."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock()
