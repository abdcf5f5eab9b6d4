import os
import sys
import asyncio
import itertools
import uuid
from datetime import timedelta

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# A sufficiently long admin token for tests
TEST_ADMIN_TOKEN = "a" * 40
os.environ.setdefault("ADMIN_TOKEN", TEST_ADMIN_TOKEN)
os.environ.setdefault("ALLOWED_ORIGINS", "http://testserver")
os.environ.setdefault("AUTO_LIVE_SETTLE_SECONDS", "0")
# Honour any externally provided DATABASE_URL (e.g. CI may set a file-backed DB)
# but fall back to an in-memory SQLite database so local runs remain isolated.
DEFAULT_DB_URL = os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Ensure all SQLAlchemy models are registered with the declarative Base so
# metadata.create_all creates every table when the test database is initialised.
from app import db, models  # noqa: E402
from app.cache import auto_live_throttle  # noqa: E402
from app.routers.auth import limiter  # noqa: E402
from app.services.youtube import (  # noqa: E402
    BroadcastData,
    BroadcastProvider,
    BroadcastProviderError,
    PhysicalStream,
    StreamHealth,
)
from app.time_utils import utcnow  # noqa: E402


@pytest.fixture(scope="session")
def session_loop():
    """Single event loop for all sync fixtures that need to run async DB code."""

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def admin_token(monkeypatch):
    """Ensure a strong admin token is present for all tests."""
    monkeypatch.setenv("ADMIN_TOKEN", TEST_ADMIN_TOKEN)
    yield


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {TEST_ADMIN_TOKEN}"}


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
    if db.engine is not None:
        session_loop.run_until_complete(db.engine.dispose())
        db.engine = None

    if db.AsyncSessionLocal is not None:
        db.AsyncSessionLocal = None
    mp.undo()


async def _reset_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.drop_all)
        await conn.run_sync(db.Base.metadata.create_all)


@pytest.fixture(autouse=True)
def reset_schema(request, session_loop):
    """Reset the schema before each test unless preserved via marker."""

    if request.node.get_closest_marker("preserve_schema"):
        yield
        return

    engine = db.engine or db.get_engine()
    session_loop.run_until_complete(_reset_schema(engine))
    yield


@pytest.fixture(autouse=True)
def reset_throttles(session_loop):
    limiter.reset()
    session_loop.run_until_complete(auto_live_throttle.clear())
    yield


class FakeBroadcastProvider(BroadcastProvider):
    """In-memory stand-in for the YouTube API.

    ``fail(operation)`` makes every call to ``operation`` raise; pass
    ``on_calls`` to fail only the given 1-based call numbers.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._failures: dict[str, tuple[str, set[int] | None]] = {}
        self.call_counts: dict[str, int] = {}
        self.lifecycle: dict[str, str] = {}
        self.bindings: dict[str, str] = {}
        self.health: dict[str, StreamHealth] = {}
        self.transitions: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.created_titles: list[str] = []

    def fail(self, operation: str, message: str = "provider unavailable", on_calls=None) -> None:
        self._failures[operation] = (message, set(on_calls) if on_calls else None)

    def heal(self, operation: str) -> None:
        self._failures.pop(operation, None)

    def set_health(self, external_stream_id: str, status: str, health_status: str | None = None) -> None:
        self.health[external_stream_id] = StreamHealth(status=status, health_status=health_status)

    def _enter(self, operation: str, resource_id: str | None = None) -> None:
        count = self.call_counts.get(operation, 0) + 1
        self.call_counts[operation] = count
        failure = self._failures.get(operation)
        if failure is None:
            return
        message, calls = failure
        if calls is None or count in calls:
            raise BroadcastProviderError(operation, message, resource_id=resource_id)

    async def create_broadcast(self, title, description, scheduled_start, privacy):
        self._enter("create_broadcast")
        broadcast_id = f"bc-{next(self._ids)}"
        self.lifecycle[broadcast_id] = "ready"
        self.created_titles.append(title)
        return BroadcastData(
            broadcast_id=broadcast_id,
            watch_url=f"https://youtube.com/watch?v={broadcast_id}",
        )

    async def bind_stream(self, broadcast_id, external_stream_id):
        self._enter("bind_stream", broadcast_id)
        self.bindings[broadcast_id] = external_stream_id

    async def transition_broadcast(self, broadcast_id, target_state):
        self._enter("transition_broadcast", broadcast_id)
        self.transitions.append((broadcast_id, target_state))
        self.lifecycle[broadcast_id] = target_state

    async def delete_broadcast(self, broadcast_id):
        self._enter("delete_broadcast", broadcast_id)
        self.deleted.append(broadcast_id)
        self.lifecycle.pop(broadcast_id, None)

    async def get_broadcast_status(self, broadcast_id):
        self._enter("get_broadcast_status", broadcast_id)
        return self.lifecycle.get(broadcast_id, "ready")

    async def create_physical_stream(self, title):
        self._enter("create_physical_stream")
        n = next(self._ids)
        return PhysicalStream(
            external_stream_id=f"yt-stream-{n}",
            ingest_address="rtmp://a.rtmp.youtube.com/live2",
            stream_name=f"key-{n}",
        )

    async def get_stream_health(self, external_stream_id):
        self._enter("get_stream_health", external_stream_id)
        return self.health.get(
            external_stream_id, StreamHealth(status="inactive", health_status="noData")
        )


@pytest.fixture
def provider():
    return FakeBroadcastProvider()


class Seeder:
    """Async helpers that write fixture rows in their own sessions."""

    async def team(self, slug: str = "falcons", display_name: str = "Falcons") -> models.Team:
        team = models.Team(id=uuid.uuid4().hex, slug=slug, display_name=display_name)
        async with db.AsyncSessionLocal() as session:
            session.add(team)
            await session.commit()
        return team

    async def tournament(self, name: str = "Spring Classic") -> models.Tournament:
        tournament = models.Tournament(id=uuid.uuid4().hex, name=name)
        async with db.AsyncSessionLocal() as session:
            session.add(tournament)
            await session.commit()
        return tournament

    async def streams(
        self,
        count: int = 1,
        *,
        status: str = "available",
        age_hours: float = 0.0,
        reserved_match_id: str | None = None,
    ):
        stamp = utcnow() - timedelta(hours=age_hours)
        entries = []
        async with db.AsyncSessionLocal() as session:
            for _ in range(count):
                n = uuid.uuid4().hex[:8]
                entry = models.StreamPoolEntry(
                    id=uuid.uuid4().hex,
                    external_stream_id=f"yt-{n}",
                    ingest_address="rtmp://a.rtmp.youtube.com/live2",
                    stream_name=f"key-{n}",
                    status=status,
                    reserved_match_id=reserved_match_id,
                    created_at=stamp,
                    updated_at=stamp,
                )
                session.add(entry)
                entries.append(entry)
            await session.commit()
        return entries

    async def match(self, team: models.Team, **fields) -> models.Match:
        now = utcnow()
        values = {
            "id": uuid.uuid4().hex,
            "team_id": team.id,
            "opponent_name": "Hawks",
            "status": "draft",
            "privacy_status": "unlisted",
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)
        match = models.Match(**values)
        async with db.AsyncSessionLocal() as session:
            session.add(match)
            await session.commit()
        return match

    async def get(self, model, key):
        async with db.AsyncSessionLocal() as session:
            return await session.get(model, key)


@pytest.fixture
def seed():
    return Seeder()
