import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest

from assistant_memory.core.config import get_settings
from assistant_memory.db.base import create_engine, create_sessionmaker, init_db
from assistant_memory.main import create_app
from assistant_memory.memory.chunk_store import InMemoryChunkStore, SQLChunkStore

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FrozenClock:
    """Settable clock shared by stores and rankers in tests."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture(params=["memory", "sql"])
async def chunk_store(request, clock, tmp_path):
    """Both store backends; every store test must pass against either."""

    if request.param == "memory":
        yield InMemoryChunkStore(clock=clock)
        return

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_store.db'}")
    await init_db(engine)
    yield SQLChunkStore(create_sessionmaker(engine), clock=clock)
    await engine.dispose()


@pytest.fixture
def app(monkeypatch):
    monkeypatch.setenv("DB_URL", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    get_settings.cache_clear()
    yield create_app()
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
