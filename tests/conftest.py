"""
Pytest fixtures for clipworks tests.

Everything runs in-process: the job store uses an in-memory SQLite database,
storage is the local filesystem under tmp_path, and ffmpeg / HTTP are mocked
per test. No test data or network access is required.
"""

from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from clipworks.config import Settings
from clipworks.models.base import Base
from clipworks.models.database import build_session_maker
from clipworks.services.background import BackgroundTaskRunner
from clipworks.services.job_store import JobStore
from clipworks.services.resource_guard import MB, ResourceGuard
from clipworks.services.storage_service import LocalStorageService

OWN_HOST = "files.clipworks.test"
TRUSTED_URL = "https://traffic.libsyn.com/show/episode-42.mp3"
OWN_URL = f"https://{OWN_HOST}/clipworks-uploads/uploads/42/interview.mp4"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        temp_dir=str(tmp_path / "work"),
        local_storage_path=str(tmp_path / "storage"),
        local_storage_base_url=f"https://{OWN_HOST}",
        use_local_storage=True,
        memory_ceiling_bytes=1024 * MB,
        cache_ttl_s=60.0,
        artwork_max_attempts=1,
    )


@pytest_asyncio.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def store(session_maker) -> JobStore:
    return JobStore(session_maker)


class FakeMemory:
    """Settable RSS sampler for ResourceGuard."""

    def __init__(self, value: int = 200 * MB) -> None:
        self.value = value

    def __call__(self) -> int:
        return self.value


@pytest.fixture
def memory() -> FakeMemory:
    return FakeMemory()


@pytest.fixture
def guard(settings: Settings, memory: FakeMemory) -> ResourceGuard:
    return ResourceGuard(settings, memory_sampler=memory, memory_ceiling=1024 * MB)


@pytest.fixture
def storage(settings: Settings) -> LocalStorageService:
    return LocalStorageService(base_path=settings.local_storage_path, base_url=settings.local_storage_base_url)


@pytest.fixture
def runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner()
