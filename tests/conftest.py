# tests/conftest.py
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from feedsync import models  # noqa: F401 - registers tables on Base
from feedsync.database import Base
from feedsync.services.profiles import get_profile
from feedsync.services.sync_context import SyncContext, SyncOptions
from feedsync.services.sync_service import SyncService

from tests.mocks.mock_platform import InMemoryStore, MockRemotePlatform, RecordingNotifier, StaticFeedSource

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_session():
    """Provide a database session on a fresh in-memory database"""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def remote():
    return MockRemotePlatform()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def feed():
    return StaticFeedSource()


@pytest.fixture
def sync_options():
    return SyncOptions(max_to_delete_count=5, image_base_url="https://cdn.example.com")


@pytest.fixture
def sync_context(remote, store, notifier, sync_options):
    return SyncContext(
        client=remote,
        store=store,
        profile=get_profile("keystone"),
        options=sync_options,
        notifier=notifier,
    )


@pytest.fixture
def sync_service(sync_context, feed):
    return SyncService(sync_context, feed)
