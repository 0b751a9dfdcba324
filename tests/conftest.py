"""Pytest configuration."""

import asyncio
import os
from datetime import datetime, timedelta, timezone

# Ensure test environment
os.environ.setdefault("LC_DATABASE_URL", "sqlite+aiosqlite:///./linkcast_test.db")
os.environ.setdefault("LC_DEBUG", "true")
os.environ.setdefault("LC_RATE_LIMIT_PER_IP_PER_MINUTE", "100000")
os.environ.setdefault("LC_DISPATCH_INTERVAL_SECONDS", "0")

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from linkcast.core.publisher import PublishSuccess
from linkcast.models.store import Store
from linkcast.models.tables import Base

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so separate sessions really are separate connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'linkcast.db'}",
        connect_args={"timeout": 30},
    )

    # Take the write lock when a transaction starts; concurrent writers
    # then queue on the busy timeout instead of failing the lock upgrade.
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def store(session_maker):
    async with session_maker() as session:
        yield Store(session)


@pytest.fixture
def make_account():
    async def _make(store: Store, **overrides):
        values = {
            "owner_id": "owner-1",
            "facebook_user_id": "1784",
            "access_token": "EAAB-test-token",
            "page_id": "1784",
            "page_name": "Test Page",
            "token_expires_at": NOW + timedelta(days=30),
            "is_active": True,
        }
        values.update(overrides)
        return await store.insert_account(**values)
    return _make


@pytest.fixture
def make_story():
    async def _make(store: Store, account, **overrides):
        values = {
            "account_id": account.id,
            "story_type": "image",
            "media_url": "https://cdn.example.com/story.jpg",
            "caption": "",
            "scheduled_time": NOW - timedelta(minutes=1),
        }
        values.update(overrides)
        return await store.insert_story(**values)
    return _make


class FakePublisher:
    """Records every publish call and answers with a canned outcome.

    outcome may be a PublishOutcome, an exception to raise, or a callable
    taking the story and returning either.
    """

    def __init__(self, outcome=None, delay: float = 0.0):
        self.outcome = outcome
        self.delay = delay
        self.calls = []

    async def publish(self, job, account, now=None):
        self.calls.append(job.id)
        if self.delay:
            await asyncio.sleep(self.delay)

        outcome = self.outcome
        if outcome is None:
            outcome = PublishSuccess(external_post_id=f"post_{len(self.calls)}")
        elif callable(outcome) and not isinstance(outcome, BaseException):
            outcome = outcome(job)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def fake_publisher():
    return FakePublisher()


@pytest.fixture
def publisher_factory():
    return FakePublisher
