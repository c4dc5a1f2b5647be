"""
Pytest configuration and fixtures.
"""
import asyncio
import os
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from cryptography.fernet import Fernet

# Settings are read at import time, so the environment is seeded first
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-sessions")
os.environ["DEBUG"] = "true"
os.environ["RECALL_API_KEY"] = "test-recall-key"
os.environ["RETRY_MULTIPLIER"] = "0"
os.environ["SCHEDULE_WAIT_SECONDS"] = "2"
os.environ["RECALL_RATE_LIMIT"] = "100000"
os.environ["GOOGLE_RATE_LIMIT"] = "100000"
os.environ["SOCIAL_RATE_LIMIT"] = "100000"
os.environ["OPENAI_RATE_LIMIT"] = "100000"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from postmeeting.api import Services
from postmeeting.exceptions import RecallAPIError
from postmeeting.main import create_app
from postmeeting.models import Base
from postmeeting.schemas import Attendee, CalendarEvent
from postmeeting.services.content import ContentService
from postmeeting.services.store import MeetingStore
from postmeeting.services.summary_service import SummaryService
from postmeeting.utils import utcnow


# ============================================
# DATABASE FIXTURES
# ============================================

@pytest.fixture(scope="function")
async def test_engine(tmp_path):
    """
    Create a test database engine backed by a throwaway SQLite file.

    NullPool keeps no connection alive between sessions, so the TestClient's
    event loop never reuses a connection opened on the test's loop.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture(scope="function")
def store(session_factory):
    return MeetingStore(session_factory)


# ============================================
# FAKE ADAPTERS
# ============================================

class FakeRecall:
    """In-memory stand-in for RecallService."""

    def __init__(self):
        self.created: List[Tuple[str, Optional[str]]] = []
        self.deleted: List[str] = []
        self.media: Dict[str, Tuple[bool, bool]] = {}
        self.transcripts: Dict[str, str] = {}
        self.participants: Dict[str, List[Attendee]] = {}
        self.create_delay = 0.0
        self.fail_create = False
        self.fail_poll = False
        self._next = 0

    async def create_bot(self, meeting_url, join_at=None, region=None):
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.fail_create:
            raise RecallAPIError("bot creation rejected", status_code=400)
        self._next += 1
        bot_id = f"bot-{self._next}"
        self.created.append((meeting_url, region))
        return bot_id

    async def delete_bot(self, bot_id, region=None):
        self.deleted.append(bot_id)

    async def poll_media(self, bot_id, region=None):
        if self.fail_poll:
            raise RecallAPIError("poll failed", status_code=500)
        return self.media.get(bot_id, (False, False))

    async def fetch_transcript(self, bot_id, region=None):
        return self.transcripts.get(bot_id)

    async def fetch_participants(self, bot_id, region=None):
        return self.participants.get(bot_id, [])


@pytest.fixture
def fake_recall():
    return FakeRecall()


@pytest.fixture
def content_service():
    """Content service with AI switched off."""
    return ContentService(SummaryService(api_key=""))


# ============================================
# TEST CLIENT FIXTURES
# ============================================

@pytest.fixture
def services(store, fake_recall, content_service):
    return Services(store, recall=fake_recall, content=content_service)


@pytest.fixture
def test_client(services):
    """Client against an app wired to the test store; the lifespan (and ticker) is not run."""
    app = create_app(services, run_ticker=False)
    return TestClient(app)


# ============================================
# MOCK DATA FIXTURES
# ============================================

def make_event(
    event_id: str = "acct@example.com:primary:evt1",
    start_offset: timedelta = timedelta(hours=1),
    duration: timedelta = timedelta(minutes=30),
    **overrides,
) -> CalendarEvent:
    start = utcnow() + start_offset
    values = dict(
        id=event_id,
        account_id="acct@example.com",
        title="Quarterly planning",
        start=start,
        end=start + duration,
        attendees=[Attendee(email="client@example.com", name="Client")],
        conferencing_url="https://zoom.us/j/123456",
        platform="zoom",
    )
    values.update(overrides)
    return CalendarEvent(**values)


@pytest.fixture
def event_factory():
    return make_event
