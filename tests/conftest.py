from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
from httpx import ASGITransport

from app.schemas.calls import CallRecord, CallStatus
from app.services.lifecycle import CallLifecycleService
from app.services.live_transcript import LiveTranscriptPoller
from app.services.trigger_scheduler import TriggerScheduler
from app.stores import CallStore, TranscriptStore
from app.workers import WorkerPool

RETELL_BASE_URL = "https://api.retellai.com"


def make_record(
    call_id="call-1",
    owner_id="owner@example.com",
    status=CallStatus.SCHEDULED,
    scheduled_for=None,
    provider_id=None,
    **overrides,
) -> CallRecord:
    now = datetime.now(timezone.utc)
    fields = dict(
        owner_id=owner_id,
        call_id=call_id,
        callee_name="Jane Doe",
        phone_number="+15551234567",
        subject="Dentist appointment",
        prompt="Reschedule my cleaning to next week",
        scheduled_for=scheduled_for or now + timedelta(hours=1),
        status=status,
        provider_id=provider_id,
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    return CallRecord(**fields)


@pytest.fixture
def make_call():
    return make_record


@pytest.fixture
def mock_env(monkeypatch):
    monkeypatch.setenv("RETELL_API_KEY", "test-retell-key")
    monkeypatch.setenv("RETELL_FROM_NUMBER", "+15550000000")
    monkeypatch.setenv("RETELL_BASE_URL", RETELL_BASE_URL)


@pytest.fixture
async def client(mock_env):
    from app.main import app, lifespan

    async with lifespan(app):
        async with httpx.AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as c:
            yield c


@pytest.fixture
async def pool():
    pool = WorkerPool(capacity=10)
    yield pool
    await pool.shutdown()


@pytest.fixture
def store():
    return CallStore()


@pytest.fixture
def transcripts():
    return TranscriptStore()


@pytest.fixture
def triggers(pool):
    return TriggerScheduler(pool, granularity=0)


@pytest.fixture
def lifecycle(store, triggers):
    return CallLifecycleService(store, triggers)


@pytest.fixture
def retell():
    retell = AsyncMock()
    retell.fetch_transcript.return_value = None
    return retell


@pytest.fixture
def poller(pool, retell, transcripts):
    return LiveTranscriptPoller(pool, retell, transcripts, interval=0.01, ceiling=60.0)
