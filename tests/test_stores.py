"""Tests for the in-memory call and transcript stores."""

from datetime import datetime, timedelta, timezone

import pytest

from app.exceptions.custom import CallNotFoundError
from app.schemas.calls import CallStatus, TranscriptRecord


async def test_put_and_lookups(store, make_call):
    await store.put(make_call("c1", provider_id="P1"))

    assert (await store.get("c1")).call_id == "c1"
    assert (await store.get_by_provider_id("P1")).call_id == "c1"
    assert await store.get("missing") is None
    assert await store.get_by_provider_id("P2") is None


async def test_list_by_owner_status_orders_scheduled_soonest_first(store, make_call):
    now = datetime.now(timezone.utc)
    await store.put(make_call("late", scheduled_for=now + timedelta(hours=3)))
    await store.put(make_call("soon", scheduled_for=now + timedelta(hours=1)))
    await store.put(make_call("other-owner", owner_id="someone@else.com"))
    await store.put(make_call("done", status=CallStatus.COMPLETED))

    calls = await store.list_by_owner_status("owner@example.com", CallStatus.SCHEDULED)

    assert [c.call_id for c in calls] == ["soon", "late"]


async def test_list_by_owner_status_orders_completed_most_recent_first(store, make_call):
    now = datetime.now(timezone.utc)
    await store.put(make_call("old", status=CallStatus.COMPLETED, scheduled_for=now - timedelta(days=2)))
    await store.put(make_call("new", status=CallStatus.COMPLETED, scheduled_for=now - timedelta(hours=1)))

    calls = await store.list_by_owner_status("owner@example.com", CallStatus.COMPLETED, limit=1)

    assert [c.call_id for c in calls] == ["new"]


async def test_owner_status_key_follows_status(make_call):
    record = make_call("c1")
    assert record.owner_status_key == "owner@example.com#SCHEDULED"

    moved = record.model_copy(update={"status": CallStatus.IN_PROGRESS})
    assert moved.owner_status_key == "owner@example.com#IN_PROGRESS"
    assert moved.sort_key.endswith("#c1")


async def test_update_persists_mutator_result(store, make_call):
    await store.put(make_call("c1"))

    updated = await store.update("c1", lambda r: r.model_copy(update={"summary": "hi"}))

    assert updated.summary == "hi"
    assert (await store.get("c1")).summary == "hi"


async def test_update_aborts_when_mutator_raises(store, make_call):
    await store.put(make_call("c1"))

    def _refuse(record):
        raise ValueError("no")

    with pytest.raises(ValueError):
        await store.update("c1", _refuse)
    assert (await store.get("c1")).summary is None


async def test_update_missing_call(store):
    with pytest.raises(CallNotFoundError):
        await store.update("missing", lambda r: r)


async def test_delete_if(store, make_call):
    await store.put(make_call("c1"))

    deleted = await store.delete_if("c1", lambda r: None)

    assert deleted.call_id == "c1"
    assert await store.get("c1") is None
    with pytest.raises(CallNotFoundError):
        await store.delete_if("c1", lambda r: None)


async def test_transcripts_expire(transcripts):
    now = datetime.now(timezone.utc)
    await transcripts.put(TranscriptRecord(provider_id="P1", text="hello", expires_at=now + timedelta(days=90)))
    await transcripts.put(TranscriptRecord(provider_id="P2", text="old", expires_at=now - timedelta(seconds=1)))

    assert (await transcripts.get("P1")).text == "hello"
    assert await transcripts.get("P2") is None
