import asyncio
from datetime import datetime, timedelta, timezone

from app.services.trigger_scheduler import (
    TriggerScheduler,
    effective_fire_time,
    rule_name_for,
)


def test_rule_name_for():
    assert rule_name_for("abc") == "callcat-abc"


def test_effective_fire_time_rounds_up_to_minute():
    fire_at = datetime(2026, 3, 1, 12, 0, 30, tzinfo=timezone.utc)
    assert effective_fire_time(fire_at) == datetime(2026, 3, 1, 12, 1, tzinfo=timezone.utc)


def test_effective_fire_time_on_boundary_is_unchanged():
    fire_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert effective_fire_time(fire_at) == fire_at


def test_effective_fire_time_without_granularity():
    fire_at = datetime(2026, 3, 1, 12, 0, 30, tzinfo=timezone.utc)
    assert effective_fire_time(fire_at, granularity=0) == fire_at


async def test_due_trigger_fires_callback_with_call_id(pool):
    triggers = TriggerScheduler(pool, granularity=0)
    fired = []
    done = asyncio.Event()

    async def on_fire(call_id):
        fired.append(call_id)
        done.set()

    triggers.register(on_fire)
    rule = await triggers.arm("c1", datetime.now(timezone.utc) - timedelta(seconds=1))

    await asyncio.wait_for(done.wait(), timeout=1)
    assert rule == "callcat-c1"
    assert fired == ["c1"]
    await asyncio.sleep(0.01)
    assert not triggers.is_armed("c1")
    assert triggers.armed_count == 0


async def test_disarmed_trigger_does_not_fire(pool):
    triggers = TriggerScheduler(pool, granularity=0)
    fired = []

    async def on_fire(call_id):
        fired.append(call_id)

    triggers.register(on_fire)
    rule = await triggers.arm("c1", datetime.now(timezone.utc) + timedelta(milliseconds=50))

    assert await triggers.disarm(rule) is True
    await asyncio.sleep(0.1)

    assert fired == []
    assert not triggers.is_armed("c1")
    assert await triggers.disarm(rule) is False


async def test_rearming_replaces_previous_trigger(pool):
    triggers = TriggerScheduler(pool, granularity=0)
    fired = []

    async def on_fire(call_id):
        fired.append(call_id)

    triggers.register(on_fire)
    await triggers.arm("c1", datetime.now(timezone.utc) + timedelta(milliseconds=30))
    await triggers.arm("c1", datetime.now(timezone.utc) + timedelta(hours=1))
    await asyncio.sleep(0.08)

    assert fired == []
    assert triggers.armed_count == 1


async def test_disarm_all(pool):
    triggers = TriggerScheduler(pool)
    for call_id in ("c1", "c2", "c3"):
        await triggers.arm(call_id, datetime.now(timezone.utc) + timedelta(hours=1))

    assert await triggers.disarm_all() == 3
    assert triggers.armed_count == 0


async def test_fire_without_callback_is_logged(pool, caplog):
    triggers = TriggerScheduler(pool, granularity=0)
    await triggers.arm("c1", datetime.now(timezone.utc))
    await asyncio.sleep(0.05)

    assert "no callback is registered" in caplog.text


async def test_fired_rule_expires_even_when_callback_fails(pool):
    triggers = TriggerScheduler(pool, granularity=0)
    attempted = asyncio.Event()

    async def on_fire(call_id):
        attempted.set()
        raise RuntimeError("dispatch failed")

    triggers.register(on_fire)
    rule = await triggers.arm("c1", datetime.now(timezone.utc))

    await asyncio.wait_for(attempted.wait(), timeout=1)
    await asyncio.sleep(0.01)

    assert not triggers.is_armed("c1")
    assert await triggers.disarm(rule) is False


async def test_rearming_during_callback_keeps_new_rule(pool):
    triggers = TriggerScheduler(pool, granularity=0)
    done = asyncio.Event()

    async def on_fire(call_id):
        await triggers.arm(call_id, datetime.now(timezone.utc) + timedelta(hours=1))
        done.set()

    triggers.register(on_fire)
    await triggers.arm("c1", datetime.now(timezone.utc))

    await asyncio.wait_for(done.wait(), timeout=1)
    await asyncio.sleep(0.01)

    assert triggers.is_armed("c1")
