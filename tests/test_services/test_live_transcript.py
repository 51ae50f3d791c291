import asyncio
from datetime import datetime, timedelta, timezone

from app.services.live_transcript import LiveTranscriptPoller


async def _wait_for(predicate, attempts=50):
    for _ in range(attempts):
        if await predicate():
            return True
        await asyncio.sleep(0.01)
    return False


async def test_transcript_is_mirrored_while_polling(poller, retell, transcripts):
    retell.fetch_transcript.return_value = "Agent: Hi"

    assert poller.start_polling("P1") is True

    async def _stored():
        return await transcripts.get("P1") is not None

    assert await _wait_for(_stored)
    record = await transcripts.get("P1")
    assert record.text == "Agent: Hi"
    assert record.expires_at > datetime.now(timezone.utc) + timedelta(days=89)
    poller.stop_polling("P1")


async def test_start_twice_keeps_single_poll(poller, pool):
    assert poller.start_polling("P1") is True
    pending = pool.pending

    assert poller.start_polling("P1") is False

    assert poller.active_count == 1
    assert pool.pending == pending
    poller.stop_polling("P1")


async def test_stop_without_active_poll(poller):
    assert poller.stop_polling("P1") is False


async def test_stop_cancels_poll_and_ceiling(poller, pool):
    poller.start_polling("P1")

    assert poller.stop_polling("P1") is True
    await asyncio.sleep(0.02)

    assert not poller.is_polling("P1")
    assert pool.pending == 0


async def test_ceiling_stops_polling(pool, retell, transcripts):
    poller = LiveTranscriptPoller(pool, retell, transcripts, interval=0.01, ceiling=0.05)
    poller.start_polling("P1")

    async def _stopped():
        return not poller.is_polling("P1")

    assert await _wait_for(_stopped)
    calls = retell.fetch_transcript.await_count
    await asyncio.sleep(0.05)
    assert retell.fetch_transcript.await_count == calls


async def test_stale_ceiling_does_not_stop_restarted_poll(pool, retell, transcripts):
    poller = LiveTranscriptPoller(pool, retell, transcripts, interval=0.01, ceiling=0.05)
    poller.start_polling("P1")
    first = poller._active["P1"]
    poller.stop_polling("P1")

    poller.start_polling("P1")
    await poller._expire("P1", first)

    assert poller.is_polling("P1")
    poller.stop_polling("P1")


async def test_fetch_errors_do_not_stop_polling(poller, retell, transcripts):
    retell.fetch_transcript.side_effect = [RuntimeError("boom"), "Agent: Hi", "Agent: Hi"]
    poller.start_polling("P1")

    async def _stored():
        return await transcripts.get("P1") is not None

    assert await _wait_for(_stored)
    assert poller.is_polling("P1")
    poller.stop_polling("P1")


async def test_empty_transcript_is_not_stored(poller, retell, transcripts):
    retell.fetch_transcript.return_value = "   "
    poller.start_polling("P1")

    async def _fetched():
        return retell.fetch_transcript.await_count >= 2

    assert await _wait_for(_fetched)
    assert await transcripts.get("P1") is None
    poller.stop_polling("P1")


async def test_result_of_stopped_poll_is_discarded(poller, retell, transcripts):
    started = asyncio.Event()
    release = asyncio.Event()

    async def _slow_fetch(provider_id):
        started.set()
        await release.wait()
        return "late transcript"

    retell.fetch_transcript.side_effect = _slow_fetch
    poller.start_polling("P1")
    await asyncio.wait_for(started.wait(), timeout=1)

    poller.stop_polling("P1")
    release.set()
    await asyncio.sleep(0.02)

    assert await transcripts.get("P1") is None


async def test_disabled_poller_never_polls(pool, retell, transcripts):
    poller = LiveTranscriptPoller(pool, retell, transcripts, interval=0.01, enabled=False)

    assert poller.start_polling("P1") is False
    await asyncio.sleep(0.03)

    assert poller.active_count == 0
    retell.fetch_transcript.assert_not_awaited()


async def test_stop_all(poller):
    poller.start_polling("P1")
    poller.start_polling("P2")

    assert await poller.stop_all() == 2
    assert poller.active_count == 0
