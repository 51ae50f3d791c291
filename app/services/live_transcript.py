import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from app.schemas.calls import TranscriptRecord
from app.services.retell import RetellService
from app.stores import TranscriptStore
from app.workers import TaskHandle, WorkerPool

logger = logging.getLogger(__name__)

POLL_INTERVAL = 3.0  # seconds
POLL_CEILING = 600.0  # seconds
TRANSCRIPT_TTL = timedelta(days=90)


@dataclass
class _ActivePoll:
    poll: TaskHandle
    ceiling: TaskHandle | None = None


class LiveTranscriptPoller:
    """Mirrors in-progress call transcripts from Retell into the transcript store.

    One recurring fetch per provider id, plus a one-shot ceiling timer that
    stops the poll even if the end-of-call webhook never arrives. The
    registry maps provider id to its poll; registration and removal are
    single dict operations so webhook delivery, trigger fire and the ceiling
    timer can race freely.
    """

    def __init__(
        self,
        pool: WorkerPool,
        retell: RetellService,
        transcripts: TranscriptStore,
        interval: float = POLL_INTERVAL,
        ceiling: float = POLL_CEILING,
        ttl: timedelta = TRANSCRIPT_TTL,
        enabled: bool = True,
    ) -> None:
        self._pool = pool
        self._retell = retell
        self._transcripts = transcripts
        self._interval = interval
        self._ceiling = ceiling
        self._ttl = ttl
        self._enabled = enabled
        self._active: dict[str, _ActivePoll] = {}

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_polling(self, provider_id: str) -> bool:
        return provider_id in self._active

    def start_polling(self, provider_id: str) -> bool:
        if not self._enabled:
            logger.info("Live polling disabled; not polling provider_id=%s", provider_id)
            return False

        entry = _ActivePoll(poll=TaskHandle(f"transcript-poll-{provider_id}"))
        if self._active.setdefault(provider_id, entry) is not entry:
            logger.warning("Polling already active for provider_id=%s", provider_id)
            return False

        self._pool.schedule_at_fixed_rate(
            lambda: self._poll(provider_id, entry),
            self._interval,
            handle=entry.poll,
        )
        entry.ceiling = self._pool.schedule_once(
            lambda: self._expire(provider_id, entry),
            self._ceiling,
            name=f"transcript-ceiling-{provider_id}",
        )
        logger.info(
            "Live polling started: provider_id=%s interval=%.0fs ceiling=%.0fs active=%d",
            provider_id, self._interval, self._ceiling, len(self._active),
        )
        return True

    def stop_polling(self, provider_id: str) -> bool:
        entry = self._active.pop(provider_id, None)
        if entry is None:
            logger.debug("No active polling for provider_id=%s", provider_id)
            return False
        entry.poll.cancel()
        if entry.ceiling is not None:
            entry.ceiling.cancel()
        logger.info(
            "Live polling stopped: provider_id=%s remaining=%d",
            provider_id, len(self._active),
        )
        return True

    async def stop_all(self) -> int:
        provider_ids = list(self._active)
        for provider_id in provider_ids:
            self.stop_polling(provider_id)
        return len(provider_ids)

    async def _expire(self, provider_id: str, entry: _ActivePoll) -> None:
        # Only stop the poll this timer was started with
        if self._active.get(provider_id) is not entry:
            return
        del self._active[provider_id]
        entry.poll.cancel()
        logger.warning(
            "Auto-stopping polling for provider_id=%s after %.0fs ceiling (remaining=%d)",
            provider_id, self._ceiling, len(self._active),
        )

    async def _poll(self, provider_id: str, entry: _ActivePoll) -> None:
        try:
            text = await self._retell.fetch_transcript(provider_id)
        except Exception as exc:
            logger.error("Polling error for provider_id=%s: %s (continuing)", provider_id, exc)
            return

        if self._active.get(provider_id) is not entry:
            logger.debug("Discarding transcript for provider_id=%s; polling stopped", provider_id)
            return
        if not text or not text.strip():
            logger.debug("Empty transcript for provider_id=%s", provider_id)
            return

        await self._transcripts.put(TranscriptRecord(
            provider_id=provider_id,
            text=text,
            expires_at=datetime.now(timezone.utc) + self._ttl,
        ))
        logger.info("Transcript update: provider_id=%s length=%d", provider_id, len(text))
