from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

from app.exceptions.custom import CallNotFoundError
from app.schemas.calls import CallRecord, CallStatus, TranscriptRecord

CallMutator = Callable[[CallRecord], CallRecord]


class CallStore:
    """In-memory call table with the lookups the lifecycle engine needs.

    Secondary indexes (provider id, owner+status) are derived from the
    primary map on read. ``update`` and ``delete_if`` hold the store lock
    across read-validate-write so concurrent writers always validate against
    the stored record, never a stale copy.
    """

    def __init__(self) -> None:
        self._calls: dict[str, CallRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, call_id: str) -> CallRecord | None:
        return self._calls.get(call_id)

    async def get_by_provider_id(self, provider_id: str) -> CallRecord | None:
        for record in self._calls.values():
            if record.provider_id == provider_id:
                return record
        return None

    async def list_by_owner_status(
        self, owner_id: str, status: CallStatus, limit: int = 20,
    ) -> list[CallRecord]:
        key = f"{owner_id}#{status.value}"
        matches = [r for r in self._calls.values() if r.owner_status_key == key]
        # Scheduled calls soonest first, everything else most recent first
        matches.sort(key=lambda r: r.sort_key, reverse=status != CallStatus.SCHEDULED)
        return matches[:limit]

    async def list_by_status(self, status: CallStatus) -> list[CallRecord]:
        return [r for r in self._calls.values() if r.status == status]

    async def put(self, record: CallRecord) -> None:
        async with self._lock:
            self._calls[record.call_id] = record

    async def delete(self, call_id: str) -> bool:
        async with self._lock:
            return self._calls.pop(call_id, None) is not None

    async def update(self, call_id: str, mutator: CallMutator) -> CallRecord:
        """Atomically apply ``mutator`` to the stored record and persist the result.

        Exceptions raised by the mutator abort the write and propagate.
        """
        async with self._lock:
            current = self._calls.get(call_id)
            if current is None:
                raise CallNotFoundError(f"Call not found with ID: {call_id}")
            updated = mutator(current)
            if updated is not current:
                self._calls[call_id] = updated
            return updated

    async def delete_if(self, call_id: str, predicate: Callable[[CallRecord], None]) -> CallRecord:
        """Delete the record after ``predicate`` accepts it (it raises to refuse)."""
        async with self._lock:
            current = self._calls.get(call_id)
            if current is None:
                raise CallNotFoundError(f"Call not found with ID: {call_id}")
            predicate(current)
            del self._calls[call_id]
            return current


class TranscriptStore:
    def __init__(self) -> None:
        self._transcripts: dict[str, TranscriptRecord] = {}

    def _evict(self, now: datetime) -> None:
        expired = [pid for pid, t in self._transcripts.items() if t.expires_at <= now]
        for pid in expired:
            self._transcripts.pop(pid, None)

    async def put(self, record: TranscriptRecord) -> None:
        self._transcripts[record.provider_id] = record

    async def get(self, provider_id: str) -> TranscriptRecord | None:
        self._evict(datetime.now(timezone.utc))
        return self._transcripts.get(provider_id)
