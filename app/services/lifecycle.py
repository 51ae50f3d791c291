import logging
import uuid
from datetime import datetime, timezone

from app.exceptions.custom import CallNotFoundError, InvalidScheduleError, InvalidTransitionError
from app.mappers.call_status import is_terminal, validate_transition
from app.schemas.calls import (
    CallRecord,
    CallStatus,
    CreateCallRequest,
    UpdateCallRequest,
)
from app.services.trigger_scheduler import TriggerScheduler, rule_name_for
from app.stores import CallStore

logger = logging.getLogger(__name__)

# Fields that only the lifecycle itself may set
_PROTECTED_FIELDS = frozenset({
    "call_id", "owner_id", "status", "scheduled_for", "created_at", "updated_at",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _updated(current: CallRecord, changes: dict) -> CallRecord:
    """Apply ``changes`` through model validation; a wrongly typed value raises ValidationError."""
    data = current.model_dump(exclude={"sort_key", "owner_status_key"})
    data.update(changes)
    return CallRecord.model_validate(data)


def _merge_fields(current: CallRecord, fields: dict) -> dict:
    """Return the non-None ``fields`` as a model update, enforcing field rules."""
    changes: dict = {}
    for name, value in fields.items():
        if value is None:
            continue
        if name in _PROTECTED_FIELDS or name not in CallRecord.model_fields:
            raise ValueError(f"Field {name!r} cannot be updated")
        if name == "provider_id" and current.provider_id and current.provider_id != value:
            raise InvalidTransitionError(
                f"Call {current.call_id} is already bound to provider ID {current.provider_id}",
                current=current.status.value,
            )
        changes[name] = value
    return changes


class CallLifecycleService:
    def __init__(
        self,
        store: CallStore,
        triggers: TriggerScheduler,
        disarm_attempts: int = 3,
    ) -> None:
        self._store = store
        self._triggers = triggers
        self._disarm_attempts = disarm_attempts

    async def create(self, request: CreateCallRequest) -> CallRecord:
        now = _utcnow()
        if request.scheduled_for <= now:
            raise InvalidScheduleError("Scheduled time must be in the future")

        record = CallRecord(
            owner_id=request.owner_id,
            call_id=str(uuid.uuid4()),
            callee_name=request.callee_name,
            phone_number=request.phone_number,
            subject=request.subject,
            prompt=request.prompt,
            ai_language=request.ai_language or "en",
            voice_id=request.voice_id,
            scheduled_for=request.scheduled_for,
            status=CallStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
        )
        await self._store.put(record)

        # The record is authoritative; a call whose trigger never arms is
        # picked up by the failure sweep.
        try:
            await self._triggers.arm(record.call_id, record.scheduled_for)
        except Exception:
            logger.exception("Failed to schedule trigger for call %s", record.call_id)

        logger.info(
            "Created call %s for owner %s scheduled at %s",
            record.call_id, record.owner_id, record.scheduled_for.isoformat(),
        )
        return record

    async def get(self, call_id: str) -> CallRecord:
        record = await self._store.get(call_id)
        if record is None:
            raise CallNotFoundError(f"Call not found with ID: {call_id}")
        return record

    async def get_by_provider_id(self, provider_id: str) -> CallRecord:
        record = await self._store.get_by_provider_id(provider_id)
        if record is None:
            raise CallNotFoundError(f"Call not found with provider ID: {provider_id}")
        return record

    async def list_calls(self, owner_id: str, status: CallStatus, limit: int = 20) -> list[CallRecord]:
        return await self._store.list_by_owner_status(owner_id, status, limit)

    async def apply_transition(
        self,
        call_id: str,
        target: CallStatus,
        *,
        expected: CallStatus | None = None,
        **fields,
    ) -> CallRecord:
        """Move a call to ``target``, merging the non-None ``fields``.

        Validation runs against the stored status inside the store's atomic
        update. ``expected`` additionally pins the status the caller observed.
        """
        previous: list[CallStatus] = []

        def _mutate(current: CallRecord) -> CallRecord:
            if expected is not None and current.status != expected:
                raise InvalidTransitionError(
                    f"Call {call_id} is {current.status.value}, expected {expected.value}",
                    current=current.status.value,
                    target=target.value,
                )
            validate_transition(call_id, current.status, target)
            changes = _merge_fields(current, fields)
            now = _utcnow()
            changes["status"] = target
            changes["updated_at"] = now
            if is_terminal(target) and "completed_at" not in changes:
                changes["completed_at"] = now
            previous.append(current.status)
            return _updated(current, changes)

        record = await self._store.update(call_id, _mutate)
        logger.info("Call %s: %s -> %s", call_id, previous[0].value, target.value)
        return record

    async def annotate(self, call_id: str, **fields) -> CallRecord:
        """Merge non-None ``fields`` without a status change.

        Values equal to what is stored are skipped; if nothing changes the
        record is not rewritten and ``updated_at`` is kept.
        """

        def _mutate(current: CallRecord) -> CallRecord:
            changes = {
                name: value
                for name, value in _merge_fields(current, fields).items()
                if getattr(current, name) != value
            }
            if not changes:
                return current
            changes["updated_at"] = _utcnow()
            return _updated(current, changes)

        return await self._store.update(call_id, _mutate)

    async def update_details(self, call_id: str, request: UpdateCallRequest) -> CallRecord:
        fields = request.model_dump(exclude_none=True)

        def _mutate(current: CallRecord) -> CallRecord:
            if current.status != CallStatus.SCHEDULED:
                raise InvalidTransitionError(
                    f"Only scheduled calls can be edited (call {call_id} is {current.status.value})",
                    current=current.status.value,
                )
            changes = _merge_fields(current, fields)
            if not changes:
                return current
            changes["updated_at"] = _utcnow()
            return _updated(current, changes)

        return await self._store.update(call_id, _mutate)

    async def cancel(self, call_id: str) -> CallRecord:
        record = await self.get(call_id)
        validate_transition(call_id, record.status, CallStatus.CANCELED)

        await self._disarm_trigger(call_id)

        def _still_scheduled(current: CallRecord) -> None:
            validate_transition(call_id, current.status, CallStatus.CANCELED)

        deleted = await self._store.delete_if(call_id, _still_scheduled)
        logger.info("Canceled call %s", call_id)
        return deleted.model_copy(update={"status": CallStatus.CANCELED, "updated_at": _utcnow()})

    async def _disarm_trigger(self, call_id: str) -> None:
        rule = rule_name_for(call_id)
        for attempt in range(1, self._disarm_attempts + 1):
            try:
                await self._triggers.disarm(rule)
                return
            except Exception as exc:
                logger.warning(
                    "Disarm attempt %d/%d for call %s failed: %s",
                    attempt, self._disarm_attempts, call_id, exc,
                )
        # A stray trigger finds no record and fires without side effects
        logger.error("Could not disarm trigger %s; deleting call %s anyway", rule, call_id)
