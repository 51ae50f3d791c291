import logging

from app.exceptions.custom import (
    InvalidTransitionError,
    ProviderRejectedError,
    ProviderUnavailableError,
)
from app.schemas.calls import CallRecord, CallStatus
from app.services.lifecycle import CallLifecycleService
from app.services.live_transcript import LiveTranscriptPoller
from app.services.retell import RetellService
from app.services.trigger_scheduler import TriggerScheduler, rule_name_for
from app.stores import CallStore

logger = logging.getLogger(__name__)


class TriggerDispatcher:
    """Places a call with Retell when its trigger fires."""

    def __init__(
        self,
        lifecycle: CallLifecycleService,
        store: CallStore,
        triggers: TriggerScheduler,
        retell: RetellService,
        poller: LiveTranscriptPoller,
    ) -> None:
        self._lifecycle = lifecycle
        self._store = store
        self._triggers = triggers
        self._retell = retell
        self._poller = poller
        triggers.register(self.on_fire)

    async def restore(self) -> int:
        """Re-arm triggers for every call still waiting to be placed."""
        pending = await self._store.list_by_status(CallStatus.SCHEDULED)
        for record in pending:
            try:
                await self._triggers.arm(record.call_id, record.scheduled_for)
            except Exception:
                logger.exception("Failed to re-arm trigger for call %s", record.call_id)
        if pending:
            logger.info("Re-armed triggers for %d scheduled calls", len(pending))
        return len(pending)

    async def on_fire(self, call_id: str) -> None:
        try:
            await self.dispatch(call_id)
        except Exception:
            logger.exception("Error processing scheduled call %s", call_id)

    async def dispatch(self, call_id: str) -> CallRecord | None:
        # Only the call id travels with the trigger; the record is re-read
        # here so edits and cancellations since arming are honored.
        record = await self._store.get(call_id)
        if record is None:
            logger.warning("Trigger fired for unknown call %s; ignoring", call_id)
            return None
        if record.status != CallStatus.SCHEDULED:
            logger.info("Trigger fired for call %s in status %s; ignoring", call_id, record.status.value)
            return None

        try:
            accepted = await self._retell.place_call(record)
        except ProviderUnavailableError as exc:
            # Left SCHEDULED; the failure sweep reclassifies it if it never recovers
            logger.warning(
                "Retell unavailable for call %s (status=%s): %s",
                call_id, exc.status_code, exc.message,
            )
            return None
        except ProviderRejectedError as exc:
            logger.error(
                "Retell rejected call %s (status=%s): %s",
                call_id, exc.status_code, exc.message,
            )
            failed = await self._lifecycle.apply_transition(
                call_id, CallStatus.FAILED, expected=CallStatus.SCHEDULED, dial_successful=False,
            )
            await self._disarm(call_id)
            return failed

        provider_id = accepted.call_id
        try:
            record = await self._lifecycle.apply_transition(
                call_id,
                CallStatus.IN_PROGRESS,
                provider_id=provider_id,
                provider_payload=accepted.model_dump_json(),
            )
        except InvalidTransitionError as exc:
            # A webhook (or the sweep) moved the call first; keep the binding
            logger.warning("Call %s advanced concurrently: %s", call_id, exc.message)
            record = await self._lifecycle.annotate(call_id, provider_id=provider_id)

        if record.status == CallStatus.IN_PROGRESS:
            self._poller.start_polling(provider_id)

        await self._disarm(call_id)
        return record

    async def _disarm(self, call_id: str) -> None:
        # One-shot triggers expire on their own, so a failed cleanup is not fatal
        try:
            await self._triggers.disarm(rule_name_for(call_id))
        except Exception as exc:
            logger.warning("Failed to clean up trigger for call %s: %s", call_id, exc)
