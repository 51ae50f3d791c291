import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from app.exceptions.custom import InvalidTransitionError
from app.mappers.call_status import is_terminal
from app.schemas.calls import CallRecord, CallStatus
from app.schemas.retell import WebhookCallInfo, WebhookEvent
from app.services.lifecycle import CallLifecycleService
from app.services.live_transcript import LiveTranscriptPoller
from app.stores import CallStore

logger = logging.getLogger(__name__)


def _from_epoch_ms(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class WebhookIngestor:
    """Applies Retell lifecycle webhooks to call records.

    Every event is handled in isolation and never raises: Retell retries
    any delivery that is not acknowledged, so failures are logged here and
    the endpoint always answers 204.
    """

    def __init__(
        self,
        lifecycle: CallLifecycleService,
        store: CallStore,
        poller: LiveTranscriptPoller,
    ) -> None:
        self._lifecycle = lifecycle
        self._store = store
        self._poller = poller
        self._handlers = {
            "call_started": self._call_started,
            "call_ended": self._call_ended,
            "call_analyzed": self._call_analyzed,
        }

    async def ingest(self, payload: dict | None) -> None:
        try:
            event = WebhookEvent.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed Retell webhook: %s", exc.errors(include_url=False))
            return

        provider_id = event.call.call_id
        logger.info("Received Retell webhook for provider ID %s with event %s", provider_id, event.event)

        handler = self._handlers.get(event.event)
        if handler is None:
            logger.warning("Unknown event received: %s (provider ID %s)", event.event, provider_id)
            return

        try:
            await handler(event.call)
        except Exception:
            logger.exception("Failed to process %s for provider ID %s", event.event, provider_id)

    async def _find(self, call: WebhookCallInfo) -> CallRecord | None:
        record = await self._store.get_by_provider_id(call.call_id)
        if record is not None:
            return record

        # Events can beat the dispatcher's write of the provider id; the
        # call id we sent as metadata still identifies the record.
        call_id = (call.metadata or {}).get("callId")
        if not call_id:
            return None
        record = await self._store.get(call_id)
        if record is not None and record.provider_id and record.provider_id != call.call_id:
            logger.warning(
                "Call %s is bound to provider ID %s, not %s",
                call_id, record.provider_id, call.call_id,
            )
            return None
        return record

    async def _call_started(self, call: WebhookCallInfo) -> None:
        record = await self._find(call)
        if record is None:
            logger.warning("call_started for unknown provider ID %s", call.call_id)
            return

        payload = call.model_dump_json()
        if record.status == CallStatus.SCHEDULED:
            try:
                await self._lifecycle.apply_transition(
                    record.call_id,
                    CallStatus.IN_PROGRESS,
                    provider_id=call.call_id,
                    dial_successful=True,
                    provider_payload=payload,
                )
                self._poller.start_polling(call.call_id)
                return
            except InvalidTransitionError:
                # The dispatcher got there first
                record = await self._lifecycle.get(record.call_id)

        if is_terminal(record.status):
            logger.info(
                "call_started for call %s ignored; already %s",
                record.call_id, record.status.value,
            )
            return

        await self._lifecycle.annotate(
            record.call_id,
            provider_id=call.call_id,
            dial_successful=True,
            provider_payload=payload,
        )
        logger.info("Updated call %s with provider ID %s", record.call_id, call.call_id)

    async def _call_ended(self, call: WebhookCallInfo) -> None:
        record = await self._find(call)
        if record is None:
            logger.warning("call_ended for unknown provider ID %s", call.call_id)
            return

        self._poller.stop_polling(call.call_id)
        if is_terminal(record.status):
            logger.info(
                "call_ended for call %s ignored; already %s",
                record.call_id, record.status.value,
            )
            return

        await self._complete(record, call)

    async def _call_analyzed(self, call: WebhookCallInfo) -> None:
        record = await self._find(call)
        if record is None:
            logger.warning("Dropping call_analyzed for unknown provider ID %s", call.call_id)
            return

        if record.status == CallStatus.SCHEDULED:
            logger.warning(
                "Dropping call_analyzed for call %s; it was never placed", record.call_id,
            )
            return
        if record.status == CallStatus.IN_PROGRESS:
            # Analysis only exists for finished calls, so call_ended was lost
            logger.warning(
                "call_analyzed for call %s arrived before call_ended; completing it",
                record.call_id,
            )
            self._poller.stop_polling(call.call_id)
            await self._complete(record, call)

        summary = (call.call_analysis or {}).get("call_summary")
        await self._lifecycle.annotate(
            record.call_id,
            call_analyzed=True,
            summary=summary,
            provider_payload=call.model_dump_json(),
        )
        logger.info("Updated call %s (provider: %s) with analysis data", record.call_id, call.call_id)

    async def _complete(self, record: CallRecord, call: WebhookCallInfo) -> None:
        await self._lifecycle.apply_transition(
            record.call_id,
            CallStatus.COMPLETED,
            provider_id=call.call_id,
            completed_at=_from_epoch_ms(call.end_timestamp),
            dial_successful=True,
            provider_payload=call.model_dump_json(),
        )
        logger.info("Updated call %s (provider: %s) to COMPLETED", record.call_id, call.call_id)
