import logging
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from app.exceptions.custom import InvalidTransitionError
from app.schemas.calls import CallStatus
from app.services.lifecycle import CallLifecycleService
from app.stores import CallStore
from app.workers import TaskHandle, WorkerPool

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = timedelta(minutes=15)
DEFAULT_INTERVAL = 300.0  # seconds


class SweepResult(BaseModel):
    scanned: int
    swept: int
    errors: int
    swept_call_ids: list[str] = []


class FailureSweep:
    """Reclassifies calls stuck in SCHEDULED long after they were due.

    A call still SCHEDULED more than ``timeout`` after ``scheduled_for``
    means its trigger never fired or Retell never accepted it. It is marked
    COMPLETED with ``dial_successful=False``.
    """

    def __init__(
        self,
        lifecycle: CallLifecycleService,
        store: CallStore,
        timeout: timedelta = DEFAULT_TIMEOUT,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        self._lifecycle = lifecycle
        self._store = store
        self._timeout = timeout
        self._interval = interval

    def start(self, pool: WorkerPool) -> TaskHandle:
        logger.info(
            "Failure sweep every %.0fs (timeout=%s)", self._interval, self._timeout,
        )
        return pool.schedule_at_fixed_rate(self._run_scheduled, self._interval, name="failure-sweep")

    async def _run_scheduled(self) -> None:
        try:
            await self.run_once()
        except Exception:
            logger.exception("Error during failure detection")

    async def run_once(self, now: datetime | None = None) -> SweepResult:
        now = now or datetime.now(timezone.utc)
        scheduled = await self._store.list_by_status(CallStatus.SCHEDULED)
        logger.debug("Starting failure detection at %s (%d scheduled)", now.isoformat(), len(scheduled))

        swept: list[str] = []
        errors = 0
        for record in scheduled:
            if record.scheduled_for is None:
                logger.error("Call %s has no scheduled_for; skipping", record.call_id)
                continue

            overdue = now - record.scheduled_for
            if overdue <= self._timeout:
                continue

            try:
                await self._lifecycle.apply_transition(
                    record.call_id,
                    CallStatus.COMPLETED,
                    expected=CallStatus.SCHEDULED,
                    dial_successful=False,
                    completed_at=now,
                )
            except InvalidTransitionError:
                logger.info("Call %s left SCHEDULED before it could be swept", record.call_id)
                continue
            except Exception:
                errors += 1
                logger.exception("Failed to mark call %s as failed", record.call_id)
                continue

            swept.append(record.call_id)
            logger.warning(
                "Marked call %s as failed (COMPLETED, dial_successful=False): "
                "overdue by %d minutes (scheduled %s)",
                record.call_id,
                overdue // timedelta(minutes=1),
                record.scheduled_for.isoformat(),
            )

        if swept:
            logger.info("Marked %d overdue calls as failed", len(swept))
        else:
            logger.debug("No overdue calls found")

        return SweepResult(
            scanned=len(scheduled),
            swept=len(swept),
            errors=errors,
            swept_call_ids=swept,
        )
