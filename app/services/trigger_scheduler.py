import logging
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from app.workers import TaskHandle, WorkerPool

logger = logging.getLogger(__name__)

RULE_PREFIX = "callcat-"
DEFAULT_GRANULARITY = 60.0  # seconds; triggers fire on whole minutes

FireCallback = Callable[[str], Awaitable[None]]


def rule_name_for(call_id: str) -> str:
    return f"{RULE_PREFIX}{call_id}"


def effective_fire_time(fire_at: datetime, granularity: float = DEFAULT_GRANULARITY) -> datetime:
    """Round ``fire_at`` up to the scheduler's granularity so it never fires early."""
    if granularity <= 0:
        return fire_at
    ts = math.ceil(fire_at.timestamp() / granularity) * granularity
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class TriggerScheduler:
    """One-shot triggers keyed by call id, fired inside the worker pool.

    The trigger payload is only the call id; whatever fires is expected to
    re-read the call. A rule is dropped once its callback returns, whatever
    the callback did; disarming an already fired rule is a no-op.
    """

    def __init__(self, pool: WorkerPool, granularity: float = DEFAULT_GRANULARITY) -> None:
        self._pool = pool
        self._granularity = granularity
        self._rules: dict[str, TaskHandle] = {}
        self._callback: FireCallback | None = None

    def register(self, callback: FireCallback) -> None:
        self._callback = callback

    def is_armed(self, call_id: str) -> bool:
        return rule_name_for(call_id) in self._rules

    @property
    def armed_count(self) -> int:
        return len(self._rules)

    async def arm(self, call_id: str, fire_at: datetime) -> str:
        rule = rule_name_for(call_id)
        fire_time = effective_fire_time(fire_at, self._granularity)
        delay = max(0.0, (fire_time - datetime.now(timezone.utc)).total_seconds())

        handle = self._pool.schedule_once(
            lambda: self._fire(call_id, rule), delay, name=rule,
        )
        previous = self._rules.pop(rule, None)
        self._rules[rule] = handle
        if previous is not None:
            previous.cancel()

        logger.info("Scheduled call %s for %s (rule=%s)", call_id, fire_time.isoformat(), rule)
        return rule

    async def disarm(self, rule: str) -> bool:
        handle = self._rules.pop(rule, None)
        if handle is None:
            return False
        handle.cancel()
        logger.info("Disarmed trigger %s", rule)
        return True

    async def disarm_all(self) -> int:
        rules = list(self._rules)
        for rule in rules:
            await self.disarm(rule)
        return len(rules)

    async def _fire(self, call_id: str, rule: str) -> None:
        handle = self._rules.get(rule)
        try:
            if self._callback is None:
                logger.error("Trigger fired for call %s but no callback is registered", call_id)
                return
            logger.info("Processing scheduled call: %s", call_id)
            await self._callback(call_id)
        finally:
            # One-shot: expire unless the rule was re-armed meanwhile
            if handle is not None and self._rules.get(rule) is handle:
                del self._rules[rule]
