import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta

import httpx
from fastapi import FastAPI

from app.config import Settings
from app.exceptions.custom import (
    CallNotFoundError,
    InvalidScheduleError,
    InvalidTransitionError,
    ProviderError,
)
from app.exceptions.handlers import (
    call_not_found_handler,
    invalid_schedule_handler,
    invalid_transition_handler,
    provider_error_handler,
)
from app.routers.calls import router as calls_router
from app.routers.webhooks import router as webhooks_router
from app.services.dispatcher import TriggerDispatcher
from app.services.failure_sweep import FailureSweep
from app.services.lifecycle import CallLifecycleService
from app.services.live_transcript import LiveTranscriptPoller
from app.services.retell import RetellService
from app.services.trigger_scheduler import TriggerScheduler
from app.services.webhooks import WebhookIngestor
from app.stores import CallStore, TranscriptStore
from app.workers import WorkerPool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
        pool = WorkerPool(capacity=settings.worker_pool_size)
        call_store = CallStore()
        transcript_store = TranscriptStore()
        triggers = TriggerScheduler(pool)

        retell = RetellService(
            client,
            settings.retell_api_key,
            settings.retell_from_number,
            base_url=settings.retell_base_url,
            timeout=settings.provider_timeout_seconds,
        )
        poller = LiveTranscriptPoller(
            pool,
            retell,
            transcript_store,
            interval=settings.poll_interval_seconds,
            ceiling=settings.poll_ceiling_minutes * 60,
            ttl=timedelta(days=settings.transcript_ttl_days),
            enabled=settings.live_polling_enabled,
        )
        lifecycle = CallLifecycleService(
            call_store, triggers, disarm_attempts=settings.trigger_disarm_attempts,
        )
        dispatcher = TriggerDispatcher(lifecycle, call_store, triggers, retell, poller)
        sweep = FailureSweep(
            lifecycle,
            call_store,
            timeout=timedelta(minutes=settings.failure_timeout_minutes),
            interval=settings.failure_check_interval_seconds,
        )

        app.state.worker_pool = pool
        app.state.call_store = call_store
        app.state.transcript_store = transcript_store
        app.state.trigger_scheduler = triggers
        app.state.live_transcript_poller = poller
        app.state.lifecycle_service = lifecycle
        app.state.dispatcher = dispatcher
        app.state.webhook_ingestor = WebhookIngestor(lifecycle, call_store, poller)
        app.state.failure_sweep = sweep

        await dispatcher.restore()
        sweep.start(pool)
        logger.info("Orchestrator started (worker pool capacity=%d)", pool.capacity)

        try:
            yield
        finally:
            stopped = await poller.stop_all()
            disarmed = await triggers.disarm_all()
            logger.info("Shutting down: stopped %d polls, disarmed %d triggers", stopped, disarmed)
            await pool.shutdown()


app = FastAPI(title="CallCat Call Orchestrator", lifespan=lifespan)

app.add_exception_handler(CallNotFoundError, call_not_found_handler)
app.add_exception_handler(InvalidTransitionError, invalid_transition_handler)
app.add_exception_handler(InvalidScheduleError, invalid_schedule_handler)
app.add_exception_handler(ProviderError, provider_error_handler)

app.include_router(calls_router)
app.include_router(webhooks_router)
