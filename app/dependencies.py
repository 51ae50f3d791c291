from typing import Annotated

from fastapi import Depends, Request

from app.services.dispatcher import TriggerDispatcher
from app.services.lifecycle import CallLifecycleService
from app.services.webhooks import WebhookIngestor
from app.stores import TranscriptStore
from app.workers import WorkerPool


def get_lifecycle_service(request: Request) -> CallLifecycleService:
    return request.app.state.lifecycle_service


def get_dispatcher(request: Request) -> TriggerDispatcher:
    return request.app.state.dispatcher


def get_webhook_ingestor(request: Request) -> WebhookIngestor:
    return request.app.state.webhook_ingestor


def get_transcript_store(request: Request) -> TranscriptStore:
    return request.app.state.transcript_store


def get_worker_pool(request: Request) -> WorkerPool:
    return request.app.state.worker_pool


LifecycleDep = Annotated[CallLifecycleService, Depends(get_lifecycle_service)]
DispatcherDep = Annotated[TriggerDispatcher, Depends(get_dispatcher)]
WebhookDep = Annotated[WebhookIngestor, Depends(get_webhook_ingestor)]
TranscriptStoreDep = Annotated[TranscriptStore, Depends(get_transcript_store)]
WorkerPoolDep = Annotated[WorkerPool, Depends(get_worker_pool)]
