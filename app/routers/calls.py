import logging

from fastapi import APIRouter, HTTPException, Query

from app.dependencies import (
    DispatcherDep,
    LifecycleDep,
    TranscriptStoreDep,
    WorkerPoolDep,
)
from app.exceptions.custom import InvalidTransitionError
from app.schemas.calls import (
    CallListResponse,
    CallResponse,
    CallStatus,
    CreateCallRequest,
    TranscriptResponse,
    TriggerSubmittedResponse,
    UpdateCallRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calls")


@router.post("", response_model=CallResponse, status_code=201)
async def create_call(request: CreateCallRequest, lifecycle: LifecycleDep) -> CallResponse:
    record = await lifecycle.create(request)
    return CallResponse.from_record(record)


@router.get("", response_model=CallListResponse)
async def list_calls(
    lifecycle: LifecycleDep,
    owner_id: str,
    status: CallStatus,
    limit: int = Query(default=20, ge=1, le=100),
) -> CallListResponse:
    records = await lifecycle.list_calls(owner_id, status, limit)
    return CallListResponse(calls=[CallResponse.from_record(r) for r in records])


@router.get("/{call_id}", response_model=CallResponse)
async def get_call(call_id: str, lifecycle: LifecycleDep) -> CallResponse:
    return CallResponse.from_record(await lifecycle.get(call_id))


@router.patch("/{call_id}", response_model=CallResponse)
async def update_call(
    call_id: str, request: UpdateCallRequest, lifecycle: LifecycleDep,
) -> CallResponse:
    return CallResponse.from_record(await lifecycle.update_details(call_id, request))


@router.delete("/{call_id}", response_model=CallResponse)
async def cancel_call(call_id: str, lifecycle: LifecycleDep) -> CallResponse:
    return CallResponse.from_record(await lifecycle.cancel(call_id))


@router.post("/{call_id}/trigger", response_model=TriggerSubmittedResponse, status_code=202)
async def trigger_call(
    call_id: str,
    lifecycle: LifecycleDep,
    dispatcher: DispatcherDep,
    pool: WorkerPoolDep,
) -> TriggerSubmittedResponse:
    record = await lifecycle.get(call_id)
    if record.status != CallStatus.SCHEDULED:
        raise InvalidTransitionError(
            f"Only scheduled calls can be triggered (call {call_id} is {record.status.value})",
            current=record.status.value,
            target=CallStatus.IN_PROGRESS.value,
        )

    # Placing the call talks to Retell, so it runs in the pool, not the request
    pool.submit(lambda: dispatcher.on_fire(call_id), name=f"trigger-{call_id}")
    logger.info("Manual trigger submitted for call %s", call_id)
    return TriggerSubmittedResponse(
        call_id=call_id,
        status="dispatching",
        message="Call dispatch submitted",
    )


@router.get("/{call_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(
    call_id: str, lifecycle: LifecycleDep, transcripts: TranscriptStoreDep,
) -> TranscriptResponse:
    record = await lifecycle.get(call_id)
    if record.provider_id is None:
        raise HTTPException(
            status_code=409,
            detail="Call has not started yet - no transcript available",
        )
    transcript = await transcripts.get(record.provider_id)
    return TranscriptResponse(
        call_id=call_id,
        transcript=transcript.text if transcript else "",
    )
