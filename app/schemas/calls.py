from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field, computed_field, field_validator

from app.mappers.phone import is_valid_e164, normalize_phone_number


class CallStatus(StrEnum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


class CallRecord(BaseModel):
    owner_id: str
    call_id: str
    callee_name: str
    phone_number: str
    subject: str
    prompt: str
    ai_language: str = "en"
    voice_id: str | None = None
    scheduled_for: datetime
    status: CallStatus = CallStatus.SCHEDULED
    provider_id: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    dial_successful: bool | None = None
    call_analyzed: bool = False
    summary: str | None = None
    provider_payload: str | None = None  # raw provider JSON, kept for audit

    @computed_field
    @property
    def sort_key(self) -> str:
        return f"{self.scheduled_for.isoformat()}#{self.call_id}"

    @computed_field
    @property
    def owner_status_key(self) -> str:
        return f"{self.owner_id}#{self.status.value}"


class TranscriptRecord(BaseModel):
    provider_id: str
    text: str
    expires_at: datetime


def _validate_phone(value: str) -> str:
    phone = normalize_phone_number(value)
    if not is_valid_e164(phone):
        raise ValueError("Phone number must be in E.164 format (+1XXXXXXXXXX)")
    return phone


class CreateCallRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    callee_name: str = Field(min_length=1, max_length=100)
    phone_number: str
    subject: str = Field(min_length=1, max_length=200)
    prompt: str = Field(min_length=1, max_length=5000)
    scheduled_for: datetime
    ai_language: str | None = Field(default=None, max_length=10)
    voice_id: str | None = Field(default=None, max_length=100)

    @field_validator("phone_number")
    @classmethod
    def _phone(cls, value: str) -> str:
        return _validate_phone(value)

    @field_validator("scheduled_for")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are treated as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UpdateCallRequest(BaseModel):
    callee_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone_number: str | None = None
    subject: str | None = Field(default=None, min_length=1, max_length=200)
    prompt: str | None = Field(default=None, min_length=1, max_length=5000)
    ai_language: str | None = Field(default=None, max_length=10)
    voice_id: str | None = Field(default=None, max_length=100)

    @field_validator("phone_number")
    @classmethod
    def _phone(cls, value: str | None) -> str | None:
        return _validate_phone(value) if value is not None else None


class CallResponse(BaseModel):
    call_id: str
    owner_id: str
    callee_name: str
    phone_number: str
    subject: str
    prompt: str
    ai_language: str
    voice_id: str | None = None
    status: CallStatus
    scheduled_for: datetime
    provider_id: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    dial_successful: bool | None = None
    call_analyzed: bool = False
    summary: str | None = None

    @classmethod
    def from_record(cls, record: CallRecord) -> CallResponse:
        return cls(**record.model_dump(exclude={"sort_key", "owner_status_key", "provider_payload"}))


class CallListResponse(BaseModel):
    calls: list[CallResponse]


class TriggerSubmittedResponse(BaseModel):
    call_id: str
    status: str
    message: str


class TranscriptResponse(BaseModel):
    call_id: str
    transcript: str
