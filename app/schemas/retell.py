from pydantic import BaseModel, ConfigDict


class CreatePhoneCallResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    call_id: str
    call_status: str | None = None  # registered | ongoing | ended | error
    from_number: str | None = None
    to_number: str | None = None


class GetCallResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    call_id: str = ""
    call_status: str | None = None
    transcript: str | None = None


class WebhookCallInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    call_id: str
    end_timestamp: int | None = None  # epoch milliseconds
    metadata: dict | None = None
    call_analysis: dict | None = None


class WebhookEvent(BaseModel):
    event: str  # call_started | call_ended | call_analyzed
    call: WebhookCallInfo
