import logging
from datetime import date

import httpx

from app.exceptions.custom import ProviderRejectedError, ProviderUnavailableError
from app.schemas.calls import CallRecord
from app.schemas.retell import CreatePhoneCallResponse, GetCallResponse

logger = logging.getLogger(__name__)

CREATE_PHONE_CALL_PATH = "/v2/create-phone-call"
GET_CALL_PATH = "/v2/get-call"


class RetellService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        from_number: str,
        base_url: str = "https://api.retellai.com",
        timeout: float = 10.0,
    ):
        self._client = client
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._from_number = from_number
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def from_number(self) -> str:
        return self._from_number

    async def place_call(self, record: CallRecord) -> CreatePhoneCallResponse:
        dynamic_variables = {
            "task_prompt": record.prompt,
            "callee_name": record.callee_name,
            "subject": record.subject,
            "time_info": f"The current date is: {date.today().isoformat()}",
        }
        payload = {
            "from_number": self._from_number,
            "to_number": record.phone_number,
            "retell_llm_dynamic_variables": dynamic_variables,
            # Echoed back in webhooks so events can be matched before the
            # provider id is stored
            "metadata": {"callId": record.call_id},
        }

        logger.info("Placing call %s to %s", record.call_id, record.phone_number)
        data = await self._request("POST", CREATE_PHONE_CALL_PATH, json=payload)
        response = CreatePhoneCallResponse(**data)
        logger.info(
            "Call %s accepted by Retell: provider_id=%s",
            record.call_id, response.call_id,
        )
        return response

    async def fetch_transcript(self, provider_id: str) -> str | None:
        data = await self._request("GET", f"{GET_CALL_PATH}/{provider_id}")
        return GetCallResponse(**data).transcript

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        url = f"{self._base_url}{path}"
        try:
            resp = await self._client.request(
                method, url, json=json, headers=self._headers, timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(f"Request to {path} timed out") from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(f"Request to {path} failed: {exc}") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderUnavailableError(resp.text, status_code=resp.status_code)
        if resp.status_code >= 400:
            raise ProviderRejectedError(resp.text, status_code=resp.status_code)

        return resp.json()
