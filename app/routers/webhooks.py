import logging

from fastapi import APIRouter, Request, Response

from app.dependencies import WebhookDep

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/retell", status_code=204)
async def retell_webhook(request: Request, ingestor: WebhookDep) -> Response:
    # Always 204: anything else makes Retell redeliver the event
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Ignoring Retell webhook with a non-JSON body")
        payload = None

    await ingestor.ingest(payload)
    return Response(status_code=204)
