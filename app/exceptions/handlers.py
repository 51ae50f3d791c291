import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from .custom import (
    CallNotFoundError,
    InvalidScheduleError,
    InvalidTransitionError,
    ProviderError,
)

logger = logging.getLogger(__name__)


async def call_not_found_handler(_request: Request, exc: CallNotFoundError) -> JSONResponse:
    logger.info("Call not found: %s", exc.message)
    return JSONResponse(status_code=404, content={"detail": exc.message})


async def invalid_transition_handler(_request: Request, exc: InvalidTransitionError) -> JSONResponse:
    logger.warning(
        "Rejected transition: %s (current=%s, target=%s)",
        exc.message, exc.current, exc.target,
    )
    return JSONResponse(status_code=409, content={"detail": exc.message})


async def invalid_schedule_handler(_request: Request, exc: InvalidScheduleError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.message})


async def provider_error_handler(_request: Request, exc: ProviderError) -> JSONResponse:
    logger.error("Retell error: %s (status=%s)", exc.message, exc.status_code)
    return JSONResponse(
        status_code=502,
        content={"detail": f"Retell error: {exc.message}"},
    )
