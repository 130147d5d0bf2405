"""
Error Handling.

FunnelCastError → its own status code and a structured body (code, message,
details.issues). Configuration errors are 422, run-lifecycle errors 409.

A superseded run is routine for a presentation layer that re-runs on every
keystroke: it is logged at info level and the body names the session whose
newer request won. Anything else is left to ForecastContextMiddleware.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from funnelcast.exceptions import FunnelCastError, SimulationCancelledError

logger = structlog.get_logger(__name__)


def _error_response(request: Request, exc: FunnelCastError, **extra) -> JSONResponse:
    body = exc.to_dict()
    body["request_id"] = getattr(request.state, "request_id", None)
    body.update(extra)
    return JSONResponse(status_code=exc.status_code, content={"error": body})


async def funnelcast_error_handler(request: Request, exc: FunnelCastError) -> JSONResponse:
    logger.warning(
        "request_rejected",
        error_code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_response(request, exc)


async def simulation_cancelled_handler(request: Request, exc: SimulationCancelledError) -> JSONResponse:
    session_id = structlog.contextvars.get_contextvars().get("session_id")
    logger.info(
        "forecast_superseded_response",
        completed=exc.details.get("completed"),
        total=exc.details.get("total"),
    )
    return _error_response(request, exc, session_id=session_id, superseded=session_id is not None)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SimulationCancelledError, simulation_cancelled_handler)
    app.add_exception_handler(FunnelCastError, funnelcast_error_handler)
