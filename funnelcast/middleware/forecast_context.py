"""
Forecast Context Middleware.

The single HTTP middleware of the service. For every request it:
- binds request_id and, under the forecast API, the forecast kind
  (monte_carlo / steady_state / pipeline) into structlog contextvars, so
  engine log lines name the request and forecast they belong to
- echoes X-Request-ID, X-Forecast-Kind and X-Response-Time
- turns anything the FunnelCastError handlers did not catch into a generic
  500 carrying an error_id (never a stack trace)

Streaming forecasts are still running when their headers go out, so they
log `forecast_stream_opened` rather than a completion line.
"""

import time
import traceback
import uuid
from typing import Optional

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from funnelcast.config import settings

logger = structlog.get_logger(__name__)

FORECAST_KINDS = {
    "monte-carlo": "monte_carlo",
    "steady-state": "steady_state",
    "pipeline": "pipeline",
}
STREAM_SUFFIX = "/stream"


def forecast_kind(path: str) -> Optional[str]:
    """`/api/v1/forecast/monte-carlo/stream` → "monte_carlo"; None outside the forecast API."""
    prefix = f"{settings.api_prefix}/forecast/"
    if not path.startswith(prefix):
        return None
    return FORECAST_KINDS.get(path[len(prefix):].split("/", 1)[0])


class ForecastContextMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        kind = forecast_kind(path)
        streaming = kind is not None and path.endswith(STREAM_SUFFIX)

        request.state.request_id = request_id
        request.state.forecast_kind = kind

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )
        if kind is not None:
            structlog.contextvars.bind_contextvars(forecast_kind=kind, streaming=streaming)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            response = self._internal_error(request_id, kind, exc)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        if kind is not None:
            response.headers["X-Forecast-Kind"] = kind

        if streaming and response.status_code == 200:
            logger.info("forecast_stream_opened", elapsed_ms=elapsed_ms)
        else:
            logger.info("request_completed", status=response.status_code, elapsed_ms=elapsed_ms)
        return response

    @staticmethod
    def _internal_error(request_id: str, kind: Optional[str], exc: Exception) -> JSONResponse:
        error_id = str(uuid.uuid4())
        logger.error(
            "unhandled_exception",
            error_id=error_id,
            error=str(exc),
            traceback=traceback.format_exc(),
        )
        body: dict = {
            "error": "An internal error occurred. Please try again later.",
            "error_id": error_id,
            "request_id": request_id,
            "forecast_kind": kind,
            "status": 500,
        }
        if settings.debug:
            body["debug_hint"] = type(exc).__name__
        return JSONResponse(status_code=500, content=body)
