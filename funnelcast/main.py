"""
FunnelCast — FastAPI Application.

Thin HTTP adapter over the forecasting engine for the presentation layer.
Run: uvicorn funnelcast.main:app --host 0.0.0.0 --port 8010 --reload

  - GET  /health                              ← liveness
  - POST /api/v1/forecast/monte-carlo         ← simulation result
  - POST /api/v1/forecast/monte-carlo/stream  ← SSE progress + result
  - POST /api/v1/forecast/steady-state        ← equilibrium projection
  - POST /api/v1/forecast/pipeline            ← current caseload value
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from funnelcast.api.routers.forecast import router as forecast_router
from funnelcast.config import settings
from funnelcast.logging_config import configure_logging
from funnelcast.middleware.error_handler import register_exception_handlers
from funnelcast.middleware.forecast_context import ForecastContextMiddleware

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    logger.info(
        "funnelcast_starting",
        version=settings.app_version,
        environment=settings.environment,
        default_trials=settings.default_trial_count,
    )
    yield
    logger.info("funnelcast_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description=(
            "# FunnelCast — Case-Funnel Revenue Forecasting\n\n"
            "- **Monte Carlo**: per-case simulation → P10 / P50 / P90, histogram, cash timeline\n"
            "- **Steady state**: constant intake → equilibrium revenue and open caseload\n"
            "- **Pipeline**: expected value of the current caseload, appeals included\n"
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness probe"},
            {"name": "forecast", "description": "Monte Carlo, steady-state and pipeline forecasts"},
        ],
    )

    register_exception_handlers(app)

    # ── Middleware (last added = outermost) ───────────────────────────
    app.add_middleware(ForecastContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(forecast_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe. The engine has no external dependencies to check."""
        return {
            "status": "ok",
            "version": settings.app_version,
            "service": "funnelcast",
        }

    return app


app = create_app()
