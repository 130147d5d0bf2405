"""
Forecast API Endpoints.

POST /api/v1/forecast/monte-carlo          — run a simulation, return the full result
POST /api/v1/forecast/monte-carlo/stream   — SSE: progress events, then the result
POST /api/v1/forecast/steady-state         — equilibrium caseload and revenue
POST /api/v1/forecast/pipeline             — expected value of today's caseload
"""

import asyncio
import json
from typing import AsyncGenerator, Optional

import structlog
from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from funnelcast.config import settings
from funnelcast.engine.funnel import Case, VarianceConfig
from funnelcast.engine.monte_carlo import MonteCarloEngine, SimulationRun
from funnelcast.engine.pipeline import PipelineValuator
from funnelcast.engine.runner import SessionRegistry
from funnelcast.engine.steady_state import (
    StageFlowAssumption,
    SteadyStateInputs,
    SteadyStateSolver,
)
from funnelcast.exceptions import ConfigurationError
from funnelcast.presets import (
    DEFAULT_ATTRITION_RATE,
    DEFAULT_CONTINUATION_RATES,
    DEFAULT_COURT_OPPORTUNITY,
    funnel_parameters_from_kpis,
    steady_state_inputs_from_kpis,
)
from funnelcast.schemas.forecast import (
    MonteCarloRequest,
    PipelineRequest,
    SteadyStateRequest,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix=f"{settings.api_prefix}/forecast", tags=["forecast"])

_engine = MonteCarloEngine(
    chunk_size=settings.chunk_size,
    histogram_bins=settings.histogram_bins,
    timeline_months=settings.timeline_months,
)
_solver = SteadyStateSolver()
_valuator = PipelineValuator()

_sessions = SessionRegistry(_engine, max_sessions=settings.max_sessions)


def _start_run(body: MonteCarloRequest) -> SimulationRun:
    cases = [
        Case.from_raw(c.label, c.status, c.days_in_stage, index=i)
        for i, c in enumerate(body.cases)
    ]
    params = funnel_parameters_from_kpis(body.kpis)
    variance = VarianceConfig(
        fee_variance=body.fee_variance,
        win_rate_variance=body.win_rate_variance,
    )
    if body.session_id is not None:
        # Tags engine lines (superseded, cancelled) with the session
        structlog.contextvars.bind_contextvars(session_id=body.session_id)
    logger.info("forecast_requested", cases=len(cases), trials=body.trial_count)
    if body.session_id is None:
        return _engine.start(cases, params, variance, body.trial_count, seed=body.seed)
    return _sessions.submit(body.session_id, cases, params, variance, body.trial_count, seed=body.seed)


def _release(session_id: Optional[str], run: SimulationRun) -> None:
    if session_id is not None:
        _sessions.release(session_id, run)


def _abandon(session_id: Optional[str], run: SimulationRun) -> None:
    """Cancel a run nobody will read any more and free its session."""
    run.cancel()
    _release(session_id, run)


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


@router.post("/monte-carlo")
async def run_monte_carlo(body: MonteCarloRequest):
    """
    Simulate every case `trial_count` times.

    Yields to the event loop between chunks; a newer request with the same
    session_id cancels this one (409).
    """
    run = _start_run(body)
    try:
        result = await run.run_async()
    finally:
        _release(body.session_id, run)
    return result.to_dict(include_samples=body.include_samples)


@router.post("/monte-carlo/stream")
async def stream_monte_carlo(body: MonteCarloRequest):
    """
    SSE stream. Events (JSON in `data:`):
    - {"type": "progress", "completed", "total", "fraction"} after each chunk
    - {"type": "result", "result": {...}} once every trial has run
    - {"type": "cancelled", ...} if a newer request superseded this run

    A client disconnect cancels the run.
    """
    run = _start_run(body)

    async def events() -> AsyncGenerator[str, None]:
        try:
            for progress in run.steps():
                yield _sse({"type": "progress", **progress.to_dict()})
                await asyncio.sleep(0)
            if run.is_cancelled:
                yield _sse({"type": "cancelled", **run.progress.to_dict()})
            else:
                yield _sse({
                    "type": "result",
                    "result": run.result.to_dict(include_samples=body.include_samples),
                })
        finally:
            _abandon(body.session_id, run)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        # Runs once the response ends, even if the client left before the first event
        background=BackgroundTask(_abandon, body.session_id, run),
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/steady-state")
async def solve_steady_state(body: SteadyStateRequest):
    """Deterministic equilibrium for a constant monthly intake."""
    if body.stages is not None:
        inputs = SteadyStateInputs(
            monthly_intake=body.monthly_intake,
            stages=[
                StageFlowAssumption(
                    name=s.name,
                    resolution_fraction=s.resolution_fraction,
                    win_rate=s.win_rate,
                    fee=s.fee,
                    cycle_time_months=s.cycle_time_months,
                )
                for s in body.stages
            ],
            advance_fraction=body.advance_fraction,
            bonus_fee=body.bonus_fee,
        )
    elif body.resolution_fractions is not None:
        inputs = steady_state_inputs_from_kpis(
            body.kpis,
            monthly_intake=body.monthly_intake,
            resolution_fractions=body.resolution_fractions,
            advance_fraction=body.advance_fraction,
        )
    else:
        raise ConfigurationError("Provide either 'stages' or 'resolution_fractions'")
    return _solver.solve(inputs).to_dict()


@router.post("/pipeline")
async def value_pipeline(body: PipelineRequest):
    """Expected value of the current caseload, appeals included."""
    result = _valuator.value(
        counts=body.counts,
        params=funnel_parameters_from_kpis(body.kpis),
        continuation_rates=(
            body.continuation_rates
            if body.continuation_rates is not None
            else DEFAULT_CONTINUATION_RATES
        ),
        attrition_rate=(
            body.attrition_rate
            if body.attrition_rate is not None
            else DEFAULT_ATTRITION_RATE
        ),
        opportunity=DEFAULT_COURT_OPPORTUNITY,
    )
    return result.to_dict()
