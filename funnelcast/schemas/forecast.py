"""
Forecast API Schemas.

Request bodies only: responses are the engine results' `to_dict()` output.
Range checks on rates, fees and times are left to the engine so a rejected
request lists every problem at once.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from funnelcast.config import settings


class CaseIn(BaseModel):
    """One in-flight case as exported by the case-management system."""
    label: Optional[str] = None
    status: Optional[str] = Field(
        default=None,
        description="Free-text status; unrecognized text falls back to the hearing stage",
    )
    days_in_stage: Optional[float] = None


class MonteCarloRequest(BaseModel):
    cases: list[CaseIn] = Field(default_factory=list)
    kpis: dict[str, Any] = Field(default_factory=dict)
    fee_variance: float = settings.default_fee_variance
    win_rate_variance: float = settings.default_win_rate_variance
    trial_count: int = Field(
        default=settings.default_trial_count,
        ge=settings.min_trial_count,
        le=settings.max_trial_count,
    )
    seed: Optional[int] = None
    include_samples: bool = False
    session_id: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Runs sharing a session id supersede each other (latest wins)",
    )


class StageFlowIn(BaseModel):
    name: str
    resolution_fraction: float
    win_rate: float
    fee: float
    cycle_time_months: float


class SteadyStateRequest(BaseModel):
    """
    Either explicit `stages`, or `resolution_fractions` (stage key → fraction)
    combined with the firm's `kpis`.
    """
    monthly_intake: float
    stages: Optional[list[StageFlowIn]] = None
    resolution_fractions: Optional[dict[str, float]] = None
    kpis: dict[str, Any] = Field(default_factory=dict)
    advance_fraction: float = 1.0
    bonus_fee: float = 0.0   # Explicit stages only; KPI funnels use the KPI bonus


class PipelineRequest(BaseModel):
    counts: dict[str, float]
    kpis: dict[str, Any] = Field(default_factory=dict)
    continuation_rates: Optional[dict[str, float]] = None
    attrition_rate: Optional[float] = None
