"""
KPI Presets — parameter-store adapter.

Firms keep a flat KPI record (`hearing_fee`, `hearing_win_rate`,
`hearing_adj_months`, `hearing_payment_lag_days`, ..., `bonus_fee`, which
older records store as `eaja_fee`). This module turns such a record into
fresh engine inputs. Published defaults fill any blank, missing or
unparseable value.

Defaults live here, outside the engine: the engine only ever sees the
explicit parameters a caller hands it.
"""

import math
from types import MappingProxyType
from typing import Mapping, Optional

import structlog

from funnelcast.engine.funnel import (
    STAGE_ORDER,
    TERMINAL_STAGE,
    FunnelParameters,
    Stage,
    StageParameters,
    coerce_stage,
)
from funnelcast.engine.pipeline import CourtOpportunityAssumptions
from funnelcast.engine.steady_state import StageFlowAssumption, SteadyStateInputs
from funnelcast.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

# ── Published defaults ────────────────────────────────────────────────────

DEFAULT_PAYMENT_LAG_DAYS: float = 60.0
DEFAULT_BONUS_FEE: float = 6500.0    # EAJA award on federal-court wins

DEFAULT_KPIS: Mapping[str, float] = MappingProxyType({
    "application_fee": 3500.0,
    "application_win_rate": 0.36,
    "application_adj_months": 8.0,
    "reconsideration_fee": 3000.0,
    "reconsideration_win_rate": 0.14,
    "reconsideration_adj_months": 7.0,
    "hearing_fee": 6500.0,
    "hearing_win_rate": 0.54,
    "hearing_adj_months": 11.0,
    "appeals_council_fee": 5000.0,
    "appeals_council_win_rate": 0.13,
    "appeals_council_adj_months": 9.0,
    "federal_court_fee": 7000.0,
    "federal_court_win_rate": 0.64,
    "federal_court_adj_months": 15.0,
    "bonus_fee": DEFAULT_BONUS_FEE,
    **{f"{s.value}_payment_lag_days": DEFAULT_PAYMENT_LAG_DAYS for s in STAGE_ORDER},
})

# Share of DENIED cases a typical firm appeals to the next level
DEFAULT_CONTINUATION_RATES: Mapping[Stage, float] = MappingProxyType({
    Stage.APPLICATION: 0.85,
    Stage.RECONSIDERATION: 0.90,
    Stage.HEARING: 0.35,
    Stage.APPEALS_COUNCIL: 0.0,
})
DEFAULT_ATTRITION_RATE: float = 0.10

# ── Federal-court opportunity ─────────────────────────────────────────────
DEFAULT_REMAND_RATE: float = 0.50          # Court filings remanded to the agency
DEFAULT_REMAND_WIN_RATE: float = 0.50      # Remands won on rehearing
DEFAULT_COURT_WIN_FEE: float = 10000.0     # Past-due-benefit fee on a court-driven win
TARGET_DENIAL_TO_COURT_RATE: float = 0.50
DEFAULT_REFERRAL_SHARE: float = 0.25

DEFAULT_COURT_OPPORTUNITY = CourtOpportunityAssumptions(
    remand_rate=DEFAULT_REMAND_RATE,
    remand_win_rate=DEFAULT_REMAND_WIN_RATE,
    court_win_fee=DEFAULT_COURT_WIN_FEE,
    target_denial_to_court_rate=TARGET_DENIAL_TO_COURT_RATE,
    referral_share=DEFAULT_REFERRAL_SHARE,
)


# Stored KPI records name the bonus after the EAJA award
KPI_ALIASES: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "bonus_fee": ("eaja_fee",),
})


def _is_blank(raw) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def _kpi(kpis: Mapping, key: str) -> float:
    """KPI value as float; blank / missing / unparseable / non-finite → default."""
    raw = next(
        (kpis.get(name) for name in (key, *KPI_ALIASES.get(key, ())) if not _is_blank(kpis.get(name))),
        None,
    )
    if raw is None or isinstance(raw, bool):
        return DEFAULT_KPIS[key]
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.debug("kpi_unparseable", key=key, value=raw)
        return DEFAULT_KPIS[key]
    if not math.isfinite(value):
        return DEFAULT_KPIS[key]
    return value


def stage_parameters_from_kpis(kpis: Mapping, stage: Stage) -> StageParameters:
    prefix = stage.value
    return StageParameters.normalized(
        fee=_kpi(kpis, f"{prefix}_fee"),
        win_rate=_kpi(kpis, f"{prefix}_win_rate"),
        cycle_time_months=_kpi(kpis, f"{prefix}_adj_months"),
        payment_lag_days=_kpi(kpis, f"{prefix}_payment_lag_days"),
    )


def funnel_parameters_from_kpis(kpis: Optional[Mapping] = None) -> FunnelParameters:
    """A fresh FunnelParameters for every stage, built from a KPI record."""
    kpis = kpis or {}
    return FunnelParameters(
        stages={stage: stage_parameters_from_kpis(kpis, stage) for stage in STAGE_ORDER},
        bonus_fee=max(0.0, _kpi(kpis, "bonus_fee")),
    )


def steady_state_inputs_from_kpis(
    kpis: Optional[Mapping],
    monthly_intake: float,
    resolution_fractions: Mapping,
    advance_fraction: float = 1.0,
) -> SteadyStateInputs:
    """
    Solver inputs from a KPI record.

    The funnel is made of the stages listed in `resolution_fractions`, in
    canonical order (a firm that never files at the Appeals Council simply
    leaves it out). The bonus fee is carried only when the funnel ends at
    the terminal stage.
    """
    params = funnel_parameters_from_kpis(kpis)
    issues: list[str] = []
    fractions: dict[Stage, float] = {}
    for key, fraction in resolution_fractions.items():
        try:
            fractions[coerce_stage(key)] = fraction
        except ConfigurationError as exc:
            issues.extend(exc.issues)
    if issues:
        raise ConfigurationError.from_issues("resolution fractions", issues)

    stages = [
        StageFlowAssumption(
            name=stage.value,
            resolution_fraction=fractions[stage],
            win_rate=params.stages[stage].win_rate,
            fee=params.stages[stage].fee,
            cycle_time_months=params.stages[stage].cycle_time_months,
        )
        for stage in STAGE_ORDER
        if stage in fractions
    ]
    ends_at_terminal = bool(stages) and stages[-1].name == TERMINAL_STAGE.value
    return SteadyStateInputs(
        monthly_intake=monthly_intake,
        stages=stages,
        advance_fraction=advance_fraction,
        bonus_fee=params.bonus_fee if ends_at_terminal else 0.0,
    )
