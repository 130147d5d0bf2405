"""
Pipeline Valuation.

Expected value of the caseload a firm holds TODAY, counted per stage.

For each stage:
  adjusted      = cases × (1 - attrition)
  direct wins   = adjusted × win_rate
  direct value  = direct wins × fee   (+ bonus fee per win at the terminal stage)
  appeal value  = value of (adjusted × (1 - win_rate) × continuation_rate)
                  cases re-entering at the next stage, recursively

Attrition applies again at every stage a case passes through (lost
contact, withdrawal, return to work...). Deterministic, no clamping.

On top of the stage values:
  - collection projection: the share of each stage's value in hand after
    1, 3 and 5 years, from the half-cycle an open case still has to run
  - avg_months_to_revenue: value-weighted mean of those half-cycles
  - court opportunity (optional): revenue missed because too few hearing
    denials reach federal court, kept in-house or referred out
"""

import math
from dataclasses import dataclass
from typing import Mapping, Optional

import structlog

from funnelcast.engine.funnel import (
    STAGE_ORDER,
    TERMINAL_STAGE,
    FunnelParameters,
    Stage,
    coerce_stage,
)
from funnelcast.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# Configuration (no magic numbers)
# ═══════════════════════════════════════════════════════════════════════════

# An open case is on average half-way through its stage
REMAINING_CYCLE_SHARE: float = 0.5

# ── Collection schedule (share collected within 1 / 3 / 5 years) ──
NEAR_TERM_MONTHS: float = 12.0
MID_TERM_MONTHS: float = 24.0
LONG_TERM_MONTHS: float = 36.0

NEAR_TERM_SHARES: tuple[float, float, float] = (0.85, 1.0, 1.0)
MID_TERM_YEAR_ONE_DECAY: float = 0.3    # Per remaining month, against a 12-month year
MID_TERM_YEAR_ONE_CAP: float = 0.5
MID_TERM_LATER_SHARES: tuple[float, float] = (0.95, 1.0)
LONG_TERM_SHARES: tuple[float, float, float] = (0.15, 0.85, 1.0)
TAIL_SHARES: tuple[float, float, float] = (0.05, 0.60, 0.95)


def collected_shares(remaining_months: float) -> tuple[float, float, float]:
    """Share of a stage's value collected within 1, 3 and 5 years."""
    if remaining_months <= NEAR_TERM_MONTHS:
        return NEAR_TERM_SHARES
    if remaining_months <= MID_TERM_MONTHS:
        year_one = max(
            0.0,
            (NEAR_TERM_MONTHS - remaining_months * MID_TERM_YEAR_ONE_DECAY) / NEAR_TERM_MONTHS,
        ) * MID_TERM_YEAR_ONE_CAP
        return (year_one, *MID_TERM_LATER_SHARES)
    if remaining_months <= LONG_TERM_MONTHS:
        return LONG_TERM_SHARES
    return TAIL_SHARES


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass(frozen=True)
class CourtOpportunityAssumptions:
    """
    How federal-court filings pay out, for the opportunity analysis.

    A filed case is either won outright (terminal win rate) or remanded.
    A remand earns the bonus fee, and a remand later won on rehearing earns
    `court_win_fee` as well, the same fee a direct court win earns.
    """
    remand_rate: float
    remand_win_rate: float
    court_win_fee: float
    target_denial_to_court_rate: float   # Hearing denials that should reach court
    referral_share: float                # Firm's share of fees on a referred case

    def __post_init__(self):
        issues: list[str] = []
        for name in ("remand_rate", "remand_win_rate", "target_denial_to_court_rate", "referral_share"):
            value = getattr(self, name)
            if not _is_number(value) or not 0.0 <= value <= 1.0:
                issues.append(f"{name} must be within [0, 1] (got {value!r})")
        if not _is_number(self.court_win_fee) or self.court_win_fee < 0:
            issues.append(f"court_win_fee must be a finite number >= 0 (got {self.court_win_fee!r})")
        if issues:
            raise ConfigurationError.from_issues("court opportunity assumptions", issues)


@dataclass(frozen=True)
class CourtOpportunity:
    """Hearing denials that could reach federal court but currently do not."""
    hearing_denials: float
    current_rate: float          # Share of hearing denials reaching court today
    target_rate: float
    current_cases: float
    target_cases: float
    additional_cases: float
    additional_bonus: float      # Bonus fees on the extra remands
    additional_remand_fees: float
    additional_direct_value: float
    total_additional_revenue: float
    referral_share: float
    total_referral_revenue: float
    is_opportunity: bool

    def to_dict(self) -> dict:
        return {
            "hearing_denials": self.hearing_denials,
            "current_rate": self.current_rate,
            "target_rate": self.target_rate,
            "current_cases": self.current_cases,
            "target_cases": self.target_cases,
            "additional_cases": self.additional_cases,
            "in_house": {
                "bonus": self.additional_bonus,
                "remand_fees": self.additional_remand_fees,
                "direct_value": self.additional_direct_value,
                "total": self.total_additional_revenue,
            },
            "referral": {
                "share": self.referral_share,
                "bonus": self.additional_bonus * self.referral_share,
                "remand_fees": self.additional_remand_fees * self.referral_share,
                "direct_value": self.additional_direct_value * self.referral_share,
                "total": self.total_referral_revenue,
            },
            "is_opportunity": self.is_opportunity,
        }


@dataclass(frozen=True)
class RevenueProjection:
    """Pipeline value expected to be collected within each horizon."""
    year_1: float
    year_3: float
    year_5: float

    def to_dict(self) -> dict:
        return {"year_1": self.year_1, "year_3": self.year_3, "year_5": self.year_5}


@dataclass(frozen=True)
class StageValuation:
    """Expected value of the cases currently sitting at one stage."""
    stage: str
    stage_label: str
    case_count: float
    adjusted_cases: float         # After attrition
    expected_wins: float          # Direct wins at this stage
    direct_revenue: float
    appeal_value: float           # Value of denied cases carried to later stages
    total_value: float
    months_to_resolution: float   # Cumulative cycle time from intake through this stage
    remaining_months: float       # Half the stage's own cycle time


@dataclass(frozen=True)
class PipelineValuation:
    stages: tuple[StageValuation, ...]
    total_cases: float
    total_expected_wins: float
    total_direct_revenue: float
    total_pipeline_value: float
    attrition_rate: float
    time_projections: RevenueProjection
    avg_months_to_revenue: float
    court_opportunity: Optional[CourtOpportunity] = None
    algorithm: str = "expected_value_cascade"

    def to_dict(self) -> dict:
        return {
            "stages": [
                {
                    "stage": s.stage,
                    "stage_label": s.stage_label,
                    "case_count": s.case_count,
                    "adjusted_cases": s.adjusted_cases,
                    "expected_wins": s.expected_wins,
                    "direct_revenue": s.direct_revenue,
                    "appeal_value": s.appeal_value,
                    "total_value": s.total_value,
                    "months_to_resolution": s.months_to_resolution,
                    "remaining_months": s.remaining_months,
                }
                for s in self.stages
            ],
            "total_cases": self.total_cases,
            "total_expected_wins": self.total_expected_wins,
            "total_direct_revenue": self.total_direct_revenue,
            "total_pipeline_value": self.total_pipeline_value,
            "attrition_rate": self.attrition_rate,
            "time_projections": self.time_projections.to_dict(),
            "avg_months_to_revenue": self.avg_months_to_revenue,
            "court_opportunity": (
                self.court_opportunity.to_dict() if self.court_opportunity is not None else None
            ),
            "algorithm": self.algorithm,
        }


class PipelineValuator:
    """Deterministic expected-value valuation of a stage-count pipeline."""

    def value(
        self,
        counts: Mapping,
        params: FunnelParameters,
        continuation_rates: Optional[Mapping] = None,
        attrition_rate: float = 0.0,
        opportunity: Optional[CourtOpportunityAssumptions] = None,
    ) -> PipelineValuation:
        """
        Args:
            counts: Stage (or stage key) → number of open cases at that stage
            params: Fee / win rate / cycle time per stage
            continuation_rates: Stage → share of DENIED cases appealed to the
                next stage. Stages not listed do not continue.
            attrition_rate: Share of cases lost before a decision, per stage
            opportunity: Court payout assumptions; when given (and the
                hearing, appeals-council and terminal stages are all
                parameterized) the result carries a court opportunity analysis
        """
        stage_counts, rates = self._validate(counts, params, continuation_rates or {}, attrition_rate)
        survive = 1.0 - attrition_rate

        def cascade(stage: Stage, cases: float) -> tuple[float, float, float, float]:
            """(adjusted, direct wins, direct revenue, appeal value) for `cases` at `stage`."""
            if cases == 0:
                return 0.0, 0.0, 0.0, 0.0
            p = params.for_stage(stage)
            adjusted = cases * survive
            wins = adjusted * p.win_rate
            direct = wins * p.fee
            if stage.is_terminal:
                direct += wins * params.bonus_fee
            nxt = stage.next()
            appeal = 0.0
            if nxt is not None:
                carried = adjusted * (1.0 - p.win_rate) * rates.get(stage, 0.0)
                _, _, nxt_direct, nxt_appeal = cascade(nxt, carried)
                appeal = nxt_direct + nxt_appeal
            return adjusted, wins, direct, appeal

        valuations: list[StageValuation] = []
        for stage in STAGE_ORDER:
            count = stage_counts.get(stage, 0.0)
            if stage not in params.stages and count == 0:
                continue
            adjusted, wins, direct, appeal = cascade(stage, count)
            cycle = params.for_stage(stage).cycle_time_months
            valuations.append(StageValuation(
                stage=stage.value,
                stage_label=stage.label,
                case_count=count,
                adjusted_cases=adjusted,
                expected_wins=wins,
                direct_revenue=direct,
                appeal_value=appeal,
                total_value=direct + appeal,
                months_to_resolution=params.cumulative_months(stage),
                remaining_months=cycle * REMAINING_CYCLE_SHARE,
            ))

        total_value = math.fsum(v.total_value for v in valuations)
        weighted_months = math.fsum(v.total_value * v.remaining_months for v in valuations)

        result = PipelineValuation(
            stages=tuple(valuations),
            total_cases=math.fsum(v.case_count for v in valuations),
            total_expected_wins=math.fsum(v.expected_wins for v in valuations),
            total_direct_revenue=math.fsum(v.direct_revenue for v in valuations),
            total_pipeline_value=total_value,
            attrition_rate=attrition_rate,
            time_projections=self._project(valuations),
            avg_months_to_revenue=weighted_months / total_value if total_value > 0 else 0.0,
            court_opportunity=(
                self._court_opportunity(stage_counts, params, rates, survive, opportunity)
                if opportunity is not None
                else None
            ),
        )
        logger.info(
            "pipeline_valued",
            total_cases=result.total_cases,
            pipeline_value=round(result.total_pipeline_value, 2),
            avg_months_to_revenue=round(result.avg_months_to_revenue, 2),
        )
        return result

    @staticmethod
    def _project(valuations: list[StageValuation]) -> RevenueProjection:
        horizons = ([], [], [])
        for v in valuations:
            if v.case_count == 0:
                continue
            for bucket, share in zip(horizons, collected_shares(v.remaining_months)):
                bucket.append(v.total_value * share)
        year_1, year_3, year_5 = (math.fsum(bucket) for bucket in horizons)
        return RevenueProjection(year_1=year_1, year_3=year_3, year_5=year_5)

    @staticmethod
    def _court_opportunity(
        stage_counts: Mapping[Stage, float],
        params: FunnelParameters,
        rates: Mapping[Stage, float],
        survive: float,
        assumptions: CourtOpportunityAssumptions,
    ) -> Optional[CourtOpportunity]:
        needed = (Stage.HEARING, Stage.APPEALS_COUNCIL, TERMINAL_STAGE)
        if params.missing_stages(needed):
            logger.debug("court_opportunity_skipped", reason="missing_stage_parameters")
            return None

        hearing = params.stages[Stage.HEARING]
        council = params.stages[Stage.APPEALS_COUNCIL]
        court = params.stages[TERMINAL_STAGE]

        denials = stage_counts.get(Stage.HEARING, 0.0) * survive * (1.0 - hearing.win_rate)
        current_rate = (
            rates.get(Stage.HEARING, 0.0)
            * (1.0 - council.win_rate)
            * rates.get(Stage.APPEALS_COUNCIL, 0.0)
        )
        target_rate = assumptions.target_denial_to_court_rate
        current_cases = denials * current_rate
        target_cases = denials * target_rate
        additional = max(0.0, target_cases - current_cases)

        remands = additional * assumptions.remand_rate
        bonus = remands * params.bonus_fee
        remand_fees = remands * assumptions.remand_win_rate * assumptions.court_win_fee
        direct = additional * court.win_rate * assumptions.court_win_fee
        total = bonus + remand_fees + direct

        return CourtOpportunity(
            hearing_denials=denials,
            current_rate=current_rate,
            target_rate=target_rate,
            current_cases=current_cases,
            target_cases=target_cases,
            additional_cases=additional,
            additional_bonus=bonus,
            additional_remand_fees=remand_fees,
            additional_direct_value=direct,
            total_additional_revenue=total,
            referral_share=assumptions.referral_share,
            total_referral_revenue=total * assumptions.referral_share,
            is_opportunity=current_rate < target_rate and denials > 0,
        )

    @staticmethod
    def _validate(
        counts: Mapping,
        params: FunnelParameters,
        continuation_rates: Mapping,
        attrition_rate: float,
    ) -> tuple[dict[Stage, float], dict[Stage, float]]:
        issues: list[str] = []

        if not _is_number(attrition_rate) or not 0.0 <= attrition_rate <= 1.0:
            issues.append(f"attrition_rate must be within [0, 1] (got {attrition_rate!r})")

        stage_counts: dict[Stage, float] = {}
        for key, count in counts.items():
            try:
                stage = coerce_stage(key)
            except ConfigurationError as exc:
                issues.extend(exc.issues)
                continue
            if not _is_number(count) or count < 0:
                issues.append(f"{stage.value}: case count must be a finite number >= 0 (got {count!r})")
                continue
            stage_counts[stage] = float(count)

        rates: dict[Stage, float] = {}
        for key, rate in continuation_rates.items():
            try:
                stage = coerce_stage(key)
            except ConfigurationError as exc:
                issues.extend(exc.issues)
                continue
            if not _is_number(rate) or not 0.0 <= rate <= 1.0:
                issues.append(f"{stage.value}: continuation rate must be within [0, 1] (got {rate!r})")
                continue
            rates[stage] = float(rate)

        # Every stage a counted case can reach needs parameters
        required: set[Stage] = set()
        for stage, count in stage_counts.items():
            if count <= 0:
                continue
            current: Optional[Stage] = stage
            while current is not None and current not in required:
                required.add(current)
                if rates.get(current, 0.0) <= 0:
                    break
                current = current.next()
        for stage in params.missing_stages(required):
            issues.append(f"missing parameters for stage {stage.value!r}")

        if issues:
            logger.warning("pipeline_inputs_rejected", issues=issues)
            raise ConfigurationError.from_issues("pipeline inputs", issues)
        return stage_counts, rates
