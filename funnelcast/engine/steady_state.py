"""
Steady-State Funnel Solver.

Deterministic cohort cascade: constant monthly intake flows through an
ordered funnel of stages. At each stage a fraction of the cases still in
the funnel is resolved (won or lost); the rest advance.

    remaining_0     = monthly_intake
    resolved_i      = remaining_i × resolution_fraction_i
    wins_i          = resolved_i × win_rate_i
    remaining_{i+1} = remaining_i × (1 - resolution_fraction_i)
    revenue_i       = wins_i × fee_i

At the terminal stage only `advance_fraction` of the arriving cases pursue
it (the rest are abandoned), and each win additionally earns the bonus fee.

Equilibrium caseload follows Little's law:
    open_caseload = monthly_intake × weighted_average_lifecycle

No clamping, no randomness: out-of-range inputs are rejected up front and
identical inputs always produce identical outputs.
"""

import math
from dataclasses import dataclass
from typing import Sequence

import structlog

from funnelcast.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────

MONTHS_PER_YEAR: int = 12
CONSERVATION_TOLERANCE: float = 1e-9  # Relative; floating-point rounding only


@dataclass(frozen=True)
class StageFlowAssumption:
    """Aggregate rates for one stage of the steady-state funnel."""
    name: str
    resolution_fraction: float   # P(decided here | reached here), [0, 1]
    win_rate: float              # P(favorable | decided here), [0, 1]
    fee: float                   # Fee per win, >= 0
    cycle_time_months: float     # Months spent at this stage, >= 0


@dataclass(frozen=True)
class SteadyStateInputs:
    """Scenario assumptions for the solver."""
    monthly_intake: float
    stages: Sequence[StageFlowAssumption]
    advance_fraction: float = 1.0   # Share of cases reaching the terminal stage that pursue it
    bonus_fee: float = 0.0          # Extra fee per terminal-stage win

    def __post_init__(self):
        object.__setattr__(self, "stages", tuple(self.stages))


@dataclass(frozen=True)
class StageFlow:
    """Monthly flow through one stage at equilibrium."""
    name: str
    entering: float              # remaining_i: cases reaching the stage per month
    pursuing: float              # Cases actually worked at the stage (terminal: × advance_fraction)
    abandoned: float             # Terminal only: cases that stop instead of pursuing
    resolved: float
    wins: float
    losses: float
    advancing: float             # remaining_{i+1}
    revenue: float
    bonus_revenue: float         # Terminal only: wins × bonus fee (included in revenue)
    cycle_time_months: float
    cumulative_months: float     # Time from intake to a decision at this stage
    open_cases: float            # pursuing × cycle_time (cases sitting at this stage)


@dataclass(frozen=True)
class SteadyStateResult:
    """Equilibrium caseload and revenue."""
    monthly_intake: float
    stages: tuple[StageFlow, ...]
    total_monthly_revenue: float
    annual_revenue: float
    total_resolved: float
    total_wins: float
    abandoned: float
    final_remaining: float        # Unresolved after the terminal stage
    weighted_average_lifecycle_months: float
    open_caseload: float
    revenue_per_intake: float     # Expected fee income per signed case
    algorithm: str = "steady_state_cohort_cascade"

    @property
    def resolved_by_stage(self) -> dict[str, float]:
        return {s.name: s.resolved for s in self.stages}

    @property
    def revenue_by_stage(self) -> dict[str, float]:
        return {s.name: s.revenue for s in self.stages}

    @property
    def conservation_error(self) -> float:
        """|Σ resolved + abandoned + final_remaining − intake|; rounding noise only."""
        return abs(self.total_resolved + self.abandoned + self.final_remaining - self.monthly_intake)

    def to_dict(self) -> dict:
        return {
            "monthly_intake": self.monthly_intake,
            "stages": [
                {
                    "name": s.name,
                    "entering": s.entering,
                    "pursuing": s.pursuing,
                    "abandoned": s.abandoned,
                    "resolved": s.resolved,
                    "wins": s.wins,
                    "losses": s.losses,
                    "advancing": s.advancing,
                    "revenue": s.revenue,
                    "bonus_revenue": s.bonus_revenue,
                    "cycle_time_months": s.cycle_time_months,
                    "cumulative_months": s.cumulative_months,
                    "open_cases": s.open_cases,
                }
                for s in self.stages
            ],
            "total_monthly_revenue": self.total_monthly_revenue,
            "annual_revenue": self.annual_revenue,
            "total_resolved": self.total_resolved,
            "total_wins": self.total_wins,
            "abandoned": self.abandoned,
            "final_remaining": self.final_remaining,
            "weighted_average_lifecycle_months": self.weighted_average_lifecycle_months,
            "open_caseload": self.open_caseload,
            "revenue_per_intake": self.revenue_per_intake,
            "algorithm": self.algorithm,
        }


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class SteadyStateSolver:
    """
    Deterministic funnel solver.

    Stateless: `solve` is a pure function of its inputs.
    """

    def validate(self, inputs: SteadyStateInputs) -> None:
        """Raise ConfigurationError listing every invalid input."""
        issues: list[str] = []

        if not _is_number(inputs.monthly_intake):
            issues.append(f"monthly_intake must be a finite number (got {inputs.monthly_intake!r})")
        elif inputs.monthly_intake < 0:
            issues.append(f"monthly_intake must be >= 0 (got {inputs.monthly_intake})")

        if not _is_number(inputs.advance_fraction) or not 0.0 <= inputs.advance_fraction <= 1.0:
            issues.append(f"advance_fraction must be within [0, 1] (got {inputs.advance_fraction!r})")
        if not _is_number(inputs.bonus_fee) or inputs.bonus_fee < 0:
            issues.append(f"bonus_fee must be a finite number >= 0 (got {inputs.bonus_fee!r})")

        if not inputs.stages:
            issues.append("funnel must contain at least one stage")

        seen: set[str] = set()
        for i, stage in enumerate(inputs.stages):
            label = stage.name or f"stage[{i}]"
            if not stage.name:
                issues.append(f"stage[{i}]: name must not be empty")
            elif stage.name in seen:
                issues.append(f"{label}: duplicate stage name")
            seen.add(stage.name)
            for field_name in ("resolution_fraction", "win_rate"):
                value = getattr(stage, field_name)
                if not _is_number(value) or not 0.0 <= value <= 1.0:
                    issues.append(f"{label}: {field_name} must be within [0, 1] (got {value!r})")
            for field_name in ("fee", "cycle_time_months"):
                value = getattr(stage, field_name)
                if not _is_number(value) or value < 0:
                    issues.append(f"{label}: {field_name} must be a finite number >= 0 (got {value!r})")

        if issues:
            logger.warning("steady_state_inputs_rejected", issues=issues)
            raise ConfigurationError.from_issues("steady-state inputs", issues)

    def solve(self, inputs: SteadyStateInputs) -> SteadyStateResult:
        """
        Run the cohort cascade.

        Lifecycle is path-weighted: a case resolved at stage i spent the
        cumulative cycle time through i; an abandoned terminal case spent the
        time through the stage before; an unresolved terminal case spent the
        full funnel time.
        """
        self.validate(inputs)

        flows, abandoned, final_remaining = self._cascade(inputs, inputs.monthly_intake)
        unit_flows, unit_abandoned, unit_final = self._cascade(inputs, 1.0)

        lifecycle = self._path_weighted_lifecycle(unit_flows, unit_abandoned, unit_final)
        total_revenue = math.fsum(f.revenue for f in flows)
        total_resolved = math.fsum(f.resolved for f in flows)
        total_wins = math.fsum(f.wins for f in flows)

        result = SteadyStateResult(
            monthly_intake=float(inputs.monthly_intake),
            stages=tuple(flows),
            total_monthly_revenue=total_revenue,
            annual_revenue=total_revenue * MONTHS_PER_YEAR,
            total_resolved=total_resolved,
            total_wins=total_wins,
            abandoned=abandoned,
            final_remaining=final_remaining,
            weighted_average_lifecycle_months=lifecycle,
            open_caseload=inputs.monthly_intake * lifecycle,
            revenue_per_intake=math.fsum(f.revenue for f in unit_flows),
        )

        scale = max(1.0, abs(inputs.monthly_intake))
        if result.conservation_error > CONSERVATION_TOLERANCE * scale:
            logger.warning(
                "steady_state_conservation_drift",
                error=result.conservation_error,
                intake=inputs.monthly_intake,
            )

        logger.info(
            "steady_state_solved",
            stages=len(flows),
            monthly_intake=inputs.monthly_intake,
            monthly_revenue=round(total_revenue, 2),
            open_caseload=round(result.open_caseload, 2),
        )
        return result

    # ── Private helpers ──────────────────────────────────────────────────

    @staticmethod
    def _cascade(
        inputs: SteadyStateInputs, intake: float
    ) -> tuple[list[StageFlow], float, float]:
        flows: list[StageFlow] = []
        remaining = float(intake)
        abandoned = 0.0
        cumulative = 0.0
        last = len(inputs.stages) - 1

        for i, stage in enumerate(inputs.stages):
            entering = remaining
            terminal = i == last
            if terminal:
                pursuing = entering * inputs.advance_fraction
                dropped = entering - pursuing
            else:
                pursuing = entering
                dropped = 0.0

            resolved = pursuing * stage.resolution_fraction
            wins = resolved * stage.win_rate
            advancing = pursuing * (1.0 - stage.resolution_fraction)
            bonus = wins * inputs.bonus_fee if terminal else 0.0
            cumulative += stage.cycle_time_months

            flows.append(StageFlow(
                name=stage.name,
                entering=entering,
                pursuing=pursuing,
                abandoned=dropped,
                resolved=resolved,
                wins=wins,
                losses=resolved - wins,
                advancing=advancing,
                revenue=wins * stage.fee + bonus,
                bonus_revenue=bonus,
                cycle_time_months=stage.cycle_time_months,
                cumulative_months=cumulative,
                open_cases=pursuing * stage.cycle_time_months,
            ))
            abandoned += dropped
            remaining = advancing

        return flows, abandoned, remaining

    @staticmethod
    def _path_weighted_lifecycle(
        unit_flows: list[StageFlow], abandoned: float, final_remaining: float
    ) -> float:
        """Average months in the funnel per signed case (unit-intake cascade)."""
        total = math.fsum(f.resolved * f.cumulative_months for f in unit_flows)
        terminal = unit_flows[-1]
        before_terminal = terminal.cumulative_months - terminal.cycle_time_months
        total += abandoned * before_terminal
        total += final_remaining * terminal.cumulative_months
        return total
