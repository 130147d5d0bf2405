"""
Funnel Domain Model.

The shared vocabulary of both forecasting engines:
- Stage: the fixed, ordered sequence of resolution stages
- StageParameters: per-stage fee, win rate, cycle time, payment lag
- VarianceConfig: simulation-wide stochastic perturbation
- Case: one in-flight case at a known stage
- FunnelParameters: read-only Stage → StageParameters lookup + terminal bonus fee

Order matters: a case not resolved at stage i advances to stage i+1.
No stage is skipped and there are no backward transitions.

Direct construction VALIDATES (raises ConfigurationError on bad values).
The `normalized` / `from_raw` constructors CLAMP instead, for collaborator
input that must never be rejected (e.g. an unclassifiable status label).
"""

import math
import re
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence

import structlog

from funnelcast.exceptions import ConfigurationError, ErrorCode

logger = structlog.get_logger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────

DAYS_PER_MONTH: float = 30.44  # Average Gregorian month length


class Stage(StrEnum):
    """Resolution stages, in funnel order (definition order is significant)."""
    APPLICATION = "application"
    RECONSIDERATION = "reconsideration"
    HEARING = "hearing"
    APPEALS_COUNCIL = "appeals_council"
    FEDERAL_COURT = "federal_court"

    @classmethod
    def ordered(cls) -> tuple["Stage", ...]:
        return STAGE_ORDER

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def label(self) -> str:
        return STAGE_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self is TERMINAL_STAGE

    def next(self) -> Optional["Stage"]:
        """The stage a denied case escalates to, or None at the terminal stage."""
        idx = self.order + 1
        return STAGE_ORDER[idx] if idx < len(STAGE_ORDER) else None


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)
TERMINAL_STAGE: Stage = STAGE_ORDER[-1]

# Unclassifiable cases land here: most open caseloads sit at the hearing level
DEFAULT_STAGE: Stage = Stage.HEARING

STAGE_LABELS: dict[Stage, str] = {
    Stage.APPLICATION: "Application",
    Stage.RECONSIDERATION: "Reconsideration",
    Stage.HEARING: "ALJ Hearing",
    Stage.APPEALS_COUNCIL: "Appeals Council",
    Stage.FEDERAL_COURT: "Federal Court",
}

# Checked in funnel order; whole-word matches only ("app" must not hit "appeals")
STATUS_KEYWORDS: dict[Stage, tuple[str, ...]] = {
    Stage.APPLICATION: ("application", "initial", "app", "title ii", "title xvi", "initial claim", "new claim"),
    Stage.RECONSIDERATION: ("reconsideration", "recon", "reconsider"),
    Stage.HEARING: ("hearing", "alj", "oho", "administrative law judge"),
    Stage.APPEALS_COUNCIL: ("appeals council", "ac", "appeals"),
    Stage.FEDERAL_COURT: ("federal court", "federal", "usdc", "district court"),
}

_KEYWORD_PATTERNS: list[tuple[Stage, re.Pattern]] = [
    (stage, re.compile(r"\b" + re.escape(kw) + r"\b"))
    for stage, keywords in STATUS_KEYWORDS.items()
    for kw in keywords
]


def classify_stage(text: Optional[str]) -> Stage:
    """
    Map a free-text status label to a Stage.

    Accepts stage keys ("appeals_council") and display labels ("ALJ Hearing")
    verbatim, then falls back to keyword matching. Blank or unrecognized text
    returns DEFAULT_STAGE — a case is never dropped for lack of a stage.
    """
    if text is None:
        return DEFAULT_STAGE
    lowered = str(text).strip().lower()
    if not lowered:
        return DEFAULT_STAGE

    for stage in STAGE_ORDER:
        if lowered == stage.value or lowered == stage.label.lower():
            return stage

    for stage, pattern in _KEYWORD_PATTERNS:
        if pattern.search(lowered):
            return stage

    logger.debug("stage_unclassified", status=lowered, default=DEFAULT_STAGE.value)
    return DEFAULT_STAGE


def coerce_stage(value) -> Stage:
    """Strict conversion of a stage key; raises ConfigurationError on unknown keys."""
    if isinstance(value, Stage):
        return value
    try:
        return Stage(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in STAGE_ORDER)
        raise ConfigurationError(
            f"Unknown stage {value!r} (expected one of: {valid})"
        ) from None


def _check_finite(name: str, value: float, issues: list[str]) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
        issues.append(f"{name} must be a finite number (got {value!r})")
        return False
    return True


def _clamp(value: float, lo: float, hi: float) -> float:
    # Non-finite values pass through so construction rejects them
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return value
    return max(lo, min(hi, value))


@dataclass(frozen=True)
class StageParameters:
    """Per-stage economics. Values are validated on construction."""
    fee: float                   # Currency, >= 0
    win_rate: float              # Probability, [0, 1]
    cycle_time_months: float     # Expected months to a decision once at the stage
    payment_lag_days: float      # Days from favorable decision to cash receipt

    def __post_init__(self):
        issues: list[str] = []
        if _check_finite("fee", self.fee, issues) and self.fee < 0:
            issues.append(f"fee must be >= 0 (got {self.fee})")
        if _check_finite("win_rate", self.win_rate, issues) and not 0.0 <= self.win_rate <= 1.0:
            issues.append(f"win_rate must be within [0, 1] (got {self.win_rate})")
        if _check_finite("cycle_time_months", self.cycle_time_months, issues) and self.cycle_time_months < 0:
            issues.append(f"cycle_time_months must be >= 0 (got {self.cycle_time_months})")
        if _check_finite("payment_lag_days", self.payment_lag_days, issues) and self.payment_lag_days < 0:
            issues.append(f"payment_lag_days must be >= 0 (got {self.payment_lag_days})")
        if issues:
            raise ConfigurationError.from_issues("stage parameters", issues)

    @classmethod
    def normalized(
        cls,
        fee: float,
        win_rate: float,
        cycle_time_months: float,
        payment_lag_days: float,
    ) -> "StageParameters":
        """Clamp win_rate to [0, 1] and negative amounts/times to 0."""
        return cls(
            fee=_clamp(fee, 0.0, math.inf),
            win_rate=_clamp(win_rate, 0.0, 1.0),
            cycle_time_months=_clamp(cycle_time_months, 0.0, math.inf),
            payment_lag_days=_clamp(payment_lag_days, 0.0, math.inf),
        )


@dataclass(frozen=True)
class VarianceConfig:
    """Simulation-wide perturbation. Not per-stage."""
    fee_variance: float = 0.15        # Fractional std-dev applied to fees
    win_rate_variance: float = 0.05   # Absolute std-dev applied to win rates

    def __post_init__(self):
        issues: list[str] = []
        if _check_finite("fee_variance", self.fee_variance, issues) and self.fee_variance < 0:
            issues.append(f"fee_variance must be >= 0 (got {self.fee_variance})")
        if _check_finite("win_rate_variance", self.win_rate_variance, issues) and self.win_rate_variance < 0:
            issues.append(f"win_rate_variance must be >= 0 (got {self.win_rate_variance})")
        if issues:
            raise ConfigurationError.from_issues("variance configuration", issues)


@dataclass(frozen=True)
class Case:
    """One in-flight case. Always carries a valid stage."""
    label: str
    stage: Stage
    days_in_stage: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "stage", coerce_stage(self.stage))
        issues: list[str] = []
        if _check_finite("days_in_stage", self.days_in_stage, issues) and self.days_in_stage < 0:
            issues.append(f"days_in_stage must be >= 0 (got {self.days_in_stage})")
        if issues:
            raise ConfigurationError.from_issues(f"case {self.label!r}", issues)

    @property
    def elapsed_months(self) -> float:
        return self.days_in_stage / DAYS_PER_MONTH

    @classmethod
    def from_raw(
        cls,
        label: Optional[str],
        status: Optional[str],
        days_in_stage=None,
        index: int = 0,
    ) -> "Case":
        """
        Build a case from loosely-typed collaborator input.

        - blank label → "Case {index + 1}"
        - status text → classify_stage (default stage when unrecognized)
        - unparseable / negative / non-finite days → 0
        """
        text_label = str(label).strip() if label is not None else ""
        try:
            days = float(days_in_stage) if days_in_stage not in (None, "") else 0.0
        except (TypeError, ValueError):
            days = 0.0
        if not math.isfinite(days):
            days = 0.0
        return cls(
            label=text_label or f"Case {index + 1}",
            stage=classify_stage(status),
            days_in_stage=max(0.0, days),
        )


@dataclass(frozen=True)
class FunnelParameters:
    """
    Read-only parameter set for one forecast.

    Each caller builds its own — there is no process-wide default, so
    simulations with different assumptions never interfere.
    """
    stages: Mapping[Stage, StageParameters]
    bonus_fee: float = 0.0   # Paid only on terminal-stage wins, on top of the stage fee

    def __post_init__(self):
        issues: list[str] = []
        frozen: dict[Stage, StageParameters] = {}
        for key, params in dict(self.stages).items():
            try:
                stage = coerce_stage(key)
            except ConfigurationError as exc:
                issues.extend(exc.issues)
                continue
            if not isinstance(params, StageParameters):
                issues.append(f"{stage.value}: expected StageParameters, got {type(params).__name__}")
                continue
            frozen[stage] = params
        if _check_finite("bonus_fee", self.bonus_fee, issues) and self.bonus_fee < 0:
            issues.append(f"bonus_fee must be >= 0 (got {self.bonus_fee})")
        if issues:
            raise ConfigurationError.from_issues("funnel parameters", issues)

        ordered = {s: frozen[s] for s in STAGE_ORDER if s in frozen}
        object.__setattr__(self, "stages", MappingProxyType(ordered))

    def __hash__(self):
        # mappingproxy itself is unhashable
        return hash((tuple(self.stages.items()), self.bonus_fee))

    @classmethod
    def from_sequence(
        cls, params: Sequence[StageParameters], bonus_fee: float = 0.0
    ) -> "FunnelParameters":
        """One StageParameters per stage, in funnel order."""
        if len(params) != len(STAGE_ORDER):
            raise ConfigurationError(
                f"Expected {len(STAGE_ORDER)} stage parameter records, got {len(params)}"
            )
        return cls(stages=dict(zip(STAGE_ORDER, params)), bonus_fee=bonus_fee)

    def for_stage(self, stage: Stage) -> StageParameters:
        try:
            return self.stages[stage]
        except KeyError:
            raise ConfigurationError(
                f"No parameters configured for stage {stage.value!r}",
                code=ErrorCode.MISSING_STAGE_PARAMETERS,
            ) from None

    def missing_stages(self, stages: Iterable[Stage]) -> list[Stage]:
        return sorted({s for s in stages if s not in self.stages}, key=lambda s: s.order)

    def validate_for(self, cases: Sequence[Case]) -> None:
        """Every stage used by `cases` must have parameters."""
        missing = self.missing_stages(c.stage for c in cases)
        if missing:
            names = [s.value for s in missing]
            logger.warning("stage_parameters_missing", stages=names)
            raise ConfigurationError(
                "No parameters configured for stages: " + ", ".join(names),
                issues=[f"missing parameters for stage {n!r}" for n in names],
                code=ErrorCode.MISSING_STAGE_PARAMETERS,
            )

    def cumulative_months(self, stage: Stage) -> float:
        """Sum of cycle times from the first stage through `stage`."""
        return sum(
            self.stages[s].cycle_time_months
            for s in STAGE_ORDER[: stage.order + 1]
            if s in self.stages
        )
