"""
Monte Carlo Revenue Forecasting Engine.

Simulates every in-flight case many times and aggregates the outcomes into
a revenue distribution with confidence bounds.

Per trial, per case:
  p      = clamp(base_win_rate + N(0,1) × win_rate_variance, 0, 1)
  won    ~ Bernoulli(p)
  fee    = max(0, base_fee × (1 + N(0,1) × fee_variance))          if won
  bonus  = max(0, bonus_fee × (1 + N(0,1) × fee_variance / 2))     if won at the terminal stage
  timing = max(0, cycle_time - days_in_stage / 30.44) × 30.44 + payment_lag_days

After all trials:
- P10 / P50 / P90 / mean of trial totals
- 30-bin histogram with the percentile bins flagged
- Month 1..36 cumulative-revenue percentiles (cash received by month m)
- Per-case win probability, expected value, time-to-cash, P10 / P90

Execution is cooperative: trials run in bounded chunks and progress is
observable between chunks. A run's result is exposed only once every trial
has completed; a cancelled run never exposes anything.
"""

import asyncio
import inspect
import math
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Sequence

import structlog

from funnelcast.engine.funnel import (
    DAYS_PER_MONTH,
    Case,
    FunnelParameters,
    StageParameters,
    VarianceConfig,
)
from funnelcast.engine.sampling import RandomSource, Sampler, make_random_source
from funnelcast.engine.statistics import (
    HistogramBin,
    histogram,
    mean,
    percentile_of_sorted,
)
from funnelcast.exceptions import (
    ConfigurationError,
    ErrorCode,
    SimulationCancelledError,
    SimulationIncompleteError,
)

logger = structlog.get_logger(__name__)

# ── Configuration (no magic numbers) ─────────────────────────────────────

DEFAULT_CHUNK_SIZE: int = 100      # Trials per cooperative chunk
HISTOGRAM_BINS: int = 30
TIMELINE_MONTHS: int = 36
BONUS_VARIANCE_FACTOR: float = 0.5  # Bonus fee is perturbed with half the fee variance
PERCENTILE_MARKERS: dict[str, float] = {"p10": 10.0, "p50": 50.0, "p90": 90.0}


# ── Results ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PercentileSummary:
    """Conservative / median / optimistic bounds plus the mean."""
    p10: float
    p50: float
    p90: float
    mean: float


@dataclass(frozen=True)
class TimelinePoint:
    """Cumulative revenue received by the end of `month`, across trials."""
    month: int
    p10: float
    p50: float
    p90: float


@dataclass(frozen=True)
class CaseForecast:
    """One case's outcome distribution across all trials."""
    label: str
    stage: str
    stage_label: str
    days_in_stage: float
    win_probability: float       # Fraction of trials won
    expected_value: float        # Mean revenue, zero-revenue trials included
    median_days_to_cash: float   # Median nonzero time-to-cash over won trials (0 if never)
    p10: float
    p90: float


@dataclass(frozen=True)
class SimulationProgress:
    """Progress snapshot emitted after each chunk."""
    completed: int
    total: int

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0

    @property
    def is_complete(self) -> bool:
        return self.completed >= self.total

    def to_dict(self) -> dict:
        return {
            "completed": self.completed,
            "total": self.total,
            "fraction": round(self.fraction, 4),
        }


@dataclass(frozen=True)
class SimulationResult:
    """
    Complete Monte Carlo output — immutable, created fresh per run.
    """
    trial_count: int
    case_count: int
    total_revenues: tuple[float, ...]   # One value per trial, in trial order
    percentiles: PercentileSummary
    histogram: tuple[HistogramBin, ...]
    timeline: tuple[TimelinePoint, ...]
    per_case: tuple[CaseForecast, ...] = field(default_factory=tuple)
    algorithm: str = "monte_carlo_case_funnel"

    def to_dict(self, include_samples: bool = True) -> dict:
        body = {
            "trial_count": self.trial_count,
            "case_count": self.case_count,
            "percentiles": {
                "p10": self.percentiles.p10,
                "p50": self.percentiles.p50,
                "p90": self.percentiles.p90,
                "mean": self.percentiles.mean,
            },
            "histogram": [
                {
                    "start": b.start,
                    "end": b.end,
                    "midpoint": b.midpoint,
                    "count": b.count,
                    "is_p10": b.has_marker("p10"),
                    "is_p50": b.has_marker("p50"),
                    "is_p90": b.has_marker("p90"),
                }
                for b in self.histogram
            ],
            "timeline": [
                {"month": t.month, "p10": t.p10, "p50": t.p50, "p90": t.p90}
                for t in self.timeline
            ],
            "per_case": [
                {
                    "label": c.label,
                    "stage": c.stage,
                    "stage_label": c.stage_label,
                    "days_in_stage": c.days_in_stage,
                    "win_probability": c.win_probability,
                    "expected_value": c.expected_value,
                    "median_days_to_cash": c.median_days_to_cash,
                    "p10": c.p10,
                    "p90": c.p90,
                }
                for c in self.per_case
            ],
            "algorithm": self.algorithm,
        }
        if include_samples:
            body["total_revenues"] = list(self.total_revenues)
        return body


# ── Helpers ───────────────────────────────────────────────────────────────


def time_to_cash_days(case: Case, params: StageParameters) -> float:
    """
    Days until a WIN on this case turns into cash.

    Remaining decision time (never negative) plus the payment lag.
    """
    remaining_months = max(0.0, params.cycle_time_months - case.elapsed_months)
    return remaining_months * DAYS_PER_MONTH + params.payment_lag_days


def cash_month(timing_days: float) -> int:
    """First timeline month m (1-based) with timing_days / 30.44 <= m."""
    return max(1, math.ceil(timing_days / DAYS_PER_MONTH))


@dataclass(frozen=True)
class _CaseModel:
    """Per-case constants, resolved once per run."""
    case: Case
    win_rate: float
    fee: float
    bonus_fee: float       # 0 unless the case sits at the terminal stage
    timing_days: float
    month: int


# ── Run ───────────────────────────────────────────────────────────────────


class SimulationRun:
    """
    One chunked simulation.

    Owns its random source and every accumulator; nothing is shared with
    other runs. Drive it with `steps()` (generator), `run()` (blocking) or
    `run_async()` (yields to the event loop between chunks).
    """

    def __init__(
        self,
        cases: Sequence[Case],
        params: FunnelParameters,
        variance: VarianceConfig,
        trial_count: int,
        sampler: Sampler,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        histogram_bins: int = HISTOGRAM_BINS,
        timeline_months: int = TIMELINE_MONTHS,
    ):
        self.trial_count = trial_count
        self.variance = variance
        self.chunk_size = chunk_size
        self.histogram_bins = histogram_bins
        self.timeline_months = timeline_months
        self._sampler = sampler

        self._models: list[_CaseModel] = []
        for case in cases:
            stage_params = params.for_stage(case.stage)
            timing = time_to_cash_days(case, stage_params)
            self._models.append(_CaseModel(
                case=case,
                win_rate=stage_params.win_rate,
                fee=stage_params.fee,
                bonus_fee=params.bonus_fee if case.stage.is_terminal else 0.0,
                timing_days=timing,
                month=cash_month(timing),
            ))

        self._completed = 0
        self._cancelled = False
        self._result: Optional[SimulationResult] = None

        # Accumulators
        self._totals: list[float] = []
        self._case_revenues: list[list[float]] = [[] for _ in self._models]
        self._case_wins: list[int] = [0] * len(self._models)
        self._monthly: list[list[float]] = [[] for _ in range(timeline_months)]

    # ── State ────────────────────────────────────────────────────────────

    @property
    def progress(self) -> SimulationProgress:
        return SimulationProgress(completed=self._completed, total=self.trial_count)

    @property
    def is_complete(self) -> bool:
        return self._result is not None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def result(self) -> SimulationResult:
        if self._cancelled:
            raise SimulationCancelledError(self._completed, self.trial_count)
        if self._result is None:
            raise SimulationIncompleteError(self._completed, self.trial_count)
        return self._result

    def cancel(self) -> None:
        """Stop before the next chunk and discard all partial output."""
        if self._cancelled or self._result is not None:
            return
        self._cancelled = True
        self._totals = []
        self._case_revenues = []
        self._monthly = []
        logger.info(
            "simulation_cancelled",
            completed=self._completed,
            total=self.trial_count,
        )

    # ── Execution ────────────────────────────────────────────────────────

    def steps(self) -> Iterator[SimulationProgress]:
        """
        Run chunk by chunk, yielding progress after each one.

        The result is built before the final progress is yielded, so a
        consumer seeing `is_complete` can read `result` immediately.
        """
        while not self._cancelled and self._completed < self.trial_count:
            end = min(self._completed + self.chunk_size, self.trial_count)
            for _ in range(self._completed, end):
                self._run_trial()
            self._completed = end
            if self._completed >= self.trial_count:
                self._result = self._build_result()
            yield self.progress

    def run(self) -> SimulationResult:
        for _ in self.steps():
            pass
        return self.result

    async def run_async(
        self,
        on_progress: Optional[Callable[[SimulationProgress], object]] = None,
    ) -> SimulationResult:
        """Run to completion, handing control back to the event loop between chunks."""
        for progress in self.steps():
            if on_progress is not None:
                outcome = on_progress(progress)
                if inspect.isawaitable(outcome):
                    await outcome
            await asyncio.sleep(0)
        return self.result

    def _run_trial(self) -> None:
        sampler = self._sampler
        fee_var = self.variance.fee_variance
        rate_var = self.variance.win_rate_variance
        by_month = [0.0] * self.timeline_months
        total = 0.0

        for idx, model in enumerate(self._models):
            rate = min(1.0, max(0.0, model.win_rate + sampler.standard_normal() * rate_var))
            if not sampler.bernoulli(rate):
                self._case_revenues[idx].append(0.0)
                continue

            revenue = max(0.0, model.fee * (1.0 + sampler.standard_normal() * fee_var))
            if model.bonus_fee > 0:
                revenue += max(
                    0.0,
                    model.bonus_fee * (1.0 + sampler.standard_normal() * fee_var * BONUS_VARIANCE_FACTOR),
                )

            self._case_wins[idx] += 1
            self._case_revenues[idx].append(revenue)
            total += revenue
            if model.month <= self.timeline_months:
                by_month[model.month - 1] += revenue

        self._totals.append(total)
        running = 0.0
        for m in range(self.timeline_months):
            running += by_month[m]
            self._monthly[m].append(running)

    # ── Aggregation ──────────────────────────────────────────────────────

    def _build_result(self) -> SimulationResult:
        trials = self.trial_count
        ordered = sorted(self._totals)
        summary = PercentileSummary(
            p10=percentile_of_sorted(ordered, 10),
            p50=percentile_of_sorted(ordered, 50),
            p90=percentile_of_sorted(ordered, 90),
            mean=mean(self._totals),
        )
        markers = {
            "p10": summary.p10,
            "p50": summary.p50,
            "p90": summary.p90,
        }
        bins = histogram(self._totals, self.histogram_bins, markers=markers)

        timeline: list[TimelinePoint] = []
        for m, samples in enumerate(self._monthly, start=1):
            month_sorted = sorted(samples)
            timeline.append(TimelinePoint(
                month=m,
                p10=percentile_of_sorted(month_sorted, 10),
                p50=percentile_of_sorted(month_sorted, 50),
                p90=percentile_of_sorted(month_sorted, 90),
            ))

        per_case: list[CaseForecast] = []
        for idx, model in enumerate(self._models):
            revenues = self._case_revenues[idx]
            wins = self._case_wins[idx]
            case_sorted = sorted(revenues)
            # Timing is deterministic per case, so its median over won trials is itself
            median_timing = model.timing_days if wins > 0 and model.timing_days > 0 else 0.0
            per_case.append(CaseForecast(
                label=model.case.label,
                stage=model.case.stage.value,
                stage_label=model.case.stage.label,
                days_in_stage=model.case.days_in_stage,
                win_probability=wins / trials,
                expected_value=math.fsum(revenues) / trials,
                median_days_to_cash=median_timing,
                p10=percentile_of_sorted(case_sorted, 10),
                p90=percentile_of_sorted(case_sorted, 90),
            ))

        logger.info(
            "monte_carlo_completed",
            trials=trials,
            cases=len(self._models),
            p10=round(summary.p10, 2),
            p50=round(summary.p50, 2),
            p90=round(summary.p90, 2),
        )

        return SimulationResult(
            trial_count=trials,
            case_count=len(self._models),
            total_revenues=tuple(self._totals),
            percentiles=summary,
            histogram=tuple(bins),
            timeline=tuple(timeline),
            per_case=tuple(per_case),
        )


# ── Engine ────────────────────────────────────────────────────────────────


class MonteCarloEngine:
    """
    Factory for validated simulation runs.

    Holds only immutable knobs (chunk size, bins, horizon); every call builds
    an independent `SimulationRun`.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        histogram_bins: int = HISTOGRAM_BINS,
        timeline_months: int = TIMELINE_MONTHS,
    ):
        issues: list[str] = []
        for name, value in (
            ("chunk_size", chunk_size),
            ("histogram_bins", histogram_bins),
            ("timeline_months", timeline_months),
        ):
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                issues.append(f"{name} must be a positive integer (got {value!r})")
        if issues:
            raise ConfigurationError.from_issues("Monte Carlo engine settings", issues)
        self.chunk_size = chunk_size
        self.histogram_bins = histogram_bins
        self.timeline_months = timeline_months

    def start(
        self,
        cases: Sequence[Case],
        params: FunnelParameters,
        variance: VarianceConfig,
        trial_count: int,
        random_source: Optional[RandomSource] = None,
        seed: Optional[int] = None,
    ) -> SimulationRun:
        """
        Validate inputs and return a run that has not executed any trial yet.

        Raises ConfigurationError before any computation on bad inputs.
        """
        if not isinstance(trial_count, int) or isinstance(trial_count, bool) or trial_count < 1:
            raise ConfigurationError(
                f"trial_count must be a positive integer (got {trial_count!r})",
                code=ErrorCode.INVALID_TRIAL_COUNT,
            )
        bad = [i for i, c in enumerate(cases) if not isinstance(c, Case)]
        if bad:
            raise ConfigurationError(
                f"Expected Case records; invalid entries at positions {bad[:10]}"
            )
        params.validate_for(cases)

        if not cases:
            logger.info("monte_carlo_no_cases", trials=trial_count)

        source = random_source if random_source is not None else make_random_source(seed)
        logger.info(
            "monte_carlo_started",
            trials=trial_count,
            cases=len(cases),
            chunk_size=self.chunk_size,
            fee_variance=variance.fee_variance,
            win_rate_variance=variance.win_rate_variance,
        )
        return SimulationRun(
            cases=list(cases),
            params=params,
            variance=variance,
            trial_count=trial_count,
            sampler=Sampler(source),
            chunk_size=self.chunk_size,
            histogram_bins=self.histogram_bins,
            timeline_months=self.timeline_months,
        )

    def simulate(
        self,
        cases: Sequence[Case],
        params: FunnelParameters,
        variance: VarianceConfig,
        trial_count: int,
        random_source: Optional[RandomSource] = None,
        seed: Optional[int] = None,
    ) -> SimulationResult:
        """Run a full simulation synchronously."""
        return self.start(
            cases, params, variance, trial_count,
            random_source=random_source, seed=seed,
        ).run()
