"""
Property-Based Tests.

Uses Hypothesis to test invariants that must hold for ALL inputs:
- Percentiles: bounded by min/max, monotone in p
- Histogram: counts sum to sample size
- Steady state: cascade conservation, determinism
- Monte Carlo: ordered percentiles, non-negative revenue
- Pipeline: value never exceeds the no-attrition value
"""

import random

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from funnelcast.engine.funnel import Case, FunnelParameters, Stage, StageParameters, VarianceConfig
from funnelcast.engine.monte_carlo import MonteCarloEngine
from funnelcast.engine.pipeline import PipelineValuator
from funnelcast.engine.statistics import histogram, percentile
from funnelcast.engine.steady_state import StageFlowAssumption, SteadyStateInputs, SteadyStateSolver

finite = st.floats(min_value=-1e6, max_value=1e6, allow_nan=False, allow_infinity=False)
unit = st.floats(min_value=0.0, max_value=1.0)
samples_st = st.lists(finite, min_size=1, max_size=200)

stage_flow = st.builds(
    StageFlowAssumption,
    name=st.just(""),
    resolution_fraction=unit,
    win_rate=unit,
    fee=st.floats(min_value=0, max_value=50_000),
    cycle_time_months=st.floats(min_value=0, max_value=60),
)


def _named(stages):
    return [
        StageFlowAssumption(
            name=f"stage_{i}",
            resolution_fraction=s.resolution_fraction,
            win_rate=s.win_rate,
            fee=s.fee,
            cycle_time_months=s.cycle_time_months,
        )
        for i, s in enumerate(stages)
    ]


# ── Statistics Properties ─────────────────────────────────────────────


class TestStatisticsProperties:
    @given(samples=samples_st)
    @settings(max_examples=50)
    def test_percentile_extremes(self, samples):
        assert percentile(samples, 0) == min(samples)
        assert percentile(samples, 100) == max(samples)

    @given(samples=samples_st, p=st.floats(min_value=0, max_value=100))
    @settings(max_examples=50)
    def test_percentile_within_range(self, samples, p):
        assert min(samples) <= percentile(samples, p) <= max(samples) + 1e-6

    @given(samples=samples_st)
    @settings(max_examples=50)
    def test_percentiles_monotone(self, samples):
        assert percentile(samples, 10) <= percentile(samples, 50) <= percentile(samples, 90)

    @given(samples=samples_st, bins=st.integers(min_value=1, max_value=60))
    @settings(max_examples=50)
    def test_histogram_counts_sum(self, samples, bins):
        result = histogram(samples, bins)
        assert len(result) == bins
        assert sum(b.count for b in result) == len(samples)


# ── Steady-State Properties ───────────────────────────────────────────


class TestSteadyStateProperties:
    @given(
        intake=st.floats(min_value=0, max_value=10_000),
        stages=st.lists(stage_flow, min_size=1, max_size=8),
        advance=unit,
    )
    @settings(max_examples=50)
    def test_cascade_conserves_cases(self, intake, stages, advance):
        result = SteadyStateSolver().solve(SteadyStateInputs(
            monthly_intake=intake, stages=_named(stages), advance_fraction=advance,
        ))
        assert result.conservation_error <= 1e-9 * max(1.0, intake)
        for flow in result.stages:
            assert flow.pursuing + flow.abandoned == pytest.approx(flow.entering)
            assert flow.resolved + flow.advancing == pytest.approx(flow.pursuing, rel=1e-9, abs=1e-9)
            assert flow.advancing <= flow.entering

    @given(
        intake=st.floats(min_value=0, max_value=10_000),
        stages=st.lists(stage_flow, min_size=1, max_size=8),
    )
    @settings(max_examples=30)
    def test_deterministic(self, intake, stages):
        inputs = SteadyStateInputs(monthly_intake=intake, stages=_named(stages))
        assert SteadyStateSolver().solve(inputs) == SteadyStateSolver().solve(inputs)


# ── Monte Carlo Properties ────────────────────────────────────────────


class TestMonteCarloProperties:
    @given(
        seed=st.integers(min_value=0, max_value=2**32),
        win_rate=unit,
        fee=st.floats(min_value=0, max_value=20_000),
        days=st.floats(min_value=0, max_value=2000),
        n_cases=st.integers(min_value=0, max_value=8),
        stage=st.sampled_from(list(Stage)),
    )
    @settings(max_examples=25, deadline=None)
    def test_percentiles_ordered_and_non_negative(self, seed, win_rate, fee, days, n_cases, stage):
        params = FunnelParameters(
            {s: StageParameters(fee=fee, win_rate=win_rate, cycle_time_months=6, payment_lag_days=30) for s in Stage},
            bonus_fee=1000,
        )
        cases = [Case(f"c{i}", stage, days) for i in range(n_cases)]
        result = MonteCarloEngine(chunk_size=25).simulate(
            cases, params, VarianceConfig(), trial_count=60, random_source=random.Random(seed),
        )
        assert result.percentiles.p10 <= result.percentiles.p50 <= result.percentiles.p90
        assert min(result.total_revenues) >= 0
        assert sum(b.count for b in result.histogram) == 60
        for c in result.per_case:
            assert 0.0 <= c.win_probability <= 1.0


# ── Pipeline Properties ───────────────────────────────────────────────


class TestPipelineProperties:
    @given(
        count=st.floats(min_value=0, max_value=1000),
        attrition=unit,
        rates=st.tuples(unit, unit, unit, unit),
    )
    @settings(max_examples=50)
    def test_attrition_never_adds_value(self, count, attrition, rates):
        params = FunnelParameters({
            s: StageParameters(fee=5000, win_rate=0.4, cycle_time_months=6, payment_lag_days=60) for s in Stage
        })
        continuation = dict(zip(list(Stage)[:4], rates))
        valuator = PipelineValuator()
        lossy = valuator.value({Stage.APPLICATION: count}, params, continuation, attrition)
        lossless = valuator.value({Stage.APPLICATION: count}, params, continuation, 0.0)
        assert lossy.total_pipeline_value <= lossless.total_pipeline_value + 1e-6
        assert lossy.total_pipeline_value >= 0
