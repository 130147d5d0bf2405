"""
Steady-State Solver Tests.
"""

import math

import pytest

from funnelcast.engine.steady_state import (
    MONTHS_PER_YEAR,
    StageFlowAssumption,
    SteadyStateInputs,
    SteadyStateSolver,
)
from funnelcast.exceptions import ConfigurationError


def _stage(name, r, w=0.5, fee=1000.0, months=6.0):
    return StageFlowAssumption(
        name=name, resolution_fraction=r, win_rate=w, fee=fee, cycle_time_months=months,
    )


FOUR_STAGE = [
    _stage("application", 0.15, 0.36, 3500, 8),
    _stage("reconsideration", 0.10, 0.14, 3000, 7),
    _stage("hearing", 0.65, 0.54, 6500, 11),
    _stage("federal_court", 1.0, 0.64, 7000, 15),
]


class TestCascade:

    def setup_method(self):
        self.solver = SteadyStateSolver()

    def test_single_stage_resolves_everything(self):
        result = self.solver.solve(SteadyStateInputs(
            monthly_intake=100, stages=[_stage("application", 1.0, 0.36, 3500, 8)],
        ))
        flow = result.stages[0]
        assert flow.resolved == 100
        assert flow.wins == pytest.approx(36)
        assert flow.revenue == pytest.approx(126_000)
        assert flow.advancing == 0
        assert result.total_monthly_revenue == pytest.approx(126_000)
        assert result.annual_revenue == pytest.approx(126_000 * MONTHS_PER_YEAR)

    def test_remaining_strictly_decreases_to_zero(self):
        result = self.solver.solve(SteadyStateInputs(monthly_intake=100, stages=FOUR_STAGE))
        entering = [f.entering for f in result.stages] + [result.final_remaining]
        assert entering[0] == 100
        assert all(a > b for a, b in zip(entering, entering[1:]))
        assert result.final_remaining == 0

    def test_stage_arithmetic(self):
        result = self.solver.solve(SteadyStateInputs(monthly_intake=100, stages=FOUR_STAGE))
        app, recon, hearing, usdc = result.stages
        assert app.resolved == pytest.approx(15)
        assert recon.entering == pytest.approx(85)
        assert recon.resolved == pytest.approx(8.5)
        assert hearing.entering == pytest.approx(76.5)
        assert usdc.entering == pytest.approx(76.5 * 0.35)
        assert app.losses == pytest.approx(15 * 0.64)

    def test_conservation(self):
        result = self.solver.solve(SteadyStateInputs(
            monthly_intake=250, stages=FOUR_STAGE, advance_fraction=0.4,
        ))
        for flow in result.stages:
            assert flow.resolved + flow.advancing == pytest.approx(flow.pursuing)
        total = result.total_resolved + result.abandoned + result.final_remaining
        assert total == pytest.approx(250)
        assert result.conservation_error < 1e-9 * 250

    def test_advance_fraction_only_touches_terminal_stage(self):
        full = self.solver.solve(SteadyStateInputs(monthly_intake=100, stages=FOUR_STAGE))
        partial = self.solver.solve(SteadyStateInputs(
            monthly_intake=100, stages=FOUR_STAGE, advance_fraction=0.5,
        ))
        for a, b in zip(full.stages[:-1], partial.stages[:-1]):
            assert a.resolved == b.resolved
        assert partial.stages[-1].pursuing == pytest.approx(full.stages[-1].entering * 0.5)
        assert partial.abandoned == pytest.approx(full.stages[-1].entering * 0.5)
        assert full.abandoned == 0

    def test_bonus_fee_on_terminal_wins(self):
        result = self.solver.solve(SteadyStateInputs(
            monthly_intake=100, stages=FOUR_STAGE, bonus_fee=6500,
        ))
        usdc = result.stages[-1]
        assert usdc.bonus_revenue == pytest.approx(usdc.wins * 6500)
        assert usdc.revenue == pytest.approx(usdc.wins * (7000 + 6500))
        assert all(f.bonus_revenue == 0 for f in result.stages[:-1])

    def test_unresolved_terminal_remainder(self):
        result = self.solver.solve(SteadyStateInputs(
            monthly_intake=10, stages=[_stage("a", 0.5), _stage("b", 0.5)],
        ))
        assert result.final_remaining == pytest.approx(2.5)

    def test_lookup_properties(self):
        result = self.solver.solve(SteadyStateInputs(monthly_intake=100, stages=FOUR_STAGE))
        assert set(result.resolved_by_stage) == {"application", "reconsideration", "hearing", "federal_court"}
        assert sum(result.revenue_by_stage.values()) == pytest.approx(result.total_monthly_revenue)


class TestLifecycle:

    def setup_method(self):
        self.solver = SteadyStateSolver()

    def test_single_stage_lifecycle_is_cycle_time(self):
        result = self.solver.solve(SteadyStateInputs(
            monthly_intake=40, stages=[_stage("only", 1.0, months=9)],
        ))
        assert result.weighted_average_lifecycle_months == pytest.approx(9)
        assert result.open_caseload == pytest.approx(360)

    def test_path_weighted(self):
        # Half decided after 4 months, half after 4 + 6
        result = self.solver.solve(SteadyStateInputs(
            monthly_intake=10, stages=[_stage("a", 0.5, months=4), _stage("b", 1.0, months=6)],
        ))
        assert result.weighted_average_lifecycle_months == pytest.approx(0.5 * 4 + 0.5 * 10)
        assert result.open_caseload == pytest.approx(10 * 7)

    def test_abandoned_cases_stop_before_terminal_stage(self):
        result = self.solver.solve(SteadyStateInputs(
            monthly_intake=10,
            stages=[_stage("a", 0.5, months=4), _stage("b", 1.0, months=6)],
            advance_fraction=0.0,
        ))
        assert result.weighted_average_lifecycle_months == pytest.approx(4)

    def test_zero_intake(self):
        result = self.solver.solve(SteadyStateInputs(monthly_intake=0, stages=FOUR_STAGE))
        assert result.total_monthly_revenue == 0
        assert result.open_caseload == 0
        assert result.weighted_average_lifecycle_months > 0

    def test_revenue_per_intake(self):
        result = self.solver.solve(SteadyStateInputs(monthly_intake=200, stages=FOUR_STAGE))
        assert result.revenue_per_intake == pytest.approx(result.total_monthly_revenue / 200)


class TestDeterminism:

    def test_bit_identical_repeats(self):
        inputs = SteadyStateInputs(monthly_intake=137.5, stages=FOUR_STAGE, advance_fraction=0.8, bonus_fee=6500)
        solver = SteadyStateSolver()
        assert solver.solve(inputs) == solver.solve(inputs)
        assert solver.solve(inputs).to_dict() == SteadyStateSolver().solve(inputs).to_dict()


class TestValidation:

    def setup_method(self):
        self.solver = SteadyStateSolver()

    def test_empty_funnel(self):
        with pytest.raises(ConfigurationError):
            self.solver.solve(SteadyStateInputs(monthly_intake=10, stages=[]))

    def test_every_issue_listed(self):
        with pytest.raises(ConfigurationError) as exc:
            self.solver.solve(SteadyStateInputs(
                monthly_intake=-5,
                stages=[_stage("a", 1.5, w=-0.1, fee=-1, months=-2)],
                advance_fraction=2.0,
            ))
        # intake, advance fraction, resolution, win rate, fee, months
        assert len(exc.value.issues) == 6

    def test_non_finite_rejected(self):
        with pytest.raises(ConfigurationError):
            self.solver.solve(SteadyStateInputs(monthly_intake=math.nan, stages=FOUR_STAGE))
        with pytest.raises(ConfigurationError):
            self.solver.solve(SteadyStateInputs(monthly_intake=10, stages=[_stage("a", math.inf)]))

    def test_duplicate_names(self):
        with pytest.raises(ConfigurationError):
            self.solver.solve(SteadyStateInputs(monthly_intake=10, stages=[_stage("a", 0.5), _stage("a", 1.0)]))

    def test_no_clamping(self):
        with pytest.raises(ConfigurationError):
            self.solver.solve(SteadyStateInputs(monthly_intake=10, stages=[_stage("a", 1.0000001)]))
