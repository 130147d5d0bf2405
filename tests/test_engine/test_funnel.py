"""
Funnel Domain Model Tests.

Stage ordering, status classification, parameter validation and the
clamping collaborator constructors.
"""

import math

import pytest

from funnelcast.engine.funnel import (
    DAYS_PER_MONTH,
    DEFAULT_STAGE,
    STAGE_ORDER,
    TERMINAL_STAGE,
    Case,
    FunnelParameters,
    Stage,
    StageParameters,
    VarianceConfig,
    classify_stage,
    coerce_stage,
)
from funnelcast.exceptions import ConfigurationError, ErrorCode


class TestStageOrder:

    def test_five_stages_in_funnel_order(self):
        assert STAGE_ORDER == (
            Stage.APPLICATION,
            Stage.RECONSIDERATION,
            Stage.HEARING,
            Stage.APPEALS_COUNCIL,
            Stage.FEDERAL_COURT,
        )

    def test_terminal_stage_is_last(self):
        assert TERMINAL_STAGE is Stage.FEDERAL_COURT
        assert Stage.FEDERAL_COURT.is_terminal
        assert not Stage.HEARING.is_terminal

    def test_next_walks_forward_only(self):
        assert Stage.APPLICATION.next() is Stage.RECONSIDERATION
        assert Stage.APPEALS_COUNCIL.next() is Stage.FEDERAL_COURT
        assert Stage.FEDERAL_COURT.next() is None

    def test_order_index(self):
        assert [s.order for s in STAGE_ORDER] == [0, 1, 2, 3, 4]
        assert Stage.ordered() == STAGE_ORDER

    def test_labels(self):
        assert Stage.HEARING.label == "ALJ Hearing"
        assert Stage.APPEALS_COUNCIL.label == "Appeals Council"


class TestClassifyStage:

    @pytest.mark.parametrize("text,expected", [
        ("Initial Application", Stage.APPLICATION),
        ("Title XVI claim", Stage.APPLICATION),
        ("Recon pending", Stage.RECONSIDERATION),
        ("Request for Reconsideration", Stage.RECONSIDERATION),
        ("ALJ hearing scheduled", Stage.HEARING),
        ("OHO", Stage.HEARING),
        ("Appeals Council review", Stage.APPEALS_COUNCIL),
        ("Federal Court", Stage.FEDERAL_COURT),
        ("USDC complaint filed", Stage.FEDERAL_COURT),
    ])
    def test_keywords(self, text, expected):
        assert classify_stage(text) is expected

    def test_stage_keys_and_labels_match_verbatim(self):
        assert classify_stage("appeals_council") is Stage.APPEALS_COUNCIL
        assert classify_stage("ALJ Hearing") is Stage.HEARING

    def test_whole_word_matching(self):
        """'app' must not match inside 'appeals'."""
        assert classify_stage("appeals") is Stage.APPEALS_COUNCIL

    @pytest.mark.parametrize("text", [None, "", "   ", "awaiting medical records"])
    def test_unrecognized_falls_back_to_default(self, text):
        assert classify_stage(text) is DEFAULT_STAGE
        assert DEFAULT_STAGE is Stage.HEARING


class TestCoerceStage:

    def test_accepts_enum_and_key(self):
        assert coerce_stage(Stage.HEARING) is Stage.HEARING
        assert coerce_stage(" Federal_Court ") is Stage.FEDERAL_COURT

    def test_unknown_key_raises(self):
        with pytest.raises(ConfigurationError) as exc:
            coerce_stage("supreme_court")
        assert "supreme_court" in exc.value.message
        assert exc.value.status_code == 422


class TestStageParameters:

    def test_valid(self, hearing_params):
        assert hearing_params.fee == 6500
        assert hearing_params.win_rate == 0.54

    def test_collects_every_issue(self):
        with pytest.raises(ConfigurationError) as exc:
            StageParameters(fee=-1, win_rate=1.5, cycle_time_months=-2, payment_lag_days=-3)
        assert len(exc.value.issues) == 4
        assert exc.value.code == ErrorCode.INVALID_CONFIGURATION

    def test_rejects_non_finite(self):
        with pytest.raises(ConfigurationError):
            StageParameters(fee=math.nan, win_rate=0.5, cycle_time_months=1, payment_lag_days=0)
        with pytest.raises(ConfigurationError):
            StageParameters(fee=100, win_rate=0.5, cycle_time_months=math.inf, payment_lag_days=0)

    def test_normalized_clamps(self):
        p = StageParameters.normalized(fee=-10, win_rate=1.7, cycle_time_months=-1, payment_lag_days=-5)
        assert p == StageParameters(fee=0.0, win_rate=1.0, cycle_time_months=0.0, payment_lag_days=0.0)

    def test_normalized_still_rejects_nan(self):
        with pytest.raises(ConfigurationError):
            StageParameters.normalized(fee=math.nan, win_rate=0.5, cycle_time_months=1, payment_lag_days=0)


class TestVarianceConfig:

    def test_defaults(self):
        v = VarianceConfig()
        assert v.fee_variance == 0.15
        assert v.win_rate_variance == 0.05

    def test_negative_rejected(self):
        with pytest.raises(ConfigurationError):
            VarianceConfig(fee_variance=-0.1)


class TestCase:

    def test_stage_key_coerced(self):
        case = Case("Smith", "hearing", 30)
        assert case.stage is Stage.HEARING

    def test_elapsed_months(self):
        case = Case("Smith", Stage.HEARING, DAYS_PER_MONTH * 3)
        assert case.elapsed_months == pytest.approx(3.0)

    def test_negative_days_rejected(self):
        with pytest.raises(ConfigurationError):
            Case("Smith", Stage.HEARING, -1)

    def test_from_raw_defaults(self):
        case = Case.from_raw(None, "something odd", "not a number", index=4)
        assert case.label == "Case 5"
        assert case.stage is DEFAULT_STAGE
        assert case.days_in_stage == 0.0

    def test_from_raw_clamps_negative_and_infinite_days(self):
        assert Case.from_raw("A", "recon", -30).days_in_stage == 0.0
        assert Case.from_raw("A", "recon", "inf").days_in_stage == 0.0
        assert Case.from_raw("A", "recon", "45").days_in_stage == 45.0


class TestFunnelParameters:

    def test_canonical_order_and_read_only(self, hearing_params):
        params = FunnelParameters({"federal_court": hearing_params, Stage.APPLICATION: hearing_params})
        assert list(params.stages) == [Stage.APPLICATION, Stage.FEDERAL_COURT]
        with pytest.raises(TypeError):
            params.stages[Stage.HEARING] = hearing_params  # type: ignore[index]

    def test_missing_stage_lookup(self, hearing_params):
        params = FunnelParameters({Stage.HEARING: hearing_params})
        with pytest.raises(ConfigurationError) as exc:
            params.for_stage(Stage.APPLICATION)
        assert exc.value.code == ErrorCode.MISSING_STAGE_PARAMETERS

    def test_validate_for_lists_missing_stages(self, hearing_params):
        params = FunnelParameters({Stage.HEARING: hearing_params})
        cases = [Case("a", Stage.APPLICATION), Case("b", Stage.FEDERAL_COURT), Case("c", Stage.HEARING)]
        with pytest.raises(ConfigurationError) as exc:
            params.validate_for(cases)
        assert len(exc.value.issues) == 2

    def test_from_sequence_requires_every_stage(self, hearing_params):
        with pytest.raises(ConfigurationError):
            FunnelParameters.from_sequence([hearing_params] * 3)
        params = FunnelParameters.from_sequence([hearing_params] * 5, bonus_fee=100)
        assert len(params.stages) == 5
        assert params.bonus_fee == 100

    def test_hashable_and_equal_by_value(self, hearing_params):
        a = FunnelParameters({Stage.HEARING: hearing_params}, bonus_fee=100)
        b = FunnelParameters({"hearing": hearing_params}, bonus_fee=100)
        c = FunnelParameters({Stage.HEARING: hearing_params}, bonus_fee=200)
        assert a == b
        assert hash(a) == hash(b)
        assert a != c
        assert len({a, b, c}) == 2

    def test_negative_bonus_rejected(self, hearing_params):
        with pytest.raises(ConfigurationError):
            FunnelParameters({Stage.HEARING: hearing_params}, bonus_fee=-1)

    def test_cumulative_months(self, default_params):
        # 8 + 7 + 11
        assert default_params.cumulative_months(Stage.HEARING) == pytest.approx(26.0)
        assert default_params.cumulative_months(Stage.FEDERAL_COURT) == pytest.approx(50.0)
