"""
Test fixtures for FunnelCast.

Provides:
- Default funnel parameters built from the published KPI presets
- Sample case lists
- Async FastAPI test client
"""

import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set testing mode before importing the app
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from funnelcast.engine.funnel import Case, Stage, StageParameters, VarianceConfig  # noqa: E402
from funnelcast.presets import funnel_parameters_from_kpis  # noqa: E402


@pytest.fixture
def default_params():
    return funnel_parameters_from_kpis({})


@pytest.fixture
def no_variance() -> VarianceConfig:
    return VarianceConfig(fee_variance=0.0, win_rate_variance=0.0)


@pytest.fixture
def sample_cases() -> list[Case]:
    return [
        Case("Alvarez", Stage.APPLICATION, 30),
        Case("Brooks", Stage.RECONSIDERATION, 90),
        Case("Chen", Stage.HEARING, 240),
        Case("Dawson", Stage.HEARING, 400),
        Case("Evans", Stage.APPEALS_COUNCIL, 60),
        Case("Fischer", Stage.FEDERAL_COURT, 120),
    ]


@pytest.fixture
def hearing_params() -> StageParameters:
    return StageParameters(fee=6500, win_rate=0.54, cycle_time_months=11, payment_lag_days=60)


@pytest_asyncio.fixture
async def client():
    """Async test client against a fresh application instance."""
    from funnelcast.main import create_app

    app = create_app()
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c
