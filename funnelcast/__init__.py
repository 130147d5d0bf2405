"""
FunnelCast — Case-Funnel Forecasting for Law-Practice Analytics.

Architecture:
    funnelcast/
    ├── api/             # FastAPI routers (HTTP layer)
    ├── middleware/      # Error handling, request context
    ├── schemas/         # Pydantic request/response models
    ├── engine/          # Forecasting engine (funnel, statistics, Monte Carlo, steady state, pipeline)
    ├── presets.py       # KPI defaults → funnel parameters (parameter-store adapter)
    ├── config.py        # Settings (env / .env)
    └── exceptions.py    # Error taxonomy

Module Boundaries:
    - The engine is PURE COMPUTATION: no I/O, no persistence, no global defaults
    - Case ingestion, KPI storage, charting and export are external collaborators
    - Every call owns its own parameters, random source and accumulators

Data Flow:
    Case list + KPI settings → FunnelParameters → Monte Carlo → SimulationResult
    Intake + rate assumptions → Steady-State Solver → SteadyStateResult
    Stage counts + appeal rates → Pipeline Valuator → PipelineValuation

Version: 1.0.0
"""

__version__ = "1.0.0"
