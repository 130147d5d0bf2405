"""
FunnelCast Forecasting Engine — pure computation, no I/O.

Components:
- funnel: Stage order, per-stage parameters, cases, status classification
- statistics: Percentiles, mean, fixed-width histograms
- sampling: Injectable uniform source, Box–Muller normal deviates
- monte_carlo: Chunked, cancellable revenue simulation over in-flight cases
- runner: Latest-request-wins coordination of simulation runs, bounded session registry
- steady_state: Deterministic equilibrium cascade for a constant intake
- pipeline: Expected value of today's caseload with appeal continuation, collection
  projection and federal-court opportunity
"""
