"""
Forecast Session — latest-request-wins run coordination.

A presentation layer re-runs the simulation every time an assumption
changes. A new request must INVALIDATE the in-flight run, never merge with
it: `ForecastSession.submit` cancels the previous run before starting the
next, and results are only handed out for the current generation.
`SessionRegistry` keeps one session per caller-chosen id, bounded.
"""

from typing import Callable, Optional, Sequence

import structlog

from funnelcast.engine.funnel import Case, FunnelParameters, VarianceConfig
from funnelcast.engine.monte_carlo import (
    MonteCarloEngine,
    SimulationProgress,
    SimulationResult,
    SimulationRun,
)
from funnelcast.engine.sampling import RandomSource
from funnelcast.exceptions import ConfigurationError, SimulationCancelledError

logger = structlog.get_logger(__name__)


class ForecastSession:
    """
    Owns at most one live SimulationRun.

    Not thread-safe: intended for a single event loop, like the rest of the
    engine.
    """

    def __init__(self, engine: Optional[MonteCarloEngine] = None):
        self.engine = engine or MonteCarloEngine()
        self.generation = 0
        self._current: Optional[SimulationRun] = None

    @property
    def current(self) -> Optional[SimulationRun]:
        return self._current

    def submit(
        self,
        cases: Sequence[Case],
        params: FunnelParameters,
        variance: VarianceConfig,
        trial_count: int,
        random_source: Optional[RandomSource] = None,
        seed: Optional[int] = None,
    ) -> SimulationRun:
        """Start a new run, cancelling whatever was still in flight."""
        # Validate first: a rejected request must not kill the previous run
        run = self.engine.start(
            cases, params, variance, trial_count,
            random_source=random_source, seed=seed,
        )
        previous = self._current
        if previous is not None and not previous.is_complete:
            previous.cancel()
            logger.info(
                "forecast_superseded",
                generation=self.generation,
                completed=previous.progress.completed,
            )
        self.generation += 1
        self._current = run
        return run

    def cancel(self) -> None:
        if self._current is not None:
            self._current.cancel()

    async def run_latest(
        self,
        on_progress: Optional[Callable[[SimulationProgress], object]] = None,
    ) -> SimulationResult:
        """
        Drive the current run to completion.

        Raises SimulationCancelledError if a newer submit superseded it
        while it was yielding to the event loop.
        """
        run = self._current
        if run is None:
            raise SimulationCancelledError(0, 0)
        return await run.run_async(on_progress)


class SessionRegistry:
    """
    Forecast sessions keyed by a caller-chosen session id.

    Bounded: once `max_sessions` ids are live, the least recently used one
    is evicted and its in-flight run cancelled. An entry is released as soon
    as the run it holds settles.
    """

    def __init__(self, engine: MonteCarloEngine, max_sessions: int = 256):
        if not isinstance(max_sessions, int) or isinstance(max_sessions, bool) or max_sessions < 1:
            raise ConfigurationError(f"max_sessions must be a positive integer (got {max_sessions!r})")
        self.engine = engine
        self._max_sessions = max_sessions
        self._sessions: dict[str, ForecastSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def submit(
        self,
        session_id: str,
        cases: Sequence[Case],
        params: FunnelParameters,
        variance: VarianceConfig,
        trial_count: int,
        seed: Optional[int] = None,
    ) -> SimulationRun:
        """Start a run in `session_id`, superseding that session's previous run."""
        session = self._sessions.pop(session_id, None) or ForecastSession(self.engine)
        try:
            run = session.submit(cases, params, variance, trial_count, seed=seed)
        except ConfigurationError:
            # A rejected request leaves an existing session as it was
            if session.current is not None:
                self._sessions[session_id] = session
            raise

        # Most recently used last
        self._sessions[session_id] = session
        while len(self._sessions) > self._max_sessions:
            oldest_id = next(iter(self._sessions))
            evicted = self._sessions.pop(oldest_id)
            evicted.cancel()
            logger.warning("forecast_session_evicted", session_id=oldest_id, live=len(self._sessions))
        return run

    def release(self, session_id: str, run: SimulationRun) -> None:
        """Drop the session if `run` is still its latest run."""
        session = self._sessions.get(session_id)
        if session is not None and session.current is run:
            del self._sessions[session_id]
