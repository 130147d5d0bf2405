"""
FunnelCast Exceptions.

Centralized exception definitions with:
- Error codes for client handling
- HTTP status code mapping
- Structured details (every configuration issue is listed)

Configuration errors are always raised BEFORE computation starts, so a
legitimate zero-revenue forecast can never be confused with a rejected one.
"""

from enum import Enum
from typing import Any, Dict, Iterable, Optional


class ErrorCode(str, Enum):
    """Application error codes."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"

    # Configuration errors (2xxx)
    INVALID_CONFIGURATION = "E2000"
    MISSING_STAGE_PARAMETERS = "E2001"
    INVALID_TRIAL_COUNT = "E2002"

    # Simulation lifecycle errors (3xxx)
    SIMULATION_INCOMPLETE = "E3000"
    SIMULATION_CANCELLED = "E3001"


class FunnelCastError(Exception):
    """Base exception for FunnelCast."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(FunnelCastError):
    """
    Out-of-range, missing or inconsistent inputs.

    `issues` lists every problem found, not just the first one.
    """

    def __init__(
        self,
        message: str,
        issues: Optional[Iterable[str]] = None,
        code: ErrorCode = ErrorCode.INVALID_CONFIGURATION,
    ):
        self.issues = list(issues) if issues else [message]
        super().__init__(
            message=message,
            code=code,
            status_code=422,
            details={"issues": self.issues},
        )

    @classmethod
    def from_issues(cls, context: str, issues: list[str]) -> "ConfigurationError":
        summary = f"Invalid {context}: " + "; ".join(issues)
        return cls(summary, issues=issues)


class SimulationIncompleteError(FunnelCastError):
    """Result requested before the final chunk of trials ran."""

    def __init__(self, completed: int, total: int):
        super().__init__(
            message=f"Simulation not finished: {completed}/{total} trials completed",
            code=ErrorCode.SIMULATION_INCOMPLETE,
            status_code=409,
            details={"completed": completed, "total": total},
        )


class SimulationCancelledError(FunnelCastError):
    """Result requested from a run that was cancelled or superseded."""

    def __init__(self, completed: int, total: int):
        super().__init__(
            message="Simulation was cancelled; its partial output is discarded",
            code=ErrorCode.SIMULATION_CANCELLED,
            status_code=409,
            details={"completed": completed, "total": total},
        )
