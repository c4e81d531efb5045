"""Exception hierarchy for the variance engine.

Every error carries a stable ``code`` so callers (dashboard, CLI, logs) can
branch on the failure kind without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional


@dataclass(eq=False)
class VarianceEngineError(Exception):
    """Base exception type for all variance engine errors."""

    message: str
    context: Optional[Dict[str, Any]] = None
    code: str = ""

    default_code: ClassVar[str] = "ENGINE_ERROR"

    def __post_init__(self) -> None:
        if not self.code:
            self.code = self.default_code
        super().__init__(self.message)

    def __str__(self) -> str:
        if not self.context:
            return f"[{self.code}] {self.message}"
        return f"[{self.code}] {self.message} | context={self.context}"


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


class ConfigurationError(VarianceEngineError):
    """Raised when a request or run file is missing or invalid."""

    INVALID_CONFIGURATION: ClassVar[str] = "INVALID_CONFIGURATION"
    CONFIG_LOAD_FAILED: ClassVar[str] = "CONFIG_LOAD_FAILED"
    CONFIG_PARSE_FAILED: ClassVar[str] = "CONFIG_PARSE_FAILED"
    CONFIG_VALIDATION_FAILED: ClassVar[str] = "CONFIG_VALIDATION_FAILED"

    default_code: ClassVar[str] = "INVALID_CONFIGURATION"


# -----------------------------------------------------------------------------
# Instance resolution
# -----------------------------------------------------------------------------


class ResolutionError(VarianceEngineError):
    """Raised when a base or comparison instance cannot be resolved."""

    NO_BASE_INSTANCE: ClassVar[str] = "NO_BASE_INSTANCE"
    NO_COMPARISON_INSTANCE: ClassVar[str] = "NO_COMPARISON_INSTANCE"

    default_code: ClassVar[str] = "NO_BASE_INSTANCE"


# -----------------------------------------------------------------------------
# Gateway
# -----------------------------------------------------------------------------


class GatewayErrorCode:
    """Failure kinds reported by the reporting gateway."""

    AUTH_FAILED = "AUTH_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    REQUEST_FAILED = "REQUEST_FAILED"


_RETRYABLE_CODES = frozenset(
    {
        GatewayErrorCode.NETWORK_ERROR,
        GatewayErrorCode.TIMEOUT,
        GatewayErrorCode.RATE_LIMIT,
    }
)


@dataclass(eq=False)
class GatewayError(VarianceEngineError):
    """Raised for any failed call to the reporting platform."""

    status_code: Optional[int] = field(default=None)

    default_code: ClassVar[str] = GatewayErrorCode.REQUEST_FAILED

    @property
    def is_retryable(self) -> bool:
        """Transport failures, timeouts, 429 and 5xx are worth another attempt."""
        if self.code in _RETRYABLE_CODES:
            return True
        return self.status_code is not None and self.status_code >= 500

    @classmethod
    def from_status(cls, status_code: int, *, what: str) -> "GatewayError":
        """Map a non-success HTTP status onto the gateway taxonomy."""
        if status_code == 401:
            return cls(f"{what}: authentication failed", code=GatewayErrorCode.AUTH_FAILED, status_code=401)
        if status_code == 404:
            return cls(f"{what}: resource not found", code=GatewayErrorCode.NOT_FOUND, status_code=404)
        if status_code == 429:
            return cls(f"{what}: rate limit exceeded", code=GatewayErrorCode.RATE_LIMIT, status_code=429)
        return cls(
            f"{what}: request failed with status {status_code}",
            code=GatewayErrorCode.REQUEST_FAILED,
            status_code=status_code,
        )


# -----------------------------------------------------------------------------
# Orchestration
# -----------------------------------------------------------------------------


class AnalysisFailedError(VarianceEngineError):
    """Raised when every requested form failed to analyze."""

    default_code: ClassVar[str] = "ANALYSIS_FAILED"
