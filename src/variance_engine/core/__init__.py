"""Domain records, errors and instance resolution."""

from variance_engine.core.exceptions import (
    AnalysisFailedError,
    ConfigurationError,
    GatewayError,
    GatewayErrorCode,
    ResolutionError,
    VarianceEngineError,
)
from variance_engine.core.models import (
    AnalysisResult,
    FormInstance,
    InstanceMatch,
    ReferencedCell,
    ReturnConfig,
    SummaryRecord,
    ValidationResult,
    VarianceRow,
)
from variance_engine.core.statistics import (
    VarianceStatistics,
    calculate_variance_statistics,
    count_meaningful_differences,
    filter_variances,
    has_meaningful_differences,
)

__all__ = [
    "AnalysisFailedError",
    "ConfigurationError",
    "GatewayError",
    "GatewayErrorCode",
    "ResolutionError",
    "VarianceEngineError",
    "AnalysisResult",
    "FormInstance",
    "InstanceMatch",
    "ReferencedCell",
    "ReturnConfig",
    "SummaryRecord",
    "ValidationResult",
    "VarianceRow",
    "VarianceStatistics",
    "calculate_variance_statistics",
    "count_meaningful_differences",
    "filter_variances",
    "has_meaningful_differences",
]
