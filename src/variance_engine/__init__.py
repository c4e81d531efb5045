"""Variance engine - regulatory return variance analysis against a reporting platform."""

from typing import TYPE_CHECKING

__all__ = ["Settings", "AnalysisOrchestrator", "ReportingGateway", "build_orchestrator"]

if TYPE_CHECKING:
    from .analysis.factory import build_orchestrator
    from .analysis.orchestrator import AnalysisOrchestrator
    from .config.settings import Settings
    from .gateway.client import ReportingGateway


def __getattr__(name: str):
    if name == "Settings":
        from .config.settings import Settings

        return Settings
    if name == "AnalysisOrchestrator":
        from .analysis.orchestrator import AnalysisOrchestrator

        return AnalysisOrchestrator
    if name == "ReportingGateway":
        from .gateway.client import ReportingGateway

        return ReportingGateway
    if name == "build_orchestrator":
        from .analysis.factory import build_orchestrator

        return build_orchestrator
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
