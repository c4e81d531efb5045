"""Concurrent per-form analysis with progress events."""

from variance_engine.analysis.events import (
    AnalysisEvents,
    FormCompletedEvent,
    OverallProgressEvent,
    Stage,
    StageEvent,
)
from variance_engine.analysis.orchestrator import AnalysisOrchestrator, log_summary, summarize
from variance_engine.analysis.progress_bar import ProgressBarListener

__all__ = [
    "AnalysisEvents",
    "FormCompletedEvent",
    "OverallProgressEvent",
    "Stage",
    "StageEvent",
    "AnalysisOrchestrator",
    "ProgressBarListener",
    "log_summary",
    "summarize",
]
