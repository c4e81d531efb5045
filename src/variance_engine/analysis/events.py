"""Progress events emitted during an analysis run.

Three independent streams:
- `StageEvent`: a form's pipeline entered a new stage.
- `FormCompletedEvent`: a form's pipeline finished, successfully or not.
- `OverallProgressEvent`: forms completed so far out of the total.

Listeners are plain callables invoked synchronously, on the worker thread that
produced the event. A listener that raises is logged and otherwise ignored so
it cannot fail the pipeline that emitted the event.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from ..core.models import AnalysisResult
from ..utils.logging import get_logger

logger = get_logger(__name__)


class Stage(str, Enum):
    """Stages of one form's pipeline, in order."""

    FETCHING_VERSIONS = "FETCHING_VERSIONS"
    FINDING_BASE = "FINDING_BASE"
    FINDING_COMPARISON = "FINDING_COMPARISON"
    ANALYZING_VARIANCES = "ANALYZING_VARIANCES"
    VALIDATING = "VALIDATING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (Stage.COMPLETE, Stage.FAILED)


@dataclass(frozen=True)
class StageEvent:
    form_code: str
    form_name: str
    stage: Stage
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FormCompletedEvent:
    form_code: str
    form_name: str
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    result: Optional[AnalysisResult] = None


@dataclass(frozen=True)
class OverallProgressEvent:
    completed: int
    total: int

    @property
    def done(self) -> bool:
        return self.completed >= self.total


E = TypeVar("E")


class ListenerList(Generic[E]):
    """Thread-safe registry of callbacks for one event type."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Callable[[E], None]] = []
        self._lock = threading.Lock()

    def add(self, listener: Callable[[E], None]) -> Callable[[E], None]:
        with self._lock:
            self._listeners.append(listener)
        return listener

    def remove(self, listener: Callable[[E], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(self, event: E) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed", extra={"event_stream": self.name})


class AnalysisEvents:
    """The three event streams of an analysis run."""

    def __init__(self) -> None:
        self.stages: ListenerList[StageEvent] = ListenerList("stage")
        self.completions: ListenerList[FormCompletedEvent] = ListenerList("completion")
        self.overall: ListenerList[OverallProgressEvent] = ListenerList("overall")
