"""Terminal progress bar for an analysis run."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Optional

from tqdm import tqdm

from .events import FormCompletedEvent, OverallProgressEvent

if TYPE_CHECKING:
    from .orchestrator import AnalysisOrchestrator


class ProgressBarListener:
    """Renders overall progress with tqdm.

    The bar is created on the first overall event, since that is the first
    time the total is known. Extra keyword arguments are passed to `tqdm`.

    Usage:
        with ProgressBarListener().attach(orchestrator):
            orchestrator.analyze_returns(forms, "2024-03-31")
    """

    def __init__(self, desc: str = "Analyzing returns", **tqdm_kwargs: Any):
        self.desc = desc
        self._tqdm_kwargs = tqdm_kwargs
        self._bar: Optional[tqdm] = None
        self._orchestrator: Optional["AnalysisOrchestrator"] = None
        self._lock = threading.Lock()
        self.failed = 0
        self._last_status = ""

    def attach(self, orchestrator: "AnalysisOrchestrator") -> "ProgressBarListener":
        self._orchestrator = orchestrator
        orchestrator.add_completion_listener(self.on_completion)
        orchestrator.add_overall_listener(self.on_overall)
        return self

    def detach(self) -> None:
        if self._orchestrator is None:
            return
        self._orchestrator.remove_completion_listener(self.on_completion)
        self._orchestrator.remove_overall_listener(self.on_overall)
        self._orchestrator = None

    def on_completion(self, event: FormCompletedEvent) -> None:
        with self._lock:
            if self._bar is not None and self._bar.n >= self._bar.total:
                # Previous run finished; this event opens a new one.
                self._reset()
            if not event.success:
                self.failed += 1
            status = "done" if event.success else "failed"
            self._last_status = f"{event.form_code} {status}"

    def on_overall(self, event: OverallProgressEvent) -> None:
        with self._lock:
            if self._bar is not None and (
                event.completed == 1 or event.completed < self._bar.n or event.total != self._bar.total
            ):
                self._close_bar()
            if self._bar is None:
                self._bar = tqdm(total=event.total, desc=self.desc, unit="form", **self._tqdm_kwargs)
            self._bar.update(event.completed - self._bar.n)
            if event.done and self.failed:
                self._bar.set_postfix_str(f"{self.failed} failed")
            elif self._last_status:
                self._bar.set_postfix_str(self._last_status)

    def _close_bar(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def _reset(self) -> None:
        self._close_bar()
        self.failed = 0
        self._last_status = ""

    @property
    def position(self) -> int:
        return self._bar.n if self._bar is not None else 0

    @property
    def total(self) -> int:
        return self._bar.total if self._bar is not None else 0

    def close(self) -> None:
        self.detach()
        with self._lock:
            self._close_bar()

    def __enter__(self) -> "ProgressBarListener":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
