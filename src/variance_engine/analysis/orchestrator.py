"""Run one variance analysis pass over many forms.

Each requested form gets its own pipeline:

    FETCHING_VERSIONS -> FINDING_BASE -> FINDING_COMPARISON
        -> ANALYZING_VARIANCES -> VALIDATING -> COMPLETE | FAILED

Pipelines run on a fixed-size thread pool and share nothing but the result
list and the completion counter. A failing form never stops the others; it is
reported through events and left out of the returned results.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .events import (
    AnalysisEvents,
    FormCompletedEvent,
    OverallProgressEvent,
    Stage,
    StageEvent,
)
from ..config.run_config import RunConfig
from ..core.exceptions import (
    AnalysisFailedError,
    ConfigurationError,
    ResolutionError,
    VarianceEngineError,
)
from ..core.interfaces import ReportingPlatform
from ..core.models import (
    AnalysisResult,
    FormInstance,
    InstanceMatch,
    ReturnConfig,
    SummaryRecord,
    ValidationResult,
)
from ..core.resolver import match_exact, match_nearest_before
from ..utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 3

UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


@dataclass
class _RunState:
    total: int
    completed: int = 0
    results: List[AnalysisResult] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)


class AnalysisOrchestrator:
    """Drives per-form pipelines against a reporting platform."""

    def __init__(
        self,
        gateway: ReportingPlatform,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        events: Optional[AnalysisEvents] = None,
    ):
        if max_concurrency < 1:
            raise ConfigurationError(
                "max_concurrency must be at least 1",
                context={"max_concurrency": max_concurrency},
                code=ConfigurationError.INVALID_CONFIGURATION,
            )
        self.gateway = gateway
        self.max_concurrency = max_concurrency
        self.events = events or AnalysisEvents()

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def add_stage_listener(self, listener: Callable[[StageEvent], None]) -> Callable[[StageEvent], None]:
        return self.events.stages.add(listener)

    def remove_stage_listener(self, listener: Callable[[StageEvent], None]) -> None:
        self.events.stages.remove(listener)

    def add_completion_listener(
        self, listener: Callable[[FormCompletedEvent], None]
    ) -> Callable[[FormCompletedEvent], None]:
        return self.events.completions.add(listener)

    def remove_completion_listener(self, listener: Callable[[FormCompletedEvent], None]) -> None:
        self.events.completions.remove(listener)

    def add_overall_listener(
        self, listener: Callable[[OverallProgressEvent], None]
    ) -> Callable[[OverallProgressEvent], None]:
        return self.events.overall.add(listener)

    def remove_overall_listener(self, listener: Callable[[OverallProgressEvent], None]) -> None:
        self.events.overall.remove(listener)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def analyze_returns(self, forms: Iterable[ReturnConfig], base_date: str) -> List[AnalysisResult]:
        """Analyze every form against ``base_date``.

        Args:
            forms: Forms to analyze. Must not be empty.
            base_date: Reference date of the base instance (``YYYY-MM-DD``).

        Returns:
            Results for the forms that succeeded, in completion order.

        Raises:
            ConfigurationError: INVALID_CONFIGURATION when ``forms`` is empty.
            AnalysisFailedError: ANALYSIS_FAILED when every form failed.
        """
        requested = list(forms)
        if not requested:
            raise ConfigurationError(
                "At least one form must be requested",
                code=ConfigurationError.INVALID_CONFIGURATION,
            )

        state = _RunState(total=len(requested))
        workers = min(self.max_concurrency, len(requested))
        logger.info(
            "Starting return analysis",
            extra={"base_date": base_date, "forms": len(requested), "workers": workers},
        )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="form") as executor:
            futures = {
                executor.submit(self._run_form, form, base_date, state): form for form in requested
            }
            for future in as_completed(futures):
                future.result()

        if not state.results:
            raise AnalysisFailedError(
                "All requested forms failed to analyze",
                context={"base_date": base_date, "forms": [form.code for form in requested]},
            )

        logger.info(
            "Return analysis finished",
            extra={"succeeded": len(state.results), "failed": state.total - len(state.results)},
        )
        return list(state.results)

    def analyze_run(self, run_config: RunConfig) -> List[AnalysisResult]:
        """Analyze the forms of a loaded run file against its base date."""
        for excluded in run_config.excluded:
            logger.info("Skipping excluded form %s (%s)", excluded.code, excluded.name)
        return self.analyze_returns(run_config.returns, run_config.base_date)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _emit(
        self,
        form: ReturnConfig,
        stage: Stage,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.events.stages.emit(
            StageEvent(
                form_code=form.code,
                form_name=form.name,
                stage=stage,
                message=message,
                metadata=metadata or {},
            )
        )

    def _run_form(self, form: ReturnConfig, base_date: str, state: _RunState) -> None:
        """Pipeline boundary: nothing raised by one form escapes this method."""
        result: Optional[AnalysisResult] = None
        error_code: Optional[str] = None
        error_message: Optional[str] = None

        try:
            result = self._analyze_form(form, base_date)
        except VarianceEngineError as exc:
            error_code, error_message = exc.code, exc.message
            logger.error(
                "Analysis failed for %s: %s",
                form.code,
                exc.message,
                extra={"form_code": form.code, "error_code": exc.code, "context": exc.context},
            )
        except Exception as exc:
            error_code, error_message = UNEXPECTED_ERROR, str(exc)
            logger.exception("Unexpected error analyzing %s", form.code, extra={"form_code": form.code})

        if result is None:
            self._emit(
                form,
                Stage.FAILED,
                f"Failed {form.name}: {error_message}",
                {"error_code": error_code},
            )

        completion = FormCompletedEvent(
            form_code=form.code,
            form_name=form.name,
            success=result is not None,
            error_code=error_code,
            error_message=error_message,
            result=result,
        )
        with state.lock:
            if result is not None:
                state.results.append(result)
            state.completed += 1
            progress = OverallProgressEvent(completed=state.completed, total=state.total)
            self.events.completions.emit(completion)
            self.events.overall.emit(progress)

    def _analyze_form(self, form: ReturnConfig, base_date: str) -> AnalysisResult:
        self._emit(form, Stage.FETCHING_VERSIONS, f"Fetching {form.name} versions")
        instances = self.gateway.list_instances(form.code)
        logger.info("Found %d instances for %s", len(instances), form.code)

        self._emit(
            form,
            Stage.FINDING_BASE,
            f"Finding base instance for {base_date}",
            {"instance_count": len(instances)},
        )
        base = match_exact(instances, base_date)
        if base is None:
            raise ResolutionError(
                f"No instance found for base date {base_date}",
                context={"form_code": form.code, "available_dates": [i.reference_date for i in instances]},
                code=ResolutionError.NO_BASE_INSTANCE,
            )
        logger.info("Base instance: %s (ID: %s)", base.instance.reference_date, base.instance.id)

        self._emit(
            form,
            Stage.FINDING_COMPARISON,
            "Finding comparison instance",
            {"base_date": base.instance.reference_date, "base_instance_id": base.instance.id},
        )
        comparison = self._select_comparison(instances, base_date, form.expected_date)
        if comparison is None:
            pivot = form.expected_date or base_date
            raise ResolutionError(
                f"No comparison instance found before {pivot}",
                context={"form_code": form.code, "available_dates": [i.reference_date for i in instances]},
                code=ResolutionError.NO_COMPARISON_INSTANCE,
            )
        logger.info(
            "Comparison instance: %s (ID: %s)",
            comparison.instance.reference_date,
            comparison.instance.id,
        )

        self._emit(
            form,
            Stage.ANALYZING_VARIANCES,
            f"Analyzing {form.name}",
            {
                "comparison_date": comparison.instance.reference_date,
                "comparison_instance_id": comparison.instance.id,
                "match_type": comparison.match_type,
                "days_difference": comparison.days_difference,
            },
        )
        variances = self.gateway.fetch_variances(form.code, comparison.instance, base.instance)

        self._emit(
            form,
            Stage.VALIDATING,
            f"Validating {form.name}",
            {"variance_count": len(variances)},
        )
        validation_errors = self._validate(form, base.instance)

        result = AnalysisResult(
            form_code=form.code,
            form_name=form.name,
            confirmed=form.confirmed,
            base_instance=base.instance,
            comparison_instance=comparison.instance,
            variances=list(variances),
            validation_errors=validation_errors,
        )
        logger.info(
            "Completed %s: %d variance records, %d validation errors",
            form.code,
            len(result.variances),
            len(result.validation_errors),
        )
        self._emit(
            form,
            Stage.COMPLETE,
            f"Completed {form.name}",
            {
                "variance_count": len(result.variances),
                "validation_error_count": len(result.validation_errors),
            },
        )
        return result

    @staticmethod
    def _select_comparison(
        instances: Sequence[FormInstance], base_date: str, expected_date: Optional[str]
    ) -> Optional[InstanceMatch]:
        """Pick the instance the base is diffed against.

        Without an expected date this is the latest instance before the base
        date. With one, it is the instance on the expected date or, failing
        that, the latest instance before the *expected* date.
        """
        if not expected_date:
            return match_nearest_before(instances, base_date)

        exact = match_exact(instances, expected_date)
        if exact is not None:
            return exact
        logger.warning(
            "No comparison instance found for expected date %s, picking closest instance before it",
            expected_date,
        )
        return match_nearest_before(instances, expected_date)

    def _validate(self, form: ReturnConfig, instance: FormInstance) -> List[ValidationResult]:
        """Best-effort: a failed validation call leaves the form with no validation errors."""
        try:
            failed = self.gateway.trigger_validation(instance)
        except Exception as exc:
            logger.warning(
                "Failed to fetch validation results for %s, continuing without them: %s",
                form.code,
                exc,
                extra={"form_code": form.code, "instance_id": instance.id},
            )
            return []
        logger.info("Found %d validation errors for %s", len(failed), form.code)
        return failed


# ----------------------------------------------------------------------
# Summaries
# ----------------------------------------------------------------------


def summarize(results: Iterable[AnalysisResult]) -> List[SummaryRecord]:
    return [result.summary() for result in results]


def log_summary(results: Sequence[AnalysisResult]) -> None:
    """Write the end-of-run summary to the log."""
    logger.info("=" * 80)
    logger.info("ANALYSIS SUMMARY")
    logger.info("=" * 80)
    for result in results:
        logger.info("%s (%s):", result.form_name, result.form_code)
        logger.info(
            "  Comparison: %s -> %s",
            result.comparison_instance.reference_date,
            result.base_instance.reference_date,
        )
        summary = result.summary()
        logger.info(
            "  Variances: %d records (%d meaningful)",
            summary.variance_count,
            summary.meaningful_variance_count,
        )
        logger.info("  Validation Errors: %d records", summary.validation_error_count)
    logger.info("=" * 80)
