from __future__ import annotations

import logging
import threading
import time
from typing import Dict, List, Optional, Union

import pytest

from variance_engine.analysis.events import Stage
from variance_engine.analysis.orchestrator import AnalysisOrchestrator, log_summary, summarize
from variance_engine.config.run_config import RunConfig
from variance_engine.core.exceptions import (
    AnalysisFailedError,
    ConfigurationError,
    GatewayError,
    GatewayErrorCode,
)
from variance_engine.core.interfaces import ReportingPlatform
from variance_engine.core.models import FormInstance, ReturnConfig, ValidationResult, VarianceRow

BASE_DATE = "2024-03-31"

QUARTER = [
    FormInstance(id="jan", reference_date="2024-01-31"),
    FormInstance(id="feb", reference_date="2024-02-29"),
    FormInstance(id="mar", reference_date="2024-03-31"),
]


def _failure(expression: str = "A1 > 0") -> ValidationResult:
    return ValidationResult(severity="Error", expression=expression, status="Fail")


class FakeGateway:
    """In-memory reporting platform that records calls and concurrency."""

    def __init__(
        self,
        instances: Optional[Dict[str, Union[List[FormInstance], Exception]]] = None,
        *,
        validation: Union[List[ValidationResult], Exception, None] = None,
        variance_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.instances = instances or {}
        self.validation = validation if validation is not None else []
        self.variance_error = variance_error
        self.delay = delay
        self.variance_calls: List[tuple] = []
        self.validation_calls: List[FormInstance] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def list_instances(self, form_code: str) -> List[FormInstance]:
        # First call of a pipeline; `pipeline_finished` closes it.
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delay)
        found = self.instances.get(form_code, QUARTER)
        if isinstance(found, Exception):
            raise found
        return list(found)

    def pipeline_finished(self, event) -> None:
        with self._lock:
            self.active -= 1

    def fetch_variances(self, form_code, instance_a, instance_b) -> List[VarianceRow]:
        self.variance_calls.append((form_code, instance_a.id, instance_b.id))
        if self.variance_error is not None:
            raise self.variance_error
        return [
            VarianceRow(
                cell_reference="A1",
                comparison_date=instance_a.reference_date,
                comparison_value=100,
                base_date=instance_b.reference_date,
                base_value=150,
                difference=50,
                percent_difference="50.00",
            )
        ]

    def trigger_validation(self, instance: FormInstance) -> List[ValidationResult]:
        self.validation_calls.append(instance)
        if isinstance(self.validation, Exception):
            raise self.validation
        return list(self.validation)


class Recorder:
    def __init__(self, orchestrator: AnalysisOrchestrator):
        self.stages = []
        self.completions = []
        self.overall = []
        self._lock = threading.Lock()
        orchestrator.add_stage_listener(self._record(self.stages))
        orchestrator.add_completion_listener(self._record(self.completions))
        orchestrator.add_overall_listener(self._record(self.overall))

    def _record(self, bucket):
        def listener(event):
            with self._lock:
                bucket.append(event)

        return listener

    def stages_for(self, form_code: str) -> List[Stage]:
        return [e.stage for e in self.stages if e.form_code == form_code]


def _forms(count: int) -> List[ReturnConfig]:
    return [ReturnConfig(code=f"F{i}", name=f"Form {i}") for i in range(count)]


# -----------------------------------------------------------------------------
# Happy path
# -----------------------------------------------------------------------------


def test_single_form_pipeline():
    gateway = FakeGateway(validation=[_failure()])
    orchestrator = AnalysisOrchestrator(gateway)
    recorder = Recorder(orchestrator)

    results = orchestrator.analyze_returns([ReturnConfig(code="ARF1100", name="Capital", confirmed=True)], BASE_DATE)

    assert len(results) == 1
    result = results[0]
    assert result.form_code == "ARF1100"
    assert result.confirmed is True
    assert result.base_instance.id == "mar"
    assert result.comparison_instance.id == "feb"
    assert len(result.variances) == 1
    assert result.validation_errors == [_failure()]
    assert gateway.variance_calls == [("ARF1100", "feb", "mar")]
    assert [i.id for i in gateway.validation_calls] == ["mar"]

    assert recorder.stages_for("ARF1100") == [
        Stage.FETCHING_VERSIONS,
        Stage.FINDING_BASE,
        Stage.FINDING_COMPARISON,
        Stage.ANALYZING_VARIANCES,
        Stage.VALIDATING,
        Stage.COMPLETE,
    ]
    assert len(recorder.completions) == 1
    assert recorder.completions[0].success
    assert recorder.completions[0].result is result
    assert [(e.completed, e.total) for e in recorder.overall] == [(1, 1)]


def test_stage_metadata_describes_resolution():
    orchestrator = AnalysisOrchestrator(FakeGateway())
    recorder = Recorder(orchestrator)

    orchestrator.analyze_returns(_forms(1), BASE_DATE)

    by_stage = {e.stage: e.metadata for e in recorder.stages}
    assert by_stage[Stage.FINDING_BASE] == {"instance_count": 3}
    assert by_stage[Stage.FINDING_COMPARISON]["base_instance_id"] == "mar"
    assert by_stage[Stage.ANALYZING_VARIANCES]["match_type"] == "before"
    assert by_stage[Stage.ANALYZING_VARIANCES]["days_difference"] == 31
    assert by_stage[Stage.COMPLETE] == {"variance_count": 1, "validation_error_count": 0}


def test_expected_date_exact_match_is_used():
    gateway = FakeGateway()
    orchestrator = AnalysisOrchestrator(gateway)

    results = orchestrator.analyze_returns(
        [ReturnConfig(code="F", name="F", expected_date="2024-01-31")], BASE_DATE
    )

    assert results[0].comparison_instance.id == "jan"


def test_missing_expected_date_falls_back_before_expected_date():
    orchestrator = AnalysisOrchestrator(FakeGateway())

    results = orchestrator.analyze_returns(
        [ReturnConfig(code="F", name="F", expected_date="2024-02-15")], BASE_DATE
    )

    assert results[0].comparison_instance.reference_date == "2024-01-31"


def test_validation_errors_are_taken_from_the_gateway_as_returned():
    gateway = FakeGateway(validation=[_failure("x"), _failure("y")])

    results = AnalysisOrchestrator(gateway).analyze_returns(_forms(1), BASE_DATE)

    assert [v.expression for v in results[0].validation_errors] == ["x", "y"]


# -----------------------------------------------------------------------------
# Failure isolation
# -----------------------------------------------------------------------------


def test_validation_failure_is_best_effort(caplog):
    gateway = FakeGateway(validation=GatewayError("validation down", code=GatewayErrorCode.TIMEOUT))
    orchestrator = AnalysisOrchestrator(gateway)
    recorder = Recorder(orchestrator)

    with caplog.at_level(logging.WARNING):
        results = orchestrator.analyze_returns(_forms(1), BASE_DATE)

    assert results[0].validation_errors == []
    assert recorder.completions[0].success
    assert "Failed to fetch validation results" in caplog.text


def test_one_failing_form_does_not_stop_the_others():
    gateway = FakeGateway({"F2": GatewayError.from_status(404, what="list")})
    orchestrator = AnalysisOrchestrator(gateway, max_concurrency=2)
    recorder = Recorder(orchestrator)

    results = orchestrator.analyze_returns(_forms(4), BASE_DATE)

    assert sorted(r.form_code for r in results) == ["F0", "F1", "F3"]
    failed = [e for e in recorder.completions if not e.success]
    assert len(failed) == 1
    assert failed[0].form_code == "F2"
    assert failed[0].error_code == GatewayErrorCode.NOT_FOUND
    assert failed[0].result is None
    assert recorder.stages_for("F2") == [Stage.FETCHING_VERSIONS, Stage.FAILED]
    assert len(recorder.completions) == 4


def test_missing_base_instance_fails_the_form():
    gateway = FakeGateway({"F0": QUARTER[:2]})
    orchestrator = AnalysisOrchestrator(gateway)
    recorder = Recorder(orchestrator)

    results = orchestrator.analyze_returns(_forms(2), BASE_DATE)

    assert [r.form_code for r in results] == ["F1"]
    failed = next(e for e in recorder.completions if not e.success)
    assert failed.error_code == "NO_BASE_INSTANCE"


def test_missing_comparison_instance_fails_the_form():
    gateway = FakeGateway({"F0": QUARTER[2:]})
    orchestrator = AnalysisOrchestrator(gateway)
    recorder = Recorder(orchestrator)

    orchestrator.analyze_returns(_forms(2), BASE_DATE)

    failed = next(e for e in recorder.completions if not e.success)
    assert failed.form_code == "F0"
    assert failed.error_code == "NO_COMPARISON_INSTANCE"
    assert gateway.variance_calls == [("F1", "feb", "mar")]


def test_variance_failure_is_a_hard_failure():
    gateway = FakeGateway(variance_error=GatewayError("bad", code=GatewayErrorCode.VALIDATION_ERROR))
    orchestrator = AnalysisOrchestrator(gateway)
    recorder = Recorder(orchestrator)

    with pytest.raises(AnalysisFailedError) as exc_info:
        orchestrator.analyze_returns(_forms(2), BASE_DATE)

    assert exc_info.value.code == "ANALYSIS_FAILED"
    assert {e.error_code for e in recorder.completions} == {GatewayErrorCode.VALIDATION_ERROR}
    assert gateway.validation_calls == []


def test_unexpected_exception_is_contained():
    gateway = FakeGateway({"F0": RuntimeError("kaboom")})
    orchestrator = AnalysisOrchestrator(gateway)
    recorder = Recorder(orchestrator)

    results = orchestrator.analyze_returns(_forms(2), BASE_DATE)

    assert [r.form_code for r in results] == ["F1"]
    failed = next(e for e in recorder.completions if not e.success)
    assert failed.error_code == "UNEXPECTED_ERROR"
    assert failed.error_message == "kaboom"


def test_failing_listener_does_not_break_the_run():
    orchestrator = AnalysisOrchestrator(FakeGateway())

    def broken(event):
        raise RuntimeError("listener bug")

    orchestrator.add_stage_listener(broken)
    orchestrator.add_overall_listener(broken)

    assert len(orchestrator.analyze_returns(_forms(2), BASE_DATE)) == 2


# -----------------------------------------------------------------------------
# Request validation
# -----------------------------------------------------------------------------


def test_empty_request_is_rejected_before_any_work():
    gateway = FakeGateway()
    orchestrator = AnalysisOrchestrator(gateway)
    recorder = Recorder(orchestrator)

    with pytest.raises(ConfigurationError) as exc_info:
        orchestrator.analyze_returns([], BASE_DATE)

    assert exc_info.value.code == "INVALID_CONFIGURATION"
    assert gateway.max_active == 0
    assert recorder.stages == []


def test_rejects_non_positive_concurrency():
    with pytest.raises(ConfigurationError):
        AnalysisOrchestrator(FakeGateway(), max_concurrency=0)


# -----------------------------------------------------------------------------
# Concurrency and progress
# -----------------------------------------------------------------------------


def test_concurrency_is_bounded():
    gateway = FakeGateway({"F4": GatewayError.from_status(404, what="list")}, delay=0.05)
    orchestrator = AnalysisOrchestrator(gateway, max_concurrency=2)
    orchestrator.add_completion_listener(gateway.pipeline_finished)

    results = orchestrator.analyze_returns(_forms(6), BASE_DATE)

    assert len(results) == 5
    assert gateway.max_active == 2
    assert gateway.active == 0


def test_overall_progress_is_monotonic():
    gateway = FakeGateway({"F3": GatewayError.from_status(500, what="list")}, delay=0.01)
    orchestrator = AnalysisOrchestrator(gateway, max_concurrency=3)
    recorder = Recorder(orchestrator)

    orchestrator.analyze_returns(_forms(8), BASE_DATE)

    assert [e.completed for e in recorder.overall] == list(range(1, 9))
    assert all(e.total == 8 for e in recorder.overall)
    assert recorder.overall[-1].done


def test_stage_order_is_fixed_per_form():
    orchestrator = AnalysisOrchestrator(FakeGateway(delay=0.01), max_concurrency=3)
    recorder = Recorder(orchestrator)

    orchestrator.analyze_returns(_forms(5), BASE_DATE)

    for form in _forms(5):
        stages = recorder.stages_for(form.code)
        assert stages[0] == Stage.FETCHING_VERSIONS
        assert stages[-1] == Stage.COMPLETE
        assert len(stages) == 6


def test_removed_listener_is_not_called():
    orchestrator = AnalysisOrchestrator(FakeGateway())
    seen = []
    orchestrator.add_completion_listener(seen.append)
    orchestrator.remove_completion_listener(seen.append)

    orchestrator.analyze_returns(_forms(1), BASE_DATE)

    assert seen == []


# -----------------------------------------------------------------------------
# Run files and summaries
# -----------------------------------------------------------------------------


def test_analyze_run_skips_excluded_forms(caplog):
    gateway = FakeGateway()
    run = RunConfig(
        base_date=BASE_DATE,
        returns=[ReturnConfig(code="A", name="Alpha")],
        excluded=[ReturnConfig(code="B", name="Beta")],
    )

    with caplog.at_level(logging.INFO):
        results = AnalysisOrchestrator(gateway).analyze_run(run)

    assert [r.form_code for r in results] == ["A"]
    assert [call[0] for call in gateway.variance_calls] == ["A"]
    assert "Skipping excluded form B (Beta)" in caplog.text


def test_summarize_and_log_summary(caplog):
    results = AnalysisOrchestrator(FakeGateway(validation=[_failure()])).analyze_returns(_forms(1), BASE_DATE)

    summary = summarize(results)
    assert summary[0].form_code == "F0"
    assert summary[0].variance_count == 1
    assert summary[0].validation_error_count == 1
    assert summary[0].meaningful_variance_count == 1

    with caplog.at_level(logging.INFO):
        log_summary(results)
    assert "ANALYSIS SUMMARY" in caplog.text
    assert "Comparison: 2024-02-29 -> 2024-03-31" in caplog.text
    assert "Variances: 1 records (1 meaningful)" in caplog.text


def test_fake_gateway_satisfies_protocol():
    assert isinstance(FakeGateway(), ReportingPlatform)
