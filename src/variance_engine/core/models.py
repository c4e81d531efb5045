"""Canonical records produced by one analysis run.

The gateway decodes loosely-shaped platform payloads into these types; the
orchestrator assembles them into `AnalysisResult` objects. None of them are
mutated after construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .statistics import count_meaningful_differences

ISO_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

SUBTOTAL_SUFFIX = " (Subtotal)"

# Column names of the downstream variance record shape.
COLUMN_CELL_REFERENCE = "Cell Reference"
COLUMN_CELL_DESCRIPTION = "Cell Description"
COLUMN_DIFFERENCE = "Difference"
COLUMN_PERCENT_DIFFERENCE = "% Difference"


class FormInstance(BaseModel):
    """One dated snapshot of a form."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    reference_date: str = Field(alias="referenceDate")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class VarianceRow(BaseModel):
    """One comparable cell between a comparison and a base instance."""

    model_config = ConfigDict(frozen=True)

    cell_reference: str
    cell_description: str = ""
    comparison_date: str
    comparison_value: Any = ""
    base_date: str
    base_value: Any = ""
    difference: Any = ""
    percent_difference: Any = ""

    @property
    def is_subtotal(self) -> bool:
        return self.cell_reference.endswith(SUBTOTAL_SUFFIX)

    def to_record(self) -> Dict[str, Any]:
        """Render the row keyed the way spreadsheet and storage consumers expect.

        The two value columns are keyed by their instance reference dates.
        """
        return {
            COLUMN_CELL_REFERENCE: self.cell_reference,
            COLUMN_CELL_DESCRIPTION: self.cell_description,
            self.comparison_date: self.comparison_value,
            self.base_date: self.base_value,
            COLUMN_DIFFERENCE: self.difference,
            COLUMN_PERCENT_DIFFERENCE: self.percent_difference,
        }


class ReferencedCell(BaseModel):
    """A cell named by a validation rule."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cell: str
    value: Any = ""
    instance_id: str = Field(alias="instanceId")
    page_name: str = Field(alias="pageName")
    form: str
    reference_date: str = Field(alias="referenceDate")

    @field_validator("value", mode="before")
    @classmethod
    def _blank_missing_value(cls, value: Any) -> Any:
        return "" if value is None else value


class ValidationResult(BaseModel):
    """One server-side rule evaluation against a single instance."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    severity: str
    expression: str
    status: str
    message: Optional[str] = None
    referenced_cells: Tuple[ReferencedCell, ...] = Field(default=(), alias="referencedCells")

    @field_validator("referenced_cells", mode="before")
    @classmethod
    def _empty_when_null(cls, value: Any) -> Any:
        return () if value is None else value

    @property
    def failed(self) -> bool:
        return self.status == "Fail"


class ReturnConfig(BaseModel):
    """One requested form to analyze."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    expected_date: Optional[str] = Field(default=None, alias="expectedDate", pattern=ISO_DATE_PATTERN)
    confirmed: bool = False


@dataclass(frozen=True)
class InstanceMatch:
    """Resolver hit plus how it was found."""

    instance: FormInstance
    search_date: str
    match_type: Literal["exact", "before"]
    days_difference: int = 0


@dataclass(frozen=True)
class SummaryRecord:
    form_name: str
    form_code: str
    variance_count: int
    validation_error_count: int
    meaningful_variance_count: int = 0


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one form's pipeline."""

    form_code: str
    form_name: str
    confirmed: bool
    base_instance: FormInstance
    comparison_instance: FormInstance
    variances: List[VarianceRow] = field(default_factory=list)
    validation_errors: List[ValidationResult] = field(default_factory=list)

    def summary(self) -> SummaryRecord:
        return SummaryRecord(
            form_name=self.form_name,
            form_code=self.form_code,
            variance_count=len(self.variances),
            validation_error_count=len(self.validation_errors),
            meaningful_variance_count=count_meaningful_differences(self.variances),
        )

    def variance_records(self) -> List[Dict[str, Any]]:
        return [row.to_record() for row in self.variances]
