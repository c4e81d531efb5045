"""Turn decoded platform payloads into canonical records.

Default policy for optional or missing fields:

- ``cell.description`` null or absent -> ``""``
- ``cell.subtotal`` absent -> not a subtotal
- missing ``instances[i]`` or its ``value`` -> ``""``
- ``cellNotPresent`` true -> value ``""`` regardless of what was sent
- second instance without ``difference`` -> difference is that instance's raw
  value (or ``""``) and percent difference is ``""``; the platform sends no
  diff when there is no baseline to diff against
- ``validationDetails`` absent -> no results (logged)
- a validation detail that does not decode -> skipped (logged)
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from .schemas import CellAnalysisPayload, CellInstancePayload, ValidationResponsePayload
from ..core.models import SUBTOTAL_SUFFIX, FormInstance, ValidationResult, VarianceRow
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Internal key columns of grid (repeating) sections; never real variances.
GRID_KEY_PATTERN = re.compile(r"GRID\d*KEY")


def _instance_at(instances: Sequence[CellInstancePayload], index: int) -> Optional[CellInstancePayload]:
    return instances[index] if len(instances) > index else None


def _displayed_value(instance: Optional[CellInstancePayload]) -> Any:
    if instance is None or instance.cell_not_present:
        return ""
    return "" if instance.value is None else instance.value


def to_variance_row(
    record: CellAnalysisPayload, comparison: FormInstance, base: FormInstance
) -> Optional[VarianceRow]:
    """Build one row, or None for grid key artifacts."""
    cell = record.cell
    if GRID_KEY_PATTERN.search(cell.name):
        return None

    first = _instance_at(record.instances, 0)
    second = _instance_at(record.instances, 1)

    if second is None or second.difference is None:
        raw = None if second is None else second.value
        difference: Any = "" if raw is None else raw
        percent: Any = ""
    else:
        difference = second.difference.value_diff
        percent = second.difference.percentage_diff

    return VarianceRow(
        cell_reference=f"{cell.name}{SUBTOTAL_SUFFIX}" if cell.subtotal else cell.name,
        cell_description=cell.description or "",
        comparison_date=comparison.reference_date,
        comparison_value=_displayed_value(first),
        base_date=base.reference_date,
        base_value=_displayed_value(second),
        difference=difference,
        percent_difference=percent,
    )


def to_variance_rows(
    records: Iterable[CellAnalysisPayload], comparison: FormInstance, base: FormInstance
) -> List[VarianceRow]:
    """Rows sorted by cell reference, grid keys dropped."""
    rows = [row for row in (to_variance_row(r, comparison, base) for r in records) if row is not None]
    rows.sort(key=lambda row: row.cell_reference)
    return rows


def to_validation_results(data: Any, instance: FormInstance) -> List[ValidationResult]:
    """Decode every well-formed validation detail, passes and warnings included."""
    try:
        envelope = ValidationResponsePayload.model_validate(data)
    except ValidationError:
        envelope = None
    if envelope is None or envelope.validation_details is None:
        logger.warning(
            "Invalid validation response structure, returning empty results",
            extra={"instance_id": instance.id},
        )
        return []

    results: List[ValidationResult] = []
    for detail in envelope.validation_details:
        try:
            results.append(ValidationResult.model_validate(detail))
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid validation detail",
                extra={"instance_id": instance.id, "error": str(exc)},
            )

    failures = sum(1 for result in results if result.failed)
    warnings = sum(1 for result in results if result.severity == "Warning")
    logger.info(
        "Parsed %d validation results for %s (failures=%d, warnings=%d)",
        len(results),
        instance.id,
        failures,
        warnings,
    )
    return results
