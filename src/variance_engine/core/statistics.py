"""Summary statistics over variance rows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Sequence

from ..utils.logging import get_logger

if TYPE_CHECKING:
    from .models import VarianceRow

logger = get_logger(__name__)

# A reference containing any of these is treated as an aggregate line.
SUBTOTAL_KEYWORDS = ("subtotal", "total", "sum")


@dataclass(frozen=True)
class VarianceStatistics:
    total_count: int = 0
    non_zero_count: int = 0
    subtotal_count: int = 0
    meaningful_count: int = 0
    max_abs_value: float = 0.0
    avg_abs_value: float = 0.0


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def is_meaningful_difference(value: Any) -> bool:
    """True for a non-zero numeric difference (numbers or numeric strings)."""
    number = _as_number(value)
    return number is not None and number == number and number != 0


def is_subtotal_reference(cell_reference: Any) -> bool:
    if not isinstance(cell_reference, str):
        return False
    lowered = cell_reference.lower()
    return any(keyword in lowered for keyword in SUBTOTAL_KEYWORDS)


def count_meaningful_differences(rows: Iterable[VarianceRow]) -> int:
    """Non-zero differences, excluding subtotal lines."""
    return sum(
        1
        for row in rows
        if is_meaningful_difference(row.difference) and not is_subtotal_reference(row.cell_reference)
    )


def has_meaningful_differences(rows: Iterable[VarianceRow]) -> bool:
    return count_meaningful_differences(rows) > 0


def calculate_variance_statistics(rows: Sequence[VarianceRow]) -> VarianceStatistics:
    if not rows:
        return VarianceStatistics()

    non_zero = 0
    subtotals = 0
    meaningful = 0
    abs_values: List[float] = []

    for row in rows:
        subtotal = is_subtotal_reference(row.cell_reference)
        if subtotal:
            subtotals += 1
        if not is_meaningful_difference(row.difference):
            continue
        non_zero += 1
        abs_values.append(abs(_as_number(row.difference) or 0.0))
        if not subtotal:
            meaningful += 1

    stats = VarianceStatistics(
        total_count=len(rows),
        non_zero_count=non_zero,
        subtotal_count=subtotals,
        meaningful_count=meaningful,
        max_abs_value=max(abs_values, default=0.0),
        avg_abs_value=sum(abs_values) / len(abs_values) if abs_values else 0.0,
    )
    logger.debug("Calculated variance statistics", extra={"stats": stats})
    return stats


def filter_variances(
    rows: Iterable[VarianceRow],
    *,
    min_abs_value: float = 0.0,
    exclude_subtotals: bool = False,
) -> List[VarianceRow]:
    """Keep rows with a meaningful difference of at least ``min_abs_value``."""
    kept: List[VarianceRow] = []
    for row in rows:
        if not is_meaningful_difference(row.difference):
            continue
        if exclude_subtotals and is_subtotal_reference(row.cell_reference):
            continue
        if min_abs_value > 0 and abs(_as_number(row.difference) or 0.0) < min_abs_value:
            continue
        kept.append(row)
    return kept
