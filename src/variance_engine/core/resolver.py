"""Date matching over dated form instances.

All functions are pure: they never raise on bad dates. A malformed target date
or instance date is logged and treated as "no match".
"""

from __future__ import annotations

import re
from datetime import date
from typing import Iterable, List, Optional, Sequence

from .models import FormInstance, InstanceMatch
from ..utils.logging import get_logger

logger = get_logger(__name__)

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_reference_date(value: str) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` string, returning None when it is not a real date."""
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def days_between(earlier: str, later: str) -> Optional[int]:
    start = parse_reference_date(earlier)
    end = parse_reference_date(later)
    if start is None or end is None:
        return None
    return (end - start).days


def find_exact(instances: Iterable[FormInstance], target_date: str) -> Optional[FormInstance]:
    """Return the first instance whose reference date equals ``target_date`` verbatim."""
    for instance in instances:
        if instance.reference_date == target_date:
            return instance
    return None


def find_nearest_before(
    instances: Iterable[FormInstance], target_date: str
) -> Optional[FormInstance]:
    """Return the most recent instance strictly earlier than ``target_date``.

    Instances with unparsable dates are skipped. When several instances share
    the most recent date, the last one in input order wins.
    """
    target = parse_reference_date(target_date)
    if target is None:
        logger.error("Invalid target date", extra={"target_date": target_date})
        return None

    best: Optional[FormInstance] = None
    best_date: Optional[date] = None
    for instance in instances:
        instance_date = parse_reference_date(instance.reference_date)
        if instance_date is None:
            logger.warning(
                "Invalid instance date, skipping",
                extra={"instance_id": instance.id, "reference_date": instance.reference_date},
            )
            continue
        if instance_date >= target:
            continue
        if best_date is None or instance_date >= best_date:
            best = instance
            best_date = instance_date

    if best is not None:
        logger.debug(
            "Found instance before target date",
            extra={"target_date": target_date, "found_date": best.reference_date, "instance_id": best.id},
        )
    return best


def find_exact_or_before(
    instances: Sequence[FormInstance], target_date: str
) -> Optional[FormInstance]:
    """Exact match first, else the most recent instance before ``target_date``."""
    exact = find_exact(instances, target_date)
    if exact is not None:
        return exact
    logger.debug("Exact match not found, searching before date", extra={"target_date": target_date})
    return find_nearest_before(instances, target_date)


def match_exact(instances: Sequence[FormInstance], target_date: str) -> Optional[InstanceMatch]:
    instance = find_exact(instances, target_date)
    if instance is None:
        return None
    return InstanceMatch(instance=instance, search_date=target_date, match_type="exact")


def match_nearest_before(
    instances: Sequence[FormInstance], target_date: str
) -> Optional[InstanceMatch]:
    instance = find_nearest_before(instances, target_date)
    if instance is None:
        return None
    return InstanceMatch(
        instance=instance,
        search_date=target_date,
        match_type="before",
        days_difference=days_between(instance.reference_date, target_date) or 0,
    )


def sort_instances(
    instances: Iterable[FormInstance], *, descending: bool = False
) -> List[FormInstance]:
    """Stable sort on the reference date string (ISO dates sort chronologically)."""
    return sorted(instances, key=lambda inst: inst.reference_date, reverse=descending)
