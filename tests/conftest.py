"""Shared fixtures for variance engine tests."""

from __future__ import annotations

from typing import Any, Callable, List, Optional
from unittest.mock import MagicMock

import pytest

from variance_engine.core.models import FormInstance, ReturnConfig


def make_response(status_code: int = 200, payload: Any = None, json_error: Optional[Exception] = None) -> MagicMock:
    """Build a stand-in for `requests.Response`."""
    response = MagicMock()
    response.status_code = status_code
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def response_factory() -> Callable[..., MagicMock]:
    return make_response


@pytest.fixture
def quarter_instances() -> List[FormInstance]:
    """Three month-end instances, oldest first."""
    return [
        FormInstance(id="i-jan", reference_date="2024-01-31"),
        FormInstance(id="i-feb", reference_date="2024-02-29"),
        FormInstance(id="i-mar", reference_date="2024-03-31"),
    ]


@pytest.fixture
def capital_form() -> ReturnConfig:
    return ReturnConfig(code="ARF1100", name="Capital Adequacy")


@pytest.fixture
def sleeps() -> List[float]:
    """Records every delay handed to an injected sleep primitive."""
    return []


@pytest.fixture
def fake_sleep(sleeps: List[float]) -> Callable[[float], None]:
    return sleeps.append
