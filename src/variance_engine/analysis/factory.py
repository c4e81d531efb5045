"""Helpers for constructing an orchestrator instance."""

from __future__ import annotations

import time
from typing import Callable, Optional

import requests

from .orchestrator import AnalysisOrchestrator
from ..config.settings import Settings
from ..core.exceptions import ConfigurationError
from ..gateway.client import ReportingGateway


def build_gateway(
    settings: Settings,
    *,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReportingGateway:
    missing = settings.missing_credentials()
    if missing:
        raise ConfigurationError(
            "Missing required credentials",
            context={"missing": missing},
            code=ConfigurationError.INVALID_CONFIGURATION,
        )
    return ReportingGateway(
        settings.auth_config(),
        settings.api_config(),
        retry_policy=settings.retry_policy(),
        session=session,
        sleep=sleep,
    )


def build_orchestrator(
    settings: Settings,
    *,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> AnalysisOrchestrator:
    gateway = build_gateway(settings, session=session, sleep=sleep)
    return AnalysisOrchestrator(gateway, max_concurrency=settings.max_concurrency)
