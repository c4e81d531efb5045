"""Reporting platform gateway."""

from variance_engine.gateway.client import ApiConfig, AuthConfig, ReportingGateway
from variance_engine.gateway.retry import DEFAULT_RETRY_POLICY, RetryPolicy, call_with_retry

__all__ = [
    "ApiConfig",
    "AuthConfig",
    "ReportingGateway",
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
    "call_with_retry",
]
