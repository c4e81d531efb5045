"""Interfaces (Protocols) for the variance engine.

The orchestrator depends on this Protocol rather than on `ReportingGateway`
directly, which keeps fakes in tests trivial.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Protocol, runtime_checkable

if TYPE_CHECKING:
    from variance_engine.core.models import FormInstance, ValidationResult, VarianceRow


@runtime_checkable
class ReportingPlatform(Protocol):
    """Interface for the reporting platform calls one pipeline needs.

    Implementations:
    - ReportingGateway: the HTTP client in `variance_engine.gateway.client`

    Every method raises `GatewayError` on failure.
    """

    def list_instances(self, form_code: str) -> List["FormInstance"]:
        """All instances of a form, sorted ascending by reference date."""
        ...

    def fetch_variances(
        self,
        form_code: str,
        instance_a: "FormInstance",
        instance_b: "FormInstance",
    ) -> List["VarianceRow"]:
        """Variances of ``instance_b`` against ``instance_a``, sorted by cell reference."""
        ...

    def trigger_validation(self, instance: "FormInstance") -> List["ValidationResult"]:
        """Failed validation rules for ``instance``."""
        ...
