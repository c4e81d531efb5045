"""Wire schemas for reporting platform payloads.

These mirror what the platform actually sends, camelCase names included.
Normalization into canonical records lives in `normalize.py`; defaults for
optional fields are listed there.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, TypeAdapter

from ..core.models import FormInstance


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    token_type: Optional[str] = None
    expires_in: Optional[PositiveInt] = None
    refresh_token: Optional[str] = None


class DifferencePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    value_diff: Any = Field(default=None, alias="valueDiff")
    percentage_diff: Any = Field(default=None, alias="percentageDiff")


class CellInstancePayload(BaseModel):
    """One instance's value for a cell, with the diff against the previous instance."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    value: Any = None
    cell_not_present: Optional[bool] = Field(default=None, alias="cellNotPresent")
    difference: Optional[DifferencePayload] = None


class CellPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: Optional[str] = None
    subtotal: Optional[bool] = None


class CellAnalysisPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cell: CellPayload
    instances: List[CellInstancePayload]


class ValidationResponsePayload(BaseModel):
    """Envelope of the validation trigger; details are decoded one by one."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    validation_details: Optional[List[Any]] = Field(default=None, alias="validationDetails")


FORM_INSTANCES = TypeAdapter(List[FormInstance])
CELL_ANALYSES = TypeAdapter(List[CellAnalysisPayload])
