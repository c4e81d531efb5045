"""Run file loading.

A run file names the base date and the forms to analyze:

    {
        "baseDate": "2024-03-31",
        "returns": [{"code": "ARF1100", "name": "Capital", "expectedDate": "2023-12-31"}],
        "excluded": [{"code": "ARF2200", "name": "Liquidity"}]
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.exceptions import ConfigurationError
from ..core.models import ISO_DATE_PATTERN, ReturnConfig
from ..utils.logging import get_logger

logger = get_logger(__name__)


class RunConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    base_date: str = Field(alias="baseDate", pattern=ISO_DATE_PATTERN)
    returns: List[ReturnConfig] = Field(min_length=1)
    excluded: List[ReturnConfig] = Field(default_factory=list)


def load_run_config(path: Union[str, Path]) -> RunConfig:
    """Read and validate a run file.

    Raises:
        ConfigurationError: CONFIG_LOAD_FAILED if the file cannot be read,
            CONFIG_PARSE_FAILED if it is not JSON, CONFIG_VALIDATION_FAILED
            if its contents do not describe a run.
    """
    path = Path(path)
    logger.info("Loading run configuration from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            f"Failed to load configuration file: {exc}",
            context={"path": str(path)},
            code=ConfigurationError.CONFIG_LOAD_FAILED,
        ) from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            f"Failed to parse configuration file: {exc}",
            context={"path": str(path)},
            code=ConfigurationError.CONFIG_PARSE_FAILED,
        ) from exc

    try:
        config = RunConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid configuration: {exc.error_count()} validation error(s)",
            context={"path": str(path), "errors": exc.errors(include_url=False)},
            code=ConfigurationError.CONFIG_VALIDATION_FAILED,
        ) from exc

    logger.info(
        "Loaded run configuration",
        extra={"base_date": config.base_date, "returns": len(config.returns), "excluded": len(config.excluded)},
    )
    return config
