"""Application settings.

All configuration is sourced from environment variables (and optionally `.env`).
"""

from __future__ import annotations

from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..gateway.client import (
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_VALIDATION_TIMEOUT,
    ApiConfig,
    AuthConfig,
)
from ..gateway.retry import RetryPolicy

_CREDENTIAL_FIELDS = ("username", "password", "grant_type", "client_id", "client_secret")


class Settings(BaseSettings):
    """Typed environment-backed settings for the variance engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Token endpoint
    auth_url: str = Field(default="https://example.com/token", alias="AUTH_URL")
    username: str = Field(default="", alias="APRA_USERNAME")
    password: str = Field(default="", alias="PASSWORD")
    grant_type: str = Field(default="", alias="GRANT_TYPE")
    client_id: str = Field(default="", alias="CLIENT_ID")
    client_secret: str = Field(default="", alias="CLIENT_SECRET")

    # Reporting platform API
    api_base_url: str = Field(default="https://example.com/api", alias="API_BASE_URL")
    product_prefix: str = Field(default="APRA", alias="PRODUCT_PREFIX")
    entity_code: str = Field(default="PBL", alias="ENTITY_CODE")
    request_timeout_s: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0, alias="REQUEST_TIMEOUT_S")
    validation_timeout_s: float = Field(
        default=DEFAULT_VALIDATION_TIMEOUT, gt=0, alias="VALIDATION_TIMEOUT_S"
    )

    # Orchestration
    max_concurrency: int = Field(default=3, ge=1, alias="MAX_CONCURRENCY")

    # Backoff for variance and validation calls
    retry_max_retries: int = Field(default=3, ge=1, alias="RETRY_MAX_RETRIES")
    retry_initial_delay_ms: int = Field(default=1000, ge=0, alias="RETRY_INITIAL_DELAY_MS")
    retry_max_delay_ms: int = Field(default=30000, ge=0, alias="RETRY_MAX_DELAY_MS")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1, alias="RETRY_BACKOFF_MULTIPLIER")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(default=False, alias="JSON_LOGS")

    @field_validator(
        "auth_url",
        "username",
        "password",
        "grant_type",
        "client_id",
        "client_secret",
        "api_base_url",
        "product_prefix",
        "entity_code",
        "log_level",
        mode="before",
    )
    @classmethod
    def _strip_quotes(cls, value: Any) -> Any:
        # .env files written by hand often quote values.
        if not isinstance(value, str):
            return value
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        return value

    def missing_credentials(self) -> List[str]:
        return [name for name in _CREDENTIAL_FIELDS if not getattr(self, name)]

    def auth_config(self) -> AuthConfig:
        return AuthConfig(
            url=self.auth_url,
            username=self.username,
            password=self.password,
            grant_type=self.grant_type,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )

    def api_config(self) -> ApiConfig:
        return ApiConfig(
            base_url=self.api_base_url,
            product_prefix=self.product_prefix,
            entity_code=self.entity_code,
            request_timeout=self.request_timeout_s,
            validation_timeout=self.validation_timeout_s,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retry_max_retries,
            initial_delay_ms=self.retry_initial_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
        )
