"""Reporting platform gateway.

Wraps the platform's REST API: token lifecycle, the instance listing, the
cell variance analysis and the validation trigger. Raw payloads are decoded
through `schemas` and normalized into canonical records before they leave
this module.

Usage:
    gateway = ReportingGateway(auth_config, api_config)
    instances = gateway.list_instances("ARF1100")
    rows = gateway.fetch_variances("ARF1100", instances[-2], instances[-1])
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, urlparse

import requests
from pydantic import ValidationError

from .normalize import to_validation_results, to_variance_rows
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, call_with_retry
from .schemas import CELL_ANALYSES, FORM_INSTANCES, TokenResponse
from ..core.exceptions import GatewayError, GatewayErrorCode
from ..core.models import FormInstance, ValidationResult, VarianceRow
from ..core.resolver import sort_instances
from ..utils.logging import get_logger

logger = get_logger(__name__)

API_PATH_PREFIX = "/agilereporter/rest/api"

# Tokens are refreshed this long before the platform says they expire.
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)

# Large forms take many minutes to diff server-side.
DEFAULT_REQUEST_TIMEOUT = 1200
DEFAULT_VALIDATION_TIMEOUT = 600

USER_AGENT = "variance-engine/1.0"


@dataclass(frozen=True)
class AuthConfig:
    """Password-grant credentials for the platform's token endpoint."""

    url: str
    username: str
    password: str
    grant_type: str
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class ApiConfig:
    base_url: str
    product_prefix: str = "APRA"
    entity_code: str = "PBL"
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    validation_timeout: float = DEFAULT_VALIDATION_TIMEOUT

    @property
    def api_root(self) -> str:
        parsed = urlparse(self.base_url)
        scheme = parsed.scheme or "https"
        return f"{scheme}://{parsed.netloc}{API_PATH_PREFIX}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _transport_error(exc: requests.RequestException, *, what: str) -> GatewayError:
    if isinstance(exc, requests.exceptions.Timeout):
        return GatewayError(f"{what}: request timed out", code=GatewayErrorCode.TIMEOUT)
    if isinstance(
        exc,
        (
            requests.exceptions.ConnectionError,
            requests.exceptions.ChunkedEncodingError,
            requests.exceptions.ContentDecodingError,
        ),
    ):
        return GatewayError(f"{what}: network error: {exc}", code=GatewayErrorCode.NETWORK_ERROR)
    return GatewayError(f"{what}: request failed: {exc}", code=GatewayErrorCode.REQUEST_FAILED)


class ReportingGateway:
    """Client for the reporting platform's REST API.

    Thread-safe: one instance is shared by every pipeline of an analysis run.
    Token refresh is serialized so concurrent callers authenticate once.
    """

    def __init__(
        self,
        auth: AuthConfig,
        api: ApiConfig,
        *,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the gateway.

        Args:
            auth: Token endpoint and credentials.
            api: Base URL, listing filters and per-call timeouts.
            retry_policy: Backoff for the variance and validation calls.
            session: HTTP session to use; a keep-alive session is created if omitted.
            sleep: Sleep primitive (seconds) used between retries.
            clock: Returns the current UTC time; drives token expiry.
        """
        self.auth = auth
        self.api = api
        self.retry_policy = retry_policy
        self._session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._token_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None and not self._token_expired()

    def clear_authentication(self) -> None:
        with self._token_lock:
            self._token = None
            self._token_expires_at = None
        logger.debug("Authentication state cleared")

    def authenticate(self) -> str:
        """Exchange the configured credentials for a bearer token.

        Raises:
            GatewayError: AUTH_FAILED on a rejected exchange, VALIDATION_ERROR
                on an unreadable token payload, or a transport error code.
        """
        what = "authenticate"
        form = {
            "username": self.auth.username,
            "password": self.auth.password,
            "grant_type": self.auth.grant_type,
            "client_id": self.auth.client_id,
            "client_secret": self.auth.client_secret,
        }
        with self._token_lock:
            logger.info("Authenticating with reporting platform")
            try:
                response = self._session.post(
                    self.auth.url,
                    data=form,
                    headers={
                        "Content-Type": "application/x-www-form-urlencoded",
                        "Accept": "application/json, text/plain, */*",
                        "User-Agent": USER_AGENT,
                    },
                    timeout=self.api.request_timeout,
                )
            except requests.RequestException as exc:
                logger.error("Authentication request failed: %s", exc)
                raise _transport_error(exc, what=what) from exc

            if response.status_code == 429:
                raise GatewayError.from_status(429, what=what)
            if response.status_code != 200:
                logger.error("Authentication rejected", extra={"status_code": response.status_code})
                raise GatewayError(
                    f"Authentication failed with status {response.status_code}",
                    code=GatewayErrorCode.AUTH_FAILED,
                    status_code=response.status_code,
                )

            try:
                token = TokenResponse.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                logger.error("Invalid token response: %s", exc)
                raise GatewayError(
                    "Invalid token response format",
                    code=GatewayErrorCode.VALIDATION_ERROR,
                    status_code=response.status_code,
                ) from exc

            self._token = token.access_token
            self._token_expires_at = None
            if token.expires_in:
                self._token_expires_at = self._clock() + timedelta(seconds=token.expires_in)
                logger.debug("Token expires in %d seconds", token.expires_in)

            logger.info("Authentication successful")
            return self._token

    def _token_expired(self) -> bool:
        if self._token_expires_at is None:
            return False
        return self._clock() > self._token_expires_at - TOKEN_EXPIRY_BUFFER

    def _ensure_token(self) -> str:
        with self._token_lock:
            if self._token is None or self._token_expired():
                logger.debug("Token expired or missing, re-authenticating")
                return self.authenticate()
            return self._token

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        what: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make an authenticated request and return the decoded JSON body.

        Raises:
            GatewayError: If the request fails or the body is not JSON.
        """
        token = self._ensure_token()
        url = f"{self.api.api_root}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json, text/plain, */*",
            "User-Agent": USER_AGENT,
        }

        logger.debug("API request", extra={"method": method, "url": url})
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                headers=headers,
                timeout=timeout or self.api.request_timeout,
            )
        except requests.RequestException as exc:
            raise _transport_error(exc, what=what) from exc
        logger.debug("API response", extra={"status_code": response.status_code, "url": url})

        if response.status_code == 401:
            # Server-side revocation; force a fresh exchange on the next call.
            self.clear_authentication()
        if response.status_code != 200:
            raise GatewayError.from_status(response.status_code, what=what)

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(
                f"{what}: response body is not valid JSON",
                code=GatewayErrorCode.VALIDATION_ERROR,
                status_code=response.status_code,
            ) from exc

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def list_instances(self, form_code: str) -> List[FormInstance]:
        """List every instance of a form, oldest first. Not retried."""
        what = f"list_instances({form_code})"
        logger.info("Fetching form versions for %s", form_code)
        data = self._request(
            "GET",
            "/returns",
            what=what,
            params={
                "productPrefix": self.api.product_prefix,
                "entityCode": self.api.entity_code,
                "formCode": form_code,
            },
        )
        try:
            instances = FORM_INSTANCES.validate_python(data)
        except ValidationError as exc:
            logger.error("Form versions validation failed for %s: %s", form_code, exc)
            raise GatewayError(
                "Invalid form versions response format",
                context={"form_code": form_code},
                code=GatewayErrorCode.VALIDATION_ERROR,
                status_code=200,
            ) from exc

        ordered = sort_instances(instances)
        logger.debug("Retrieved %d versions for %s", len(ordered), form_code)
        return ordered

    # ------------------------------------------------------------------
    # Variance analysis
    # ------------------------------------------------------------------

    def fetch_variances(
        self,
        form_code: str,
        instance_a: FormInstance,
        instance_b: FormInstance,
    ) -> List[VarianceRow]:
        """Per-cell variances of ``instance_b`` (base) against ``instance_a`` (comparison)."""
        return call_with_retry(
            lambda: self._fetch_variances_once(form_code, instance_a, instance_b),
            policy=self.retry_policy,
            sleep=self._sleep,
            operation_name=f"fetch_variances({form_code})",
        )

    def _fetch_variances_once(
        self, form_code: str, instance_a: FormInstance, instance_b: FormInstance
    ) -> List[VarianceRow]:
        what = f"fetch_variances({form_code})"
        logger.info("Fetching variance analysis for %s", form_code)
        data = self._request(
            "GET",
            "/analysis/cellAnalyses",
            what=what,
            params={
                "formInstances": f"{instance_a.id},{instance_b.id}",
                "pageInstance": "1",
                "constraintType": "CELLGROUP",
                "constraintId": "ALL",
            },
        )
        try:
            records = CELL_ANALYSES.validate_python(data)
        except ValidationError as exc:
            logger.error("Variance records validation failed for %s: %s", form_code, exc)
            raise GatewayError(
                "Invalid variance records response format",
                context={"form_code": form_code},
                code=GatewayErrorCode.VALIDATION_ERROR,
                status_code=200,
            ) from exc

        rows = to_variance_rows(records, instance_a, instance_b)
        logger.info("Retrieved %d variance records for %s", len(rows), form_code)
        return rows

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def trigger_validation(self, instance: FormInstance) -> List[ValidationResult]:
        """Run server-side validation on ``instance`` and return the failed rules.

        This is a state-changing call that can run for minutes.
        """
        return call_with_retry(
            lambda: self._trigger_validation_once(instance),
            policy=self.retry_policy,
            sleep=self._sleep,
            operation_name=f"trigger_validation({instance.id})",
        )

    def _trigger_validation_once(self, instance: FormInstance) -> List[ValidationResult]:
        what = f"trigger_validation({instance.id})"
        logger.info("Fetching validation results for %s", instance.id)
        data = self._request(
            "PUT",
            f"/v1/returns/{quote(instance.id, safe='')}/validation",
            what=what,
            params={"validationResultDetails": "true"},
            timeout=self.api.validation_timeout,
        )
        return [result for result in to_validation_results(data, instance) if result.failed]
