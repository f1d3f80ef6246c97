"""HTTP client for the SHIELD backend API."""

from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from shield_exporter.config.logging import get_logger
from shield_exporter.models import (
    Archive,
    InternalStatus,
    Job,
    JobHealth,
    RetentionPolicy,
    Schedule,
    ShieldStatus,
    Store,
    Target,
    Task,
)

logger = get_logger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class ShieldAPIError(Exception):
    """Raised when a SHIELD API call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ShieldNotImplementedError(ShieldAPIError):
    """Raised when the backend answers 501 Not Implemented."""


class ShieldClient:
    """
    Thin wrapper around the SHIELD REST API.

    One underlying httpx.Client is shared by every collector. Each call makes
    exactly one request; there are no retries.
    """

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        skip_ssl_validation: bool = False,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: SHIELD backend URL, e.g. https://shield.example.com
            username: Basic auth username (auth is skipped when empty)
            password: Basic auth password
            skip_ssl_validation: Do not verify the backend TLS certificate
            timeout: Request timeout in seconds, None for no timeout
            transport: Optional custom transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        auth = httpx.BasicAuth(username, password) if username else None
        self._http = httpx.Client(
            base_url=self.base_url,
            auth=auth,
            verify=not skip_ssl_validation,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _get(self, path: str) -> Any:
        logger.debug(f"GET {self.base_url}{path}")
        try:
            resp = self._http.get(path)
        except httpx.HTTPError as e:
            raise ShieldAPIError(f"GET {path} failed: {e}") from e

        if resp.status_code == httpx.codes.NOT_IMPLEMENTED:
            raise ShieldNotImplementedError(f"GET {path} is not implemented by the backend", resp.status_code)
        if resp.is_error:
            raise ShieldAPIError(
                f"GET {path} returned {resp.status_code} {resp.reason_phrase}: {resp.text.strip()}",
                resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise ShieldAPIError(f"GET {path} returned invalid JSON: {e}", resp.status_code) from e

    def _get_model(self, path: str, model: type[RecordT]) -> RecordT:
        payload = self._get(path)
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ShieldAPIError(f"GET {path} returned an unexpected payload: {e}") from e

    def _get_list(self, path: str, model: type[RecordT]) -> list[RecordT]:
        payload = self._get(path)
        if payload is None:
            return []
        try:
            return TypeAdapter(list[model]).validate_python(payload)
        except ValidationError as e:
            raise ShieldAPIError(f"GET {path} returned an unexpected payload: {e}") from e

    # -- Status ---------------------------------------------------------------

    def get_status(self) -> ShieldStatus:
        return self._get_model("/v1/status", ShieldStatus)

    def get_internal_status(self) -> InternalStatus:
        return self._get_model("/v1/status/internal", InternalStatus)

    def get_jobs_status(self) -> dict[str, JobHealth]:
        payload = self._get("/v1/status/jobs")
        if payload is None:
            return {}
        try:
            return TypeAdapter(dict[str, JobHealth]).validate_python(payload)
        except ValidationError as e:
            raise ShieldAPIError(f"GET /v1/status/jobs returned an unexpected payload: {e}") from e

    # -- Resources ------------------------------------------------------------

    def get_archives(self) -> list[Archive]:
        return self._get_list("/v1/archives", Archive)

    def get_jobs(self) -> list[Job]:
        return self._get_list("/v1/jobs", Job)

    def get_retention_policies(self) -> list[RetentionPolicy]:
        return self._get_list("/v1/retention", RetentionPolicy)

    def get_schedules(self) -> list[Schedule]:
        return self._get_list("/v1/schedules", Schedule)

    def get_stores(self) -> list[Store]:
        return self._get_list("/v1/stores", Store)

    def get_targets(self) -> list[Target]:
        return self._get_list("/v1/targets", Target)

    def get_tasks(self) -> list[Task]:
        return self._get_list("/v1/tasks", Task)
