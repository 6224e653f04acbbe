"""REST backend for hosted PostgREST-style services.

This module provides the RestBackend class that talks to a hosted backend
(tables exposed under ``/rest/v1``, blobs under a storage path). It includes:

- HTTP client with API-key and bearer authentication
- Circuit breaker pattern for fault tolerance
- Metrics collection for monitoring
- Live subscriptions implemented as snapshot polling with diffing
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from vent_feed.backend.base import (
    LIKES,
    POSTS,
    REPLIES,
    ChangeEvent,
    ChangeType,
    Ordering,
    WriteMode,
    entity_key,
)
from vent_feed.core.errors import NotFound, TransientIOFailure
from vent_feed.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_NOT_FOUND = 404
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_BAD_REQUEST = 400

# Collections whose deletes are written as tombstones.
_SOFT_DELETE = frozenset({POSTS, REPLIES})


class CircuitState(Enum):
    """Whether requests currently reach the backend."""
    CLOSED = "closed"
    OPEN = "open"
    # One probe request is let through after the recovery window.
    HALF_OPEN = "half_open"


@dataclass
class RequestMetrics:
    """Counters for requests issued against the hosted backend."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self, response_time: float, success: bool, error_type: str | None = None
    ) -> None:
        self.request_count += 1
        self.total_response_time += response_time
        if not success:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1
            return
        self.success_count += 1

    def get_success_rate(self) -> float:
        """Percentage of successful requests; 0.0 before the first request."""
        if not self.request_count:
            return 0.0
        return self.success_count * 100 / self.request_count


@dataclass
class CircuitBreaker:
    """Stops hammering the backend after consecutive failures.

    After ``failure_threshold`` failures in a row the circuit opens and
    requests fail fast. Once ``recovery_timeout`` seconds pass, a probe is
    allowed; its outcome closes or reopens the circuit.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 60.0

    _state: CircuitState = CircuitState.CLOSED
    _consecutive_failures: int = 0
    _opened_at: float = 0.0

    def is_open(self) -> bool:
        if self._state != CircuitState.OPEN:
            return False
        if time.monotonic() - self._opened_at > self.recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            return False
        return True

    def record_success(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        probe_failed = self._state == CircuitState.HALF_OPEN
        if probe_failed or self._consecutive_failures >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()

    @property
    def state(self) -> CircuitState:
        return self._state


@dataclass(frozen=True)
class RestConfig:
    """Immutable configuration for REST backend operations."""

    base_url: str
    api_key: str | None
    storage_path: str
    timeout_seconds: float
    poll_interval_seconds: float
    failure_threshold: int
    recovery_timeout: float


def load_rest_config() -> RestConfig:
    """Build configuration object from global settings."""

    if not settings.rest_base_url:
        raise ValueError("VENT_REST_BASE_URL must be set to use the REST backend")
    return RestConfig(
        base_url=settings.rest_base_url.rstrip("/"),
        api_key=settings.rest_api_key,
        storage_path=settings.rest_storage_path.rstrip("/"),
        timeout_seconds=float(settings.http_timeout_seconds),
        poll_interval_seconds=float(settings.poll_interval_seconds),
        failure_threshold=settings.circuit_failure_threshold,
        recovery_timeout=float(settings.circuit_recovery_seconds),
    )


class RestBackend:
    """``Backend`` implementation over a PostgREST-style HTTP API."""

    def __init__(
        self,
        config: RestConfig | None = None,
        *,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_rest_config()
        self._access_token = access_token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=self.config.failure_threshold,
            recovery_timeout=self.config.recovery_timeout,
        )
        self._metrics = RequestMetrics()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.config.api_key:
            headers["apikey"] = self.config.api_key
        token = self._access_token or self.config.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""
        method: str
        path: str
        json_data: Any | None = None
        content: bytes | None = None
        params: Mapping[str, Any] | None = None
        headers: dict[str, str] | None = None

    async def _request(self, params: RequestParams) -> httpx.Response:
        if self._circuit_breaker.is_open():
            raise TransientIOFailure("Backend circuit breaker is open - service unavailable")

        client = await self._ensure_client()
        headers = self._build_auth_headers()
        if params.headers:
            headers.update(params.headers)

        start_time = time.monotonic()
        success = False
        error_type = None

        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                content=params.content,
                params=params.params,
                headers=headers,
            )
            if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
                self._circuit_breaker.record_failure()
                error_type = f"http_{response.status_code}"
                raise TransientIOFailure(f"Backend responded with {response.status_code}")
            self._circuit_breaker.record_success()
            success = True
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            error_type = "network_error"
            logger.warning("Backend request %s %s failed: %s", params.method, params.path, exc)
            raise TransientIOFailure(f"Backend request failed: {exc}") from exc
        finally:
            self._metrics.record_request(time.monotonic() - start_time, success, error_type)

        return response

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order: Ordering | None = None,
    ) -> list[dict[str, Any]]:
        params = _filter_params(filters)
        if order is not None:
            params["order"] = f"{order.field}.{order.direction.value}"

        response = await self._request(
            self.RequestParams(method="GET", path=f"/rest/v1/{collection}", params=params)
        )
        _raise_for_client_error(response, collection)
        payload = response.json()
        if not isinstance(payload, list):
            raise TransientIOFailure(
                f"Unexpected payload for {collection}: {type(payload).__name__}"
            )
        return payload

    async def subscribe(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[ChangeEvent]:
        """Poll ``collection`` and yield the differences between snapshots."""
        interval = max(0.05, self.config.poll_interval_seconds)
        known: dict[str, dict[str, Any]] = {}

        while True:
            rows = await self.query(collection, filters)
            current = {entity_key(collection, row): row for row in rows}

            for key, row in current.items():
                previous = known.get(key)
                if previous is None:
                    yield ChangeEvent(type=ChangeType.CREATED, collection=collection, entity=row)
                elif previous != row:
                    yield ChangeEvent(type=ChangeType.UPDATED, collection=collection, entity=row)
            for key in known.keys() - current.keys():
                yield ChangeEvent(type=ChangeType.DELETED, collection=collection, entity=known[key])

            known = current
            await asyncio.sleep(interval)

    async def write(
        self,
        collection: str,
        entity_id: str,
        payload: Mapping[str, Any],
        mode: WriteMode,
    ) -> None:
        body = {key: _jsonable(value) for key, value in payload.items()}
        path = f"/rest/v1/{collection}"

        if mode == WriteMode.INSERT:
            if collection != LIKES:
                body.setdefault("id", entity_id)
            response = await self._request(
                self.RequestParams(
                    method="POST",
                    path=path,
                    json_data=body,
                    headers={"Prefer": "return=minimal,resolution=ignore-duplicates"},
                )
            )
            _raise_for_client_error(response, collection)
            return

        if mode == WriteMode.DELETE and collection in _SOFT_DELETE:
            method, body = "PATCH", {"deleted": True}
        elif mode == WriteMode.DELETE:
            method, body = "DELETE", None
        else:
            method = "PATCH"

        response = await self._request(
            self.RequestParams(
                method=method,
                path=path,
                json_data=body,
                params=_identity_params(collection, entity_id, payload),
                headers={"Prefer": "return=representation"},
            )
        )
        _raise_for_client_error(response, collection)
        if response.json() == []:
            raise NotFound(f"{collection}/{entity_id} does not exist")

    async def upload_blob(self, data: bytes, destination_key: str) -> str:
        storage = self.config.storage_path
        response = await self._request(
            self.RequestParams(
                method="POST",
                path=f"{storage}/object/{destination_key}",
                content=data,
                headers={"Content-Type": "image/jpeg", "x-upsert": "true"},
            )
        )
        _raise_for_client_error(response, "storage")
        return f"{self.config.base_url}{storage}/object/public/{destination_key}"

    def get_metrics(self) -> dict[str, Any]:
        """Get request metrics and circuit breaker state."""
        return {
            "request_count": self._metrics.request_count,
            "success_count": self._metrics.success_count,
            "error_count": self._metrics.error_count,
            "success_rate": self._metrics.get_success_rate(),
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
            "circuit_state": self._circuit_breaker.state.value,
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def _filter_params(filters: Mapping[str, Any] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for name, value in (filters or {}).items():
        if value is None:
            params[name] = "is.null"
            continue
        if isinstance(value, bool):
            value = str(value).lower()
        params[name] = f"eq.{_jsonable(value)}"
    return params


def _identity_params(collection: str, entity_id: str, payload: Mapping[str, Any]) -> dict[str, str]:
    if collection == LIKES:
        post_id, _, liker_id = entity_id.partition(":")
        return _filter_params({
            "post_id": payload.get("post_id", post_id),
            "liker_id": payload.get("liker_id", liker_id),
        })
    return _filter_params({"id": entity_id})


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _raise_for_client_error(response: httpx.Response, collection: str) -> None:
    if response.status_code == HTTP_NOT_FOUND:
        raise NotFound(f"{collection} not found")
    if response.status_code >= HTTP_BAD_REQUEST:
        raise TransientIOFailure(
            f"Unexpected backend response ({response.status_code}) for {collection}"
        )
