"""Client for the remote social-media platform.

This module provides the PlatformClient class that handles all communication
with the platform's Graph-style API. It includes:

- HTTP client with bounded retry on transient failures
- Circuit breaker pattern for fault tolerance
- Metrics collection for monitoring
- Error taxonomy separating transient, permission and other failures
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from comment_sentry.core.settings import settings
from comment_sentry.services.retry import platform_retry_policy, retry_async

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500

# Graph error codes meaning the token or permission is no longer valid.
PERMISSION_ERROR_CODES = frozenset({10, 102, 190, 200})
# Graph error codes meaning throttling.
RATE_LIMIT_ERROR_CODES = frozenset({4, 17, 32, 613})

MAX_PAGE_SIZE = 100


class PlatformError(RuntimeError):
    """Base exception raised for platform API failures."""


class PlatformTransientError(PlatformError):
    """Network timeouts, throttling and 5xx responses; safe to retry."""


class PlatformPermissionError(PlatformError):
    """Token expired or permission revoked; aborts the account's run."""


class PlatformDisabledError(PlatformError):
    """Raised when platform calls are attempted while disabled."""


class CircuitState(Enum):
    """Circuit breaker states for fault tolerance."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class PlatformMetrics:
    """Metrics collection for platform operations."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    max_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    endpoint_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self, endpoint: str, response_time: float, success: bool, error_type: str | None = None
    ) -> None:
        """Record a request metric."""
        self.request_count += 1
        self.total_response_time += response_time
        self.max_response_time = max(self.max_response_time, response_time)
        self.endpoint_counts[endpoint] += 1

        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1

    def get_average_response_time(self) -> float:
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0

    def get_success_rate(self) -> float:
        """Get success rate as a percentage."""
        return (self.success_count / self.request_count * 100) if self.request_count > 0 else 0.0


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding the platform API."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        """Check if circuit is open."""
        if self._state == CircuitState.OPEN:
            if time.time() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.time()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    @property
    def state(self) -> CircuitState:
        return self._state

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time,
            "is_open": self.is_open(),
        }


@dataclass(frozen=True)
class PlatformConfig:
    """Immutable configuration for platform operations."""

    enabled: bool
    base_url: str
    timeout_seconds: float
    comment_page_size: int


@dataclass(frozen=True)
class RemotePost:
    """A post as reported by the platform."""

    remote_id: str
    caption: str | None
    like_count: int
    comments_count: int
    posted_at: datetime | None


@dataclass(frozen=True)
class RemoteComment:
    """A comment or reply as reported by the platform."""

    remote_id: str
    text: str
    commenter_id: str
    commenter_username: str
    commented_at: datetime | None
    parent_remote_id: str | None = None
    is_hidden: bool = False


def load_platform_config() -> PlatformConfig:
    """Build configuration object from global settings."""

    return PlatformConfig(
        enabled=settings.platform_enabled,
        base_url=settings.platform_api_base_url,
        timeout_seconds=float(settings.platform_http_timeout_seconds),
        comment_page_size=max(1, min(MAX_PAGE_SIZE, settings.platform_comment_page_size)),
    )


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        # Graph timestamps use a colon-less offset, e.g. 2024-05-01T12:00:00+0000.
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Unparseable platform timestamp: %s", value)
        return None


def _comment_from_payload(item: Mapping[str, Any], parent_remote_id: str | None) -> RemoteComment:
    author = item.get("from") or {}
    username = item.get("username") or author.get("username") or author.get("name") or ""
    commenter_id = str(author.get("id") or username)
    return RemoteComment(
        remote_id=str(item["id"]),
        text=item.get("text") or item.get("message") or "",
        commenter_id=commenter_id,
        commenter_username=username,
        commented_at=_parse_timestamp(item.get("timestamp") or item.get("created_time")),
        parent_remote_id=parent_remote_id,
        is_hidden=bool(item.get("hidden") or item.get("is_hidden") or False),
    )


class PlatformClient:
    """HTTP client wrapper for the remote platform's Graph-style API."""

    COMMENT_FIELDS = (
        "id,text,timestamp,username,from,hidden,"
        "replies{id,text,timestamp,username,from,hidden}"
    )
    POST_FIELDS = "id,caption,like_count,comments_count,timestamp"

    def __init__(self, config: PlatformConfig | None = None) -> None:
        self.config = config or load_platform_config()
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker()
        self._metrics = PlatformMetrics()
        self._retry_policy = platform_retry_policy((PlatformTransientError,))

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.base_url)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise PlatformDisabledError("Platform client is not enabled")

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                )

        return self._client

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""
        method: str
        path: str
        token: str
        params: Mapping[str, Any] | None = None

    async def _request(self, params: RequestParams) -> dict[str, Any]:
        """Send a request, retrying transient failures per the retry policy."""
        description = f"{params.method} {params.path}"
        return await retry_async(
            lambda: self._request_once(params),
            self._retry_policy,
            description=description,
        )

    async def _request_once(self, params: RequestParams) -> dict[str, Any]:
        if self._circuit_breaker.is_open():
            raise PlatformTransientError("Platform circuit breaker is open - service unavailable")

        client = await self._ensure_client()
        query = dict(params.params or {})
        query["access_token"] = params.token

        start_time = time.time()
        endpoint = f"{params.method} {params.path.split('/')[-1] or params.path}"
        success = False
        error_type: str | None = None

        try:
            response = await client.request(params.method, params.path, params=query)
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            error_type = "network_error"
            raise PlatformTransientError(f"Platform request failed: {exc}") from exc
        else:
            try:
                payload = self._decode(response)
            except PlatformTransientError:
                self._circuit_breaker.record_failure()
                error_type = f"http_{response.status_code}"
                raise
            except PlatformError:
                self._circuit_breaker.record_success()
                error_type = f"http_{response.status_code}"
                raise
            self._circuit_breaker.record_success()
            success = True
            return payload
        finally:
            self._metrics.record_request(endpoint, time.time() - start_time, success, error_type)

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        error = body.get("error") if isinstance(body.get("error"), dict) else None
        status_code = response.status_code
        if status_code < 400 and error is None:
            return body

        message = (error or {}).get("message") or f"Platform responded with {status_code}"
        code = (error or {}).get("code")
        if status_code == HTTP_TOO_MANY_REQUESTS or code in RATE_LIMIT_ERROR_CODES:
            raise PlatformTransientError(message)
        if status_code >= HTTP_INTERNAL_SERVER_ERROR:
            raise PlatformTransientError(message)
        if status_code in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN) or code in PERMISSION_ERROR_CODES:
            raise PlatformPermissionError(message)
        raise PlatformError(message)

    async def _paginate(
        self, path: str, token: str, params: Mapping[str, Any], limit: int | None
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        query = dict(params)
        while True:
            body = await self._request(
                self.RequestParams(method="GET", path=path, token=token, params=query)
            )
            items.extend(body.get("data") or [])
            if limit is not None and len(items) >= limit:
                return items[:limit]
            paging = body.get("paging") or {}
            after = (paging.get("cursors") or {}).get("after")
            if not paging.get("next") or not after:
                return items
            query["after"] = after

    async def list_recent_posts(self, account_id: str, token: str, limit: int) -> list[RemotePost]:
        """Return up to ``limit`` of the account's most recent posts, newest first."""

        rows = await self._paginate(
            f"/{account_id}/media",
            token,
            {"fields": self.POST_FIELDS, "limit": min(limit, MAX_PAGE_SIZE)},
            limit,
        )
        return [
            RemotePost(
                remote_id=str(row["id"]),
                caption=row.get("caption"),
                like_count=int(row.get("like_count") or 0),
                comments_count=int(row.get("comments_count") or 0),
                posted_at=_parse_timestamp(row.get("timestamp")),
            )
            for row in rows
            if row.get("id")
        ]

    async def list_comments(self, post_id: str, token: str) -> list[RemoteComment]:
        """Return every comment on a post, with replies flattened after their parent."""

        rows = await self._paginate(
            f"/{post_id}/comments",
            token,
            {"fields": self.COMMENT_FIELDS, "limit": self.config.comment_page_size},
            None,
        )
        comments: list[RemoteComment] = []
        for row in rows:
            if not row.get("id"):
                continue
            parent_remote_id = row.get("parent_id")
            comments.append(_comment_from_payload(row, parent_remote_id))
            replies = (row.get("replies") or {}).get("data") or []
            for reply in replies:
                if reply.get("id"):
                    comments.append(_comment_from_payload(reply, str(row["id"])))
        return comments

    async def delete_comment(self, comment_id: str, token: str) -> bool:
        """Delete a comment on the platform."""

        body = await self._request(
            self.RequestParams(method="DELETE", path=f"/{comment_id}", token=token)
        )
        return bool(body.get("success", True))

    async def set_hidden(self, comment_id: str, token: str, hidden: bool) -> bool:
        """Hide or unhide a comment on the platform."""

        body = await self._request(
            self.RequestParams(
                method="POST",
                path=f"/{comment_id}",
                token=token,
                params={"hide": "true" if hidden else "false"},
            )
        )
        return bool(body.get("success", True))

    async def get_follower_count(self, account_id: str, token: str) -> int | None:
        """Return the account's current follower count."""

        body = await self._request(
            self.RequestParams(
                method="GET",
                path=f"/{account_id}",
                token=token,
                params={"fields": "followers_count"},
            )
        )
        count = body.get("followers_count")
        return int(count) if count is not None else None

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        """Get the current circuit breaker status."""
        return self._circuit_breaker.status()

    def get_metrics(self) -> dict[str, Any]:
        """Get platform operation metrics."""
        return {
            "request_count": self._metrics.request_count,
            "success_count": self._metrics.success_count,
            "error_count": self._metrics.error_count,
            "success_rate": self._metrics.get_success_rate(),
            "average_response_time": self._metrics.get_average_response_time(),
            "max_response_time": self._metrics.max_response_time,
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
            "endpoint_counts": dict(self._metrics.endpoint_counts),
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _PlatformClientSingleton:
    """Singleton wrapper for PlatformClient."""

    _instance: PlatformClient | None = None

    @classmethod
    def get_instance(cls) -> PlatformClient:
        if cls._instance is None:
            cls._instance = PlatformClient()
        return cls._instance


def get_platform_client() -> PlatformClient:
    """Return a singleton platform client instance."""
    return _PlatformClientSingleton.get_instance()
