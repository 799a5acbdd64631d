from __future__ import annotations

import json as jsonlib
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
import structlog
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0
HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


class HTTPClientError(Exception):
    """Base class for transport-level failures."""


class InvalidURL(HTTPClientError):
    def __init__(self, path: str, reason: str | None = None) -> None:
        super().__init__(f"Invalid URL for path: {path}" + (f" ({reason})" if reason else ""))
        self.path = path


class EncodingFailed(HTTPClientError):
    def __init__(self, error: Exception) -> None:
        super().__init__(f"Failed to encode request body: {error}")
        self.error = error


class DecodingFailed(HTTPClientError):
    def __init__(self, error: Exception, raw_body: bytes) -> None:
        super().__init__(f"Failed to decode response: {error}")
        self.error = error
        self.raw_body = raw_body


class NetworkError(HTTPClientError):
    """Connection refused, reset or otherwise lost before a response arrived."""


class RequestTimeoutError(HTTPClientError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f"Request timed out after {timeout} seconds")
        self.timeout = timeout


class HTTPError(HTTPClientError):
    """Non-2xx response. The body is kept raw, it is never decoded."""

    def __init__(
        self,
        status_code: int,
        body: bytes,
        headers: dict[str, str],
        url: str | None = None,
    ) -> None:
        super().__init__(f"HTTP error: {status_code}")
        self.status_code = status_code
        self.url = url
        self.body = body
        self.headers = headers

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class MaxRetriesExceeded(HTTPClientError):
    def __init__(self, attempts: int, cause: BaseException | None) -> None:
        super().__init__(f"Maximum retry attempts exceeded ({attempts}): {cause}")
        self.attempts = attempts
        self.cause = cause


def is_retryable_status(status_code: int) -> bool:
    """Server errors and rate limiting are retried, other 4xx are not."""
    return status_code >= 500 or status_code == 429


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, HTTPError):
        return is_retryable_status(exc.status_code)
    return isinstance(exc, (NetworkError, RequestTimeoutError))


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and exponential back-off shape for a client."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def aggressive(cls) -> RetryPolicy:
        return cls(max_attempts=5, initial_delay=0.5, backoff_multiplier=1.5, max_delay=10.0)

    @classmethod
    def conservative(cls) -> RetryPolicy:
        return cls(max_attempts=2, initial_delay=2.0, backoff_multiplier=3.0, max_delay=60.0)

    def delay_for(self, attempt: int) -> float:
        """Delay slept after the given (1-based) failed attempt."""
        delay = self.initial_delay * self.backoff_multiplier ** (attempt - 1)
        return min(delay, self.max_delay)


@dataclass(frozen=True)
class HTTPResponse(Generic[T]):
    status_code: int
    headers: dict[str, str]
    content: bytes
    body: T | None = None

    @property
    def is_successful(self) -> bool:
        return 200 <= self.status_code <= 299

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code <= 499

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code <= 599


@dataclass
class _PreparedRequest:
    method: str
    url: httpx.URL
    headers: dict[str, str]
    content: bytes | None = None


def _encode_body(body: Any) -> bytes:
    try:
        if isinstance(body, BaseModel):
            return body.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
        return jsonlib.dumps(body, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodingFailed(exc) from exc


class HTTPClient:
    """Retrying JSON client bound to one base URL.

    Every integration owns exactly one instance. Default headers are applied first and
    per-call headers override them. Retries suspend with ``asyncio.sleep`` so concurrent
    callers keep running while one request backs off.
    """

    def __init__(
        self,
        base_url: str,
        *,
        default_headers: dict[str, str] | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> None:
        try:
            parsed = httpx.URL(base_url)
        except (httpx.InvalidURL, TypeError) as exc:
            raise InvalidURL(base_url, str(exc)) from exc
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidURL(base_url, "base URL must be absolute http(s)")
        self._base_url = base_url.rstrip("/")
        self._default_headers = dict(default_headers or {})
        self._retry_policy = retry_policy or RetryPolicy.default()
        self._timeout = timeout if timeout is not None else DEFAULT_TIMEOUT

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def timeout(self) -> float:
        return self._timeout

    def build_url(self, path: str, query_params: dict[str, Any] | None = None) -> httpx.URL:
        if "://" in path or any(ch.isspace() for ch in path):
            raise InvalidURL(path)
        joined = f"{self._base_url}/{path.lstrip('/')}" if path else self._base_url
        try:
            url = httpx.URL(joined)
            if query_params:
                url = url.copy_merge_params({k: str(v) for k, v in query_params.items()})
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            raise InvalidURL(path, str(exc)) from exc
        return url

    def _prepare(
        self,
        method: str,
        path: str,
        query_params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        body: Any,
    ) -> _PreparedRequest:
        method = method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")
        url = self.build_url(path, query_params)

        # header names are case-insensitive, per-call values win
        merged: dict[str, str] = {}
        lowered: dict[str, str] = {}
        for source in (self._default_headers, headers or {}):
            for key, value in source.items():
                previous = lowered.get(key.lower())
                if previous is not None:
                    merged.pop(previous)
                merged[key] = value
                lowered[key.lower()] = key

        content = None
        if body is not None:
            content = _encode_body(body)
            if "content-type" not in lowered:
                merged["Content-Type"] = "application/json"
        return _PreparedRequest(method=method, url=url, headers=merged, content=content)

    async def request(
        self,
        method: str,
        path: str,
        *,
        query_params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        body: Any = None,
        response_type: Any = None,
    ) -> HTTPResponse[Any]:
        """Send a request and decode the JSON body into ``response_type``.

        ``response_type`` may be a pydantic model, a parametrised container such as
        ``list[Model]`` or ``None`` for plain JSON. Empty bodies decode to ``None``.
        """
        prepared = self._prepare(method, path, query_params, headers, body)
        policy = self._retry_policy

        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.initial_delay,
                exp_base=policy.backoff_multiplier,
                max=policy.max_delay,
            ),
            before_sleep=self._log_retry(prepared),
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send(prepared, response_type)
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            logger.error(
                "http_retries_exhausted",
                method=prepared.method,
                url=str(prepared.url),
                attempts=exc.last_attempt.attempt_number,
                error=str(cause),
            )
            raise MaxRetriesExceeded(exc.last_attempt.attempt_number, cause) from cause

    @staticmethod
    def _log_retry(prepared: _PreparedRequest):
        def _before_sleep(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            logger.warning(
                "http_retrying",
                method=prepared.method,
                url=str(prepared.url),
                attempt=retry_state.attempt_number,
                delay=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(outcome.exception()) if outcome else None,
            )

        return _before_sleep

    async def _send(self, prepared: _PreparedRequest, response_type: Any) -> HTTPResponse[Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    prepared.method,
                    prepared.url,
                    headers=prepared.headers,
                    content=prepared.content,
                )
        except httpx.TimeoutException as exc:
            logger.warning("http_timeout", method=prepared.method, url=str(prepared.url))
            raise RequestTimeoutError(self._timeout) from exc
        except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
            logger.warning(
                "http_network_error",
                method=prepared.method,
                url=str(prepared.url),
                error=str(exc),
            )
            raise NetworkError(str(exc)) from exc

        headers = dict(response.headers.items())
        if not 200 <= response.status_code <= 299:
            if is_retryable_status(response.status_code):
                logger.warning(
                    "http_retryable_error",
                    status=response.status_code,
                    method=prepared.method,
                    url=str(prepared.url),
                )
            else:
                logger.error(
                    "http_permanent_error",
                    status=response.status_code,
                    method=prepared.method,
                    url=str(prepared.url),
                )
            raise HTTPError(response.status_code, response.content, headers, url=str(prepared.url))

        body = None
        if response.content:
            try:
                if response_type is None:
                    body = response.json()
                else:
                    body = TypeAdapter(response_type).validate_json(response.content)
            except (PydanticValidationError, ValueError) as exc:
                raise DecodingFailed(exc, response.content) from exc

        return HTTPResponse(
            status_code=response.status_code,
            headers=headers,
            content=response.content,
            body=body,
        )

    async def get(
        self,
        path: str,
        *,
        query_params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        response_type: Any = None,
    ) -> HTTPResponse[Any]:
        return await self.request(
            "GET", path, query_params=query_params, headers=headers, response_type=response_type
        )

    async def post(
        self,
        path: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
        response_type: Any = None,
    ) -> HTTPResponse[Any]:
        return await self.request(
            "POST", path, body=body, headers=headers, response_type=response_type
        )

    async def put(
        self,
        path: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
        response_type: Any = None,
    ) -> HTTPResponse[Any]:
        return await self.request(
            "PUT", path, body=body, headers=headers, response_type=response_type
        )

    async def patch(
        self,
        path: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
        response_type: Any = None,
    ) -> HTTPResponse[Any]:
        return await self.request(
            "PATCH", path, body=body, headers=headers, response_type=response_type
        )

    async def delete(
        self,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        response_type: Any = None,
    ) -> HTTPResponse[Any]:
        return await self.request("DELETE", path, headers=headers, response_type=response_type)
