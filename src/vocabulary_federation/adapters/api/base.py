"""
Shared HTTP utilities for adapter kinds.

The helper is a thin asynchronous HTTPX wrapper with retry logic tuned for
terminology services: it creates one ``AsyncClient`` per request, keeps no
global state, and returns normalized payloads together with the metadata the
request pipeline needs (total count and canonical URL).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ...catalog import all_uris, normalize, same_entry
from ...config import DEFAULT_LANGUAGES, DEFAULT_TIMEOUT
from ...core.cache import DEFAULT_CAPACITY, BoundedCache
from ...core.logging import get_logger

DEFAULT_RETRY_METHODS = ("get", "head", "options")
DEFAULT_RETRY_STATUS_CODES = (401, 403)
DEFAULT_RETRY_COUNT = 3

RetryDelay = Union[float, Callable[[int], float]]


def default_retry_delay(retries: int) -> float:
    """Linear backoff: 0s before the first retry, then 0.3s, 0.6s, ..."""

    return 0.3 * retries


@dataclass(slots=True)
class RetryConfig:
    """
    Retry policy for outbound requests.

    Parameters
    ----------
    methods:
        Lower-case HTTP methods eligible for retries.
    status_codes:
        Response status codes that trigger a retry.
    count:
        Maximum number of retries (not counting the initial attempt).
    delay:
        Seconds to wait before a retry, or a callable receiving the number of
        retries already performed and returning seconds.
    """

    methods: Sequence[str] = DEFAULT_RETRY_METHODS
    status_codes: Sequence[int] = DEFAULT_RETRY_STATUS_CODES
    count: int = DEFAULT_RETRY_COUNT
    delay: RetryDelay = default_retry_delay

    def should_retry(self, error: BaseException) -> bool:
        if not isinstance(error, httpx.HTTPStatusError):
            return False
        return error.request.method.lower() in self.methods and error.response.status_code in self.status_codes

    def delay_for(self, retries: int) -> float:
        if callable(self.delay):
            return float(self.delay(retries))
        return float(self.delay)

    def wait(self, retry_state: RetryCallState) -> float:
        # attempt_number counts attempts made so far, so retries done is one less.
        return self.delay_for(retry_state.attempt_number - 1)


@dataclass(slots=True)
class ApiResponse:
    """Decoded response body plus pipeline metadata."""

    data: Any
    url: str
    status_code: int
    total_count: Optional[int] = None


def canonical_url(url: httpx.URL) -> str:
    """Request URL without query string, followed by sorted, percent-encoded parameters."""

    base = str(url).split("?", 1)[0]
    pairs = sorted(url.params.multi_items())
    if not pairs:
        return base
    return base + "?" + "&".join(f"{quote(key, safe='')}={quote(value, safe='')}" for key, value in pairs)


def concat_url(url: str, *parts: str) -> str:
    """Join URL path segments with exactly one slash between them."""

    for part in parts:
        if not url.endswith("/"):
            url += "/"
        url += part.lstrip("/")
    return url


def merge_languages(*groups: Iterable[str]) -> List[str]:
    """Order-preserving, de-duplicated union of language tags without empties."""

    merged: List[str] = []
    for group in groups:
        for language in group:
            language = (language or "").strip()
            if language and language not in merged:
                merged.append(language)
    return merged


class SchemeApprovals:
    """
    Remembers which schemes a backend confirmed or rejected.

    Both lists are bounded; lookups use identifier equality so that aliases
    of an approved scheme hit the cache as well.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.approved: BoundedCache[Dict[str, Any], str] = BoundedCache(capacity)
        self.rejected: BoundedCache[Dict[str, Any], bool] = BoundedCache(capacity)

    def lookup(self, scheme: Any) -> Tuple[bool, Optional[str]]:
        """Return ``(known, uri)``; ``uri`` is ``None`` for rejected schemes."""

        uri = self.approved.find(lambda known: same_entry(known, scheme))
        if uri is not None:
            return True, uri
        if self.rejected.find(lambda known: same_entry(known, scheme)):
            return True, None
        return False, None

    def approve(self, scheme: Any, uri: str) -> None:
        self.approved.put({"uri": uri, "identifier": all_uris(scheme)}, uri)

    def reject(self, scheme: Any) -> None:
        self.rejected.put({"uri": scheme.get("uri"), "identifier": list(scheme.get("identifier") or [])}, True)


@dataclass(slots=True)
class BaseAPIClient:
    """
    Asynchronous HTTP client with retry support.

    Parameters
    ----------
    timeout:
        Request timeout in seconds.
    default_headers:
        Headers automatically attached to every request.
    retry:
        Retry policy; replaced wholesale through :meth:`set_retry_config`.
    languages:
        Callable returning the caller's language priority list. It is consulted
        on every request by the ``language`` parameter hook.
    bearer_token:
        Callable returning the bearer token to send, or ``None`` to send none.
    transport:
        Optional HTTPX transport, mainly for tests (``httpx.MockTransport``).
    sleep:
        Coroutine used to wait between retries.
    """

    timeout: float = DEFAULT_TIMEOUT
    default_headers: MutableMapping[str, str] = field(default_factory=dict)
    retry: RetryConfig = field(default_factory=RetryConfig)
    languages: Callable[[], Sequence[str]] = field(default=lambda: ())
    bearer_token: Callable[[], Optional[str]] = field(default=lambda: None)
    transport: Optional[httpx.AsyncBaseTransport] = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def set_retry_config(self, **overrides: Any) -> RetryConfig:
        """Replace the retry policy; unspecified fields fall back to the defaults."""

        self.retry = RetryConfig(**overrides)
        return self.retry

    # ------------------------------------------------------------------ hooks

    async def _apply_language(self, request: httpx.Request) -> None:
        requested = request.url.params.get("language", "").split(",")
        language = ",".join(merge_languages(requested, self.languages(), DEFAULT_LANGUAGES))
        request.url = request.url.copy_set_param("language", language)

    async def _apply_auth(self, request: httpx.Request) -> None:
        token = self.bearer_token()
        if token and "Authorization" not in request.headers:
            request.headers["Authorization"] = f"Bearer {token}"

    def _build_client(self, *, skip_additional_parameters: bool = False) -> httpx.AsyncClient:
        hooks: List[Callable[[httpx.Request], Awaitable[None]]] = []
        if not skip_additional_parameters:
            hooks = [self._apply_language, self._apply_auth]
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=dict(self.default_headers),
            follow_redirects=True,
            transport=self.transport,
            event_hooks={"request": hooks},
        )

    # ------------------------------------------------------------------ requests

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        skip_additional_parameters: bool = False,
    ) -> ApiResponse:
        """
        Issue a request and return the normalized payload.

        Raises
        ------
        httpx.HTTPStatusError
            The backend answered with an error status (after retries).
        httpx.RequestError
            No response was received.
        """

        query = {key: _stringify(value) for key, value in (params or {}).items() if value is not None}
        self.logger.debug("HTTP request", extra={"method": method.upper(), "url": url, "params": query or None})

        async def _send() -> httpx.Response:
            async with self._build_client(skip_additional_parameters=skip_additional_parameters) as client:
                response = await client.request(method.upper(), url, params=query or None, json=json_body, headers=headers)
                response.raise_for_status()
                return response

        retrying = AsyncRetrying(
            retry=retry_if_exception(self.retry.should_retry),
            stop=stop_after_attempt(self.retry.count + 1),
            wait=self.retry.wait,
            sleep=self.sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await _send()

        self.logger.debug("HTTP response", extra={"status_code": response.status_code, "url": str(response.url)})
        return ApiResponse(
            data=normalize(_decode(response)),
            url=canonical_url(response.request.url),
            status_code=response.status_code,
            total_count=_total_count(response),
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        status_code = error.response.status_code if isinstance(error, httpx.HTTPStatusError) else None
        self.logger.warning(
            "Retrying HTTP request",
            extra={
                "attempt": retry_state.attempt_number,
                "status_code": status_code,
                "delay": retry_state.next_action.sleep if retry_state.next_action else None,
            },
        )

    async def get_json(self, url: str, *, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> ApiResponse:
        return await self.request("GET", url, params=params, **kwargs)

    async def post_json(self, url: str, *, json_body: Any = None, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> ApiResponse:
        return await self.request("POST", url, params=params, json_body=json_body, **kwargs)

    async def put_json(self, url: str, *, json_body: Any = None, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> ApiResponse:
        return await self.request("PUT", url, params=params, json_body=json_body, **kwargs)

    async def patch_json(self, url: str, *, json_body: Any = None, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> ApiResponse:
        return await self.request("PATCH", url, params=params, json_body=json_body, **kwargs)

    async def delete(self, url: str, *, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> ApiResponse:
        return await self.request("DELETE", url, params=params, **kwargs)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _total_count(response: httpx.Response) -> Optional[int]:
    raw = response.headers.get("x-total-count")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
