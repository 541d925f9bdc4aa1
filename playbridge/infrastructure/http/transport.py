"""Resilient HTTP transport shared by every provider client."""

import asyncio
import logging
import math
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from playbridge.crosscutting.metrics import MetricsCollector
from playbridge.domain.entities import BackoffOptions
from playbridge.domain.errors import CircuitBreakerError, RateLimitError, TransportError
from playbridge.domain.ports import KeyValueStore

from .cache import (
    DEFAULT_TTL_MS,
    compute_cache_key,
    deserialize_cached_response,
    serialize_cached_response,
    should_cache,
)
from .circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 15_000
BODY_SNIPPET_LENGTH = 200

Sleep = Callable[[float], Awaitable[Any]]


def parse_retry_after_ms(headers: Mapping[str, str], now: Optional[datetime] = None) -> Optional[int]:
    """Translate a Retry-After header into milliseconds.

    Numeric values are seconds; HTTP-dates yield the time remaining until
    that date, never negative. Missing or unparseable values return None.
    """
    value = headers.get("Retry-After") if headers is not None else None
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        # inf, nan and huge exponents are unusable hints
        return max(0, int(seconds * 1000)) if math.isfinite(seconds * 1000) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, int((when - now).total_seconds() * 1000))


def backoff_delay_ms(policy: BackoffOptions, attempt: int, jitter: Callable[[float, float], float] = random.uniform) -> int:
    """Exponential delay for the given zero-based attempt, jittered and capped."""
    delay = policy.base_delay_ms * (2 ** attempt)
    if policy.jitter_ms > 0:
        delay += jitter(0, policy.jitter_ms)
    return int(min(delay, policy.max_delay_ms))


def is_transient(exc: BaseException) -> bool:
    """Outcomes that count against a provider's circuit breaker."""
    if isinstance(exc, RateLimitError):
        return True
    return isinstance(exc, TransportError) and exc.retryable


def _build_timeout(timeout_ms: int) -> httpx.Timeout:
    timeout_seconds = max(timeout_ms, 100) / 1000
    connect_timeout = min(timeout_seconds, 5.0)
    return httpx.Timeout(timeout_seconds, connect=connect_timeout, read=timeout_seconds, write=timeout_seconds)


class ProviderTransport:
    """Bearer-authenticated JSON client with retry, backoff and circuit breaking.

    429 and 5xx responses (and network failures) are retried with
    exponential backoff up to the configured bound; any other non-2xx fails
    immediately. One logical request, retries included, is one breaker call.
    """

    def __init__(self, provider: str, token: str, base_url: str, *,
                 backoff: Optional[BackoffOptions] = None,
                 breaker: Optional[CircuitBreaker] = None,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 cache: Optional[KeyValueStore] = None,
                 cache_ttl_ms: int = DEFAULT_TTL_MS,
                 user_id: Optional[str] = None,
                 metrics: Optional[MetricsCollector] = None,
                 sleep: Sleep = asyncio.sleep,
                 http_client: Optional[httpx.AsyncClient] = None,
                 jitter: Callable[[float, float], float] = random.uniform):
        if not token:
            raise ValueError(f"{provider} auth token is required")
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.backoff = backoff or BackoffOptions()
        self.breaker = breaker or CircuitBreaker(provider)
        self.timeout_ms = timeout_ms
        self.cache = cache
        self.cache_ttl_ms = cache_ttl_ms
        self.user_id = user_id
        self.metrics = metrics
        self._token = token
        self._sleep = sleep
        self._jitter = jitter
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "ProviderTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def build_url(self, path: str, query: Optional[Mapping[str, Any]] = None) -> httpx.URL:
        params = {k: str(v) for k, v in (query or {}).items() if v is not None}
        return httpx.URL(f"{self.base_url}{path}", params=params)

    async def request(self, method: str, path: str, body: Any = None,
                      query: Optional[Mapping[str, Any]] = None,
                      backoff: Optional[BackoffOptions] = None) -> Any:
        """Send one logical request and return the parsed JSON body.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            body: Optional JSON body
            query: Optional query parameters; None values are dropped
            backoff: Per-call override of the retry policy

        Returns:
            Parsed JSON, or None for 204 and empty bodies

        Raises:
            RateLimitError: 429 persisted past the retry bound
            TransportError: non-2xx status, 5xx past the bound, network failure or non-JSON body
            CircuitBreakerError: the provider's breaker rejected the call
        """
        method = method.upper()
        url = self.build_url(path, query)
        cache_key = None
        if self.cache is not None and method == "GET":
            cache_key = compute_cache_key(method, str(url), self.user_id)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for {self.provider} GET {path}")
                return deserialize_cached_response(cached)["body"]

        policy = backoff or self.backoff
        try:
            return await self.breaker.call(
                lambda: self._send_with_retry(method, url, body, policy, cache_key),
                is_failure=is_transient,
            )
        except CircuitBreakerError:
            if self.metrics:
                self.metrics.record_breaker_rejection()
            raise

    async def _send_with_retry(self, method: str, url: httpx.URL, body: Any,
                               policy: BackoffOptions, cache_key: Optional[str]) -> Any:
        attempt = 0
        while True:
            if self.metrics:
                self.metrics.record_request()
            try:
                response = await self._send(method, url, body)
            except httpx.TransportError as e:
                if attempt >= policy.retries:
                    raise TransportError(
                        f"{self.provider} request {method} {url.path} failed: {e}",
                        status=None,
                        provider=self.provider,
                    ) from e
                delay_ms = backoff_delay_ms(policy, attempt, self._jitter)
                logger.warning(f"{self.provider} network error on {method} {url.path} "
                               f"(attempt {attempt + 1}), retrying in {delay_ms}ms: {e}")
                await self._wait(delay_ms, rate_limited=False)
                attempt += 1
                continue

            status = response.status_code
            if status == 429:
                hinted = parse_retry_after_ms(response.headers)
                delay_ms = hinted if hinted is not None else backoff_delay_ms(policy, attempt, self._jitter)
                if attempt >= policy.retries:
                    raise RateLimitError(
                        f"{self.provider} rate limit exceeded after {attempt} retries",
                        retry_after_ms=delay_ms,
                        provider=self.provider,
                    )
                logger.warning(f"{self.provider} rate limited on {method} {url.path}, waiting {delay_ms}ms")
                await self._wait(delay_ms, rate_limited=True)
                attempt += 1
                continue

            if status >= 500:
                snippet = response.text[:BODY_SNIPPET_LENGTH]
                if attempt >= policy.retries:
                    raise TransportError(
                        f"{self.provider} API {status}: {snippet}",
                        status=status,
                        body=snippet,
                        provider=self.provider,
                    )
                delay_ms = backoff_delay_ms(policy, attempt, self._jitter)
                logger.warning(f"{self.provider} returned {status} on {method} {url.path} "
                               f"(attempt {attempt + 1}), retrying in {delay_ms}ms")
                await self._wait(delay_ms, rate_limited=False)
                attempt += 1
                continue

            if not 200 <= status < 300:
                snippet = response.text[:BODY_SNIPPET_LENGTH]
                raise TransportError(
                    f"{self.provider} API {status}: {snippet}",
                    status=status,
                    body=snippet,
                    provider=self.provider,
                )

            data = self._parse_body(response)
            if cache_key is not None and should_cache(method, status):
                await self.cache.set(
                    cache_key,
                    serialize_cached_response(status, dict(response.headers), data),
                    self.cache_ttl_ms,
                )
            return data

    async def _send(self, method: str, url: httpx.URL, body: Any) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=_build_timeout(self.timeout_ms))
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }
        kwargs = {"headers": headers, "timeout": _build_timeout(self.timeout_ms)}
        if body is not None:
            kwargs["json"] = body
        return await self._client.request(method, url, **kwargs)

    async def _wait(self, delay_ms: int, rate_limited: bool) -> None:
        if self.metrics:
            self.metrics.record_retry()
            if rate_limited:
                self.metrics.record_rate_limit_wait(delay_ms)
        await self._sleep(delay_ms / 1000.0)

    def _parse_body(self, response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"{self.provider} returned a non-JSON body ({response.status_code})",
                status=response.status_code,
                body=response.text[:BODY_SNIPPET_LENGTH],
                provider=self.provider,
            ) from e
