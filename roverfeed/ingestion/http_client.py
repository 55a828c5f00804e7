"""Resilient upstream HTTP client: timeout, retry with backoff, circuit breaker.

The two policies are plain async decorators composed explicitly around the
raw fetch call::

    fetch = with_retry(with_circuit_breaker(raw_fetch, breaker))

so every retry attempt passes through the breaker, and an open circuit is
never retried.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from roverfeed.core.config import settings
from roverfeed.core.errors import (
    CircuitOpenError,
    TransientFetchError,
    UpstreamNotFound,
    UpstreamStatusError,
)
from roverfeed.core.logging import get_logger

log = get_logger("ingestion.http")

USER_AGENT = "roverfeed/1.0"
TRANSIENT_STATUS_CODES = {408, 429}

FetchFn = Callable[[str, Optional[Dict[str, Any]]], Awaitable[Any]]


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    closed: calls pass; ``failure_threshold`` consecutive transient failures open it.
    open: calls fail fast with ``CircuitOpenError`` until ``cooldown_seconds`` elapse.
    half_open: exactly one trial call passes; its outcome closes or re-opens the circuit.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = self.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        if self._state == self.OPEN and self._clock() - self._opened_at >= self.cooldown_seconds:
            return self.HALF_OPEN
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def before_call(self) -> None:
        state = self.state
        if state == self.CLOSED:
            return
        if state == self.HALF_OPEN and not self._trial_in_flight:
            self._state = self.HALF_OPEN
            self._trial_in_flight = True
            log.info(f"Circuit '{self.name}' half-open: allowing one trial call")
            return
        raise CircuitOpenError(self.name, self._opened_at + self.cooldown_seconds)

    def record_success(self) -> None:
        if self._state != self.CLOSED:
            log.info(f"Circuit '{self.name}' closed after successful trial call")
        self._state = self.CLOSED
        self._consecutive_failures = 0
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._state == self.HALF_OPEN or self._consecutive_failures >= self.failure_threshold:
            # A late failure from a call already in flight must not extend the cooldown
            if self._state != self.OPEN:
                log.warning(
                    f"Circuit '{self.name}' opened after {self._consecutive_failures} consecutive failures "
                    f"(cooldown {self.cooldown_seconds:.0f}s)"
                )
                self._state = self.OPEN
                self._opened_at = self._clock()
        self._trial_in_flight = False

    def release_trial(self) -> None:
        """Free the half-open slot when a trial ended without a verdict (e.g. cancelled)."""
        self._trial_in_flight = False


def with_circuit_breaker(fetch: FetchFn, breaker: CircuitBreaker) -> FetchFn:
    async def guarded(url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        breaker.before_call()
        try:
            result = await fetch(url, params)
        except TransientFetchError:
            breaker.record_failure()
            raise
        except UpstreamStatusError:
            # Upstream answered; a 4xx says nothing about its health
            breaker.record_success()
            raise
        except BaseException:
            breaker.release_trial()
            raise
        breaker.record_success()
        return result

    return guarded


def with_retry(
    fetch: FetchFn,
    max_retries: int = 3,
    backoff_base: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FetchFn:
    """Retry transient failures with exponential backoff (base, 2*base, 4*base, ...).

    Backoff uses ``asyncio.sleep`` so cancelling the task interrupts the wait.
    """

    async def retrying(url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        attempt = 0
        while True:
            try:
                return await fetch(url, params)
            except TransientFetchError as exc:
                if attempt >= max_retries:
                    log.error(f"Giving up on {url} after {attempt + 1} attempts: {exc}")
                    raise
                delay = backoff_base * (2**attempt)
                attempt += 1
                log.warning(f"Request failed ({exc}). Waiting {delay:.0f}s before retry {attempt}/{max_retries}")
                await sleep(delay)

    return retrying


class ResilientFetchClient:
    """JSON fetcher for one upstream source.

    Usage:
        async with ResilientFetchClient("perseverance") as client:
            payload = await client.fetch_json(url, params={"sol": 100})
    """

    def __init__(
        self,
        name: str,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        self.breaker = breaker or get_breaker(name)
        self._fetch = with_retry(
            with_circuit_breaker(self._raw_fetch, self.breaker),
            max_retries=max_retries if max_retries is not None else settings.HTTP_MAX_RETRIES,
            backoff_base=backoff_base if backoff_base is not None else settings.HTTP_BACKOFF_BASE_SECONDS,
            sleep=sleep,
        )

    async def __aenter__(self) -> "ResilientFetchClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._fetch(url, params)

    async def _raw_fetch(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise TransientFetchError(f"Timeout after {self.timeout:.0f}s", url) from exc
        except httpx.TransportError as exc:
            raise TransientFetchError(f"Transport error: {exc}", url) from exc

        status = resp.status_code
        if status >= 500 or status in TRANSIENT_STATUS_CODES:
            raise TransientFetchError(f"HTTP {status}", url, status_code=status)
        if status == 404:
            raise UpstreamNotFound("HTTP 404", url, status_code=status)
        if status >= 400:
            raise UpstreamStatusError(f"HTTP {status}", url, status_code=status)

        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamStatusError(f"Invalid JSON body from {url}", url, status_code=status) from exc


_breakers: Dict[str, CircuitBreaker] = {}


def get_breaker(name: str) -> CircuitBreaker:
    """Process-wide breaker per upstream source, so failures accumulate across runs."""
    breaker = _breakers.get(name)
    if breaker is None:
        breaker = CircuitBreaker(
            name,
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
        )
        _breakers[name] = breaker
    return breaker


def reset_breakers() -> None:
    _breakers.clear()
