"""Retry, circuit breaker and status mapping of the upstream client"""

import httpx
import pytest

from roverfeed.core.errors import (
    CircuitOpenError,
    TransientFetchError,
    UpstreamNotFound,
    UpstreamStatusError,
)
from roverfeed.ingestion.http_client import (
    CircuitBreaker,
    ResilientFetchClient,
    get_breaker,
    with_circuit_breaker,
    with_retry,
)

URL = "https://upstream.test/feed"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_client(handler, breaker=None, max_retries=3, sleep=None):
    return ResilientFetchClient(
        "test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        breaker=breaker or CircuitBreaker("test", failure_threshold=5, cooldown_seconds=60),
        max_retries=max_retries,
        backoff_base=2.0,
        sleep=sleep or RecordingSleep(),
    )


class TestRetry:
    """Exponential backoff on transient failures"""

    @pytest.mark.asyncio
    async def test_backoff_delays_are_2_4_8(self):
        sleep = RecordingSleep()
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = make_client(handler, sleep=sleep)
        with pytest.raises(TransientFetchError) as exc_info:
            await client.fetch_json(URL)

        assert len(calls) == 4
        assert sleep.delays == [2.0, 4.0, 8.0]
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        responses = iter([httpx.Response(500), httpx.Response(429), httpx.Response(200, json={"ok": True})])
        client = make_client(lambda request: next(responses))

        assert await client.fetch_json(URL) == {"ok": True}

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400)

        client = make_client(handler)
        with pytest.raises(UpstreamStatusError) as exc_info:
            await client.fetch_json(URL)

        assert len(calls) == 1
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_404_is_reported_as_not_found(self):
        client = make_client(lambda request: httpx.Response(404))
        with pytest.raises(UpstreamNotFound):
            await client.fetch_json(URL)

    @pytest.mark.asyncio
    async def test_transport_errors_are_transient(self):
        sleep = RecordingSleep()

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, max_retries=2, sleep=sleep)
        with pytest.raises(TransientFetchError):
            await client.fetch_json(URL)
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_invalid_json_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=b"<html>maintenance</html>")

        client = make_client(handler)
        with pytest.raises(UpstreamStatusError):
            await client.fetch_json(URL)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_with_retry_only_retries_transient_errors(self):
        attempts = []

        async def fetch(url, params=None):
            attempts.append(url)
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await with_retry(fetch, max_retries=3, sleep=RecordingSleep())(URL)
        assert len(attempts) == 1


class TestCircuitBreaker:
    """Consecutive failures open the circuit"""

    @pytest.mark.asyncio
    async def test_opens_after_five_failures_and_fails_fast(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=5, cooldown_seconds=60, clock=clock)
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        client = make_client(handler, breaker=breaker, max_retries=0)
        for _ in range(5):
            with pytest.raises(TransientFetchError):
                await client.fetch_json(URL)

        assert breaker.state == CircuitBreaker.OPEN
        assert len(calls) == 5

        with pytest.raises(CircuitOpenError):
            await client.fetch_json(URL)
        assert len(calls) == 5  # no network call while open

    @pytest.mark.asyncio
    async def test_open_circuit_is_not_retried(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=60, clock=clock)
        breaker.record_failure()
        sleep = RecordingSleep()

        client = make_client(lambda request: httpx.Response(200, json={}), breaker=breaker, sleep=sleep)
        with pytest.raises(CircuitOpenError):
            await client.fetch_json(URL)
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=2, cooldown_seconds=60, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN

        clock.now += 60
        assert breaker.state == CircuitBreaker.HALF_OPEN

        guarded = with_circuit_breaker(self._ok, breaker)
        assert await guarded(URL) == {"ok": True}
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=2, cooldown_seconds=60, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.now += 61

        guarded = with_circuit_breaker(self._failing, breaker)
        with pytest.raises(TransientFetchError):
            await guarded(URL)

        assert breaker.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitOpenError):
            await guarded(URL)

    def test_half_open_allows_a_single_trial(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=10, clock=clock)
        breaker.record_failure()
        clock.now += 10

        breaker.before_call()  # trial admitted
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_late_failure_does_not_extend_cooldown(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=60, clock=clock)
        breaker.record_failure()

        # a call started before the circuit opened fails halfway through the cooldown
        clock.now += 30
        breaker.record_failure()

        clock.now += 30
        assert breaker.state == CircuitBreaker.HALF_OPEN

    @pytest.mark.asyncio
    async def test_client_errors_do_not_trip_the_breaker(self):
        breaker = CircuitBreaker("test", failure_threshold=2, cooldown_seconds=60)
        client = make_client(lambda request: httpx.Response(403), breaker=breaker, max_retries=0)
        for _ in range(3):
            with pytest.raises(UpstreamStatusError):
                await client.fetch_json(URL)
        assert breaker.state == CircuitBreaker.CLOSED

    def test_one_breaker_per_source(self):
        assert get_breaker("curiosity") is get_breaker("curiosity")
        assert get_breaker("curiosity") is not get_breaker("perseverance")

    @staticmethod
    async def _ok(url, params=None):
        return {"ok": True}

    @staticmethod
    async def _failing(url, params=None):
        raise TransientFetchError("HTTP 503", url, status_code=503)
