"""
Tests for provider_client.py and errors.py

Credential precondition, breaker gating, timeouts, retries and error
classification of the resilient provider client.
"""
import asyncio

import httpx
import pytest
from tenacity import wait_none

from prospect_intel.services.circuit_breaker import (
    BreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from prospect_intel.services.connectors.base import BaseConnector, ConnectorResult
from prospect_intel.services.connectors.fec import FECConnector
from prospect_intel.services.connectors.propublica import ProPublicaConnector
from prospect_intel.services.errors import ErrorCode, ProviderError, classify_error
from prospect_intel.services.provider_client import ResilientProviderClient
from prospect_intel.services.rate_limiter import RateLimitConfig, RateLimiterRegistry
from tests.fixtures.provider_payloads import (
    FEC_SCHEDULE_A,
    PROPUBLICA_SEARCH,
    FakeClock,
    counting_handler,
    mock_http_client,
)


class SlowConnector(BaseConnector):
    name = "slow"
    operations = ("lookup",)

    async def invoke(self, client, operation, params, credential=None):
        await asyncio.sleep(5)
        return ConnectorResult({})


class GatedConnector(BaseConnector):
    """Fails at once when asked to, otherwise waits for ``release``."""

    name = "gated"
    operations = ("lookup",)
    release: asyncio.Event

    async def invoke(self, client, operation, params, credential=None):
        if params.get("fail"):
            raise httpx.ConnectError("connection refused")
        await self.release.wait()
        return ConnectorResult({"ok": True})


def _client(handler, registry=None, **kwargs):
    kwargs.setdefault("retry_wait", wait_none())
    kwargs.setdefault("max_attempts", 1)
    return ResilientProviderClient(
        registry or CircuitBreakerRegistry(),
        http_client=mock_http_client(handler),
        **kwargs,
    )


def _run_error(coro) -> ProviderError:
    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(coro)
    return excinfo.value


class TestCredentialPrecondition:
    """Missing credentials fail fast without touching network or breaker."""

    def test_not_configured_makes_no_request(self):
        """FEC without an API key is NOT_CONFIGURED and sends nothing."""
        handler, calls = counting_handler(httpx.Response(200, json=FEC_SCHEDULE_A))
        registry = CircuitBreakerRegistry()
        client = _client(handler, registry, credentials={"fec": None})

        err = _run_error(client.call(FECConnector(), "contributions", {"contributor_name": "Jane Smith"}))

        assert err.code == ErrorCode.NOT_CONFIGURED
        assert err.retryable is False
        assert calls == []
        assert registry.get("fec") is None

    def test_configured_credential_is_passed(self):
        """The resolved key is forwarded to the connector."""
        handler, calls = counting_handler(httpx.Response(200, json=FEC_SCHEDULE_A))
        client = _client(handler, credentials={"fec": "secret"})

        result = asyncio.run(client.call(FECConnector(), "contributions", {"contributor_name": "Jane Smith"}))

        assert result["contribution_count"] == 3
        assert calls[0].url.params["api_key"] == "secret"

    def test_public_connector_needs_no_credential(self):
        """Connectors without a credential setting always run."""
        handler, _ = counting_handler(httpx.Response(200, json=PROPUBLICA_SEARCH))
        client = _client(handler)
        result = asyncio.run(
            client.call(ProPublicaConnector(), "search_organizations", {"query": "Smith"})
        )
        assert len(result["organizations"]) == 2

    def test_unsupported_operation_rejected(self):
        """Unknown operations are a programming error."""
        handler, _ = counting_handler(httpx.Response(200, json={}))
        client = _client(handler)
        with pytest.raises(ValueError):
            asyncio.run(client.call(ProPublicaConnector(), "nope", {}))


class TestBreakerGating:
    """Open breakers reject before any I/O."""

    def test_circuit_open_makes_no_request(self):
        """An OPEN breaker yields CIRCUIT_OPEN with retry_after."""
        handler, calls = counting_handler(httpx.Response(200, json=PROPUBLICA_SEARCH))
        registry = CircuitBreakerRegistry(clock=FakeClock())
        registry.get_or_create("propublica", BreakerConfig(1, 60.0)).force_open()
        client = _client(handler, registry)

        err = _run_error(client.call(ProPublicaConnector(), "search_organizations", {"query": "Smith"}))

        assert err.code == ErrorCode.CIRCUIT_OPEN
        assert err.retryable is True
        assert err.retry_after == 60.0
        assert calls == []

    def test_failures_open_breaker(self):
        """Repeated 5xx failures trip the provider's breaker."""
        handler, _ = counting_handler(httpx.Response(503))
        registry = CircuitBreakerRegistry()
        client = _client(handler, registry)
        connector = ProPublicaConnector()

        for _ in range(5):
            err = _run_error(client.call(connector, "search_organizations", {"query": "Smith"}))
            assert err.code == ErrorCode.NETWORK_ERROR

        assert registry.get("propublica").state == CircuitState.OPEN
        err = _run_error(client.call(connector, "search_organizations", {"query": "Smith"}))
        assert err.code == ErrorCode.CIRCUIT_OPEN

    def test_success_records_on_breaker(self):
        """A successful call leaves the breaker CLOSED with no failures."""
        handler, _ = counting_handler(httpx.Response(200, json=PROPUBLICA_SEARCH))
        registry = CircuitBreakerRegistry()
        client = _client(handler, registry)
        asyncio.run(client.call(ProPublicaConnector(), "search_organizations", {"query": "Smith"}))
        snap = registry.get("propublica").snapshot()
        assert snap["state"] == "closed"
        assert snap["total_successes"] == 1


class TestTimeoutsAndRetries:
    """Timeouts bound the whole call; retryable failures are retried."""

    def test_timeout_classified(self):
        """A call exceeding its timeout raises TIMEOUT and counts a failure."""
        registry = CircuitBreakerRegistry()
        client = ResilientProviderClient(registry, timeout_seconds=0.05, max_attempts=1)

        err = _run_error(client.call(SlowConnector(), "lookup", {}))

        assert err.code == ErrorCode.TIMEOUT
        assert err.retryable is True
        assert registry.get("slow").failure_count == 1

    def test_retry_then_success(self):
        """A 503 followed by a 200 succeeds within the attempt budget."""
        responses = [httpx.Response(503), httpx.Response(200, json=PROPUBLICA_SEARCH)]
        calls = []

        def handler(request):
            calls.append(request)
            return responses[len(calls) - 1]

        registry = CircuitBreakerRegistry()
        client = _client(handler, registry, max_attempts=2)
        result = asyncio.run(
            client.call(ProPublicaConnector(), "search_organizations", {"query": "Smith"})
        )

        assert len(calls) == 2
        assert result["total_results"] == 2
        assert registry.get("propublica").failure_count == 0

    def test_non_retryable_not_retried(self):
        """4xx errors other than 429 fail on the first attempt."""
        handler, calls = counting_handler(httpx.Response(400))
        client = _client(handler, max_attempts=3)
        err = _run_error(client.call(ProPublicaConnector(), "search_organizations", {"query": "Smith"}))
        assert err.code == ErrorCode.UNKNOWN_ERROR
        assert len(calls) == 1

    def test_rate_limited_with_retry_after(self):
        """429 responses become RATE_LIMITED and keep the Retry-After hint."""
        handler, _ = counting_handler(httpx.Response(429, headers={"Retry-After": "7"}))
        client = _client(handler)
        err = _run_error(client.call(ProPublicaConnector(), "search_organizations", {"query": "Smith"}))
        assert err.code == ErrorCode.RATE_LIMITED
        assert err.retry_after == 7.0


class TestInterleavedCalls:
    """Concurrent calls on one provider settle the breaker consistently."""

    def test_slow_success_does_not_close_breaker_opened_meanwhile(self):
        """A call admitted before the breaker opened cannot close it on success."""
        handler, _ = counting_handler(httpx.Response(200, json={}))
        registry = CircuitBreakerRegistry(BreakerConfig(failure_threshold=1, cooldown_seconds=60.0))
        client = _client(handler, registry)
        connector = GatedConnector()

        async def go():
            connector.release = asyncio.Event()
            slow = asyncio.create_task(client.call(connector, "lookup", {}))
            await asyncio.sleep(0)
            with pytest.raises(ProviderError) as excinfo:
                await client.call(connector, "lookup", {"fail": True})
            assert excinfo.value.code == ErrorCode.NETWORK_ERROR
            connector.release.set()
            return await slow

        result = asyncio.run(go())

        assert result == {"ok": True}
        breaker = registry.get("gated")
        assert breaker.state == CircuitState.OPEN
        assert breaker.snapshot()["total_successes"] == 1


class TestRateLimiting:
    """Calls take a token from the provider's bucket before each attempt."""

    def test_calls_are_paced(self):
        """Once the burst is spent, the next call waits for a refill."""
        handler, calls = counting_handler(httpx.Response(200, json=PROPUBLICA_SEARCH))
        clock = FakeClock()
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            clock.advance(seconds)

        limiters = RateLimiterRegistry(
            RateLimitConfig(max_tokens=2, refill_per_second=1.0), clock=clock, sleep=fake_sleep
        )
        client = _client(handler, limiters=limiters)

        async def go():
            for _ in range(3):
                await client.call(ProPublicaConnector(), "search_organizations", {"query": "Smith"})

        asyncio.run(go())

        assert len(calls) == 3
        assert sum(sleeps) == pytest.approx(1.0)
        assert limiters.get("propublica").snapshot()["total_waits"] == 1

    def test_token_wait_bounded_by_call_timeout(self):
        """Waiting on an empty bucket past the timeout is a TIMEOUT with no request sent."""
        handler, calls = counting_handler(httpx.Response(200, json=PROPUBLICA_SEARCH))
        limiters = RateLimiterRegistry(RateLimitConfig(max_tokens=1, refill_per_second=0.01))
        registry = CircuitBreakerRegistry()
        client = _client(handler, registry, limiters=limiters)
        connector = ProPublicaConnector()

        asyncio.run(client.call(connector, "search_organizations", {"query": "Smith"}))
        err = _run_error(
            client.call(connector, "search_organizations", {"query": "Smith"}, timeout_seconds=0.05)
        )

        assert err.code == ErrorCode.TIMEOUT
        assert len(calls) == 1
        assert registry.get("propublica").failure_count == 1


class TestClassifyError:
    """classify_error maps raw exceptions onto ErrorCode."""

    def test_transport_error_is_network(self):
        """Connection failures are NETWORK_ERROR."""
        err = classify_error(httpx.ConnectError("refused"), provider="fec")
        assert err.code == ErrorCode.NETWORK_ERROR
        assert err.provider == "fec"

    def test_asyncio_timeout(self):
        """asyncio timeouts are TIMEOUT."""
        assert classify_error(asyncio.TimeoutError()).code == ErrorCode.TIMEOUT

    def test_provider_error_passes_through(self):
        """Already-classified errors are returned as-is with provider filled in."""
        original = ProviderError("boom", ErrorCode.RUN_FAILED, job_id="ws_1")
        classified = classify_error(original, provider="exa_websets")
        assert classified is original
        assert classified.provider == "exa_websets"
        assert classified.retryable is False

    def test_unknown_keeps_message(self):
        """Unrecognised exceptions are UNKNOWN_ERROR with the original message."""
        err = classify_error(RuntimeError("weird failure"))
        assert err.code == ErrorCode.UNKNOWN_ERROR
        assert err.message == "weird failure"

    def test_to_dict(self):
        """to_dict carries code, retryable and job id."""
        err = ProviderError("x", ErrorCode.TIMEOUT, provider="exa_websets", job_id="ws_1")
        assert err.to_dict() == {
            "code": "TIMEOUT",
            "message": "x",
            "retryable": True,
            "provider": "exa_websets",
            "job_id": "ws_1",
        }
