from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import get_settings
from .circuit_breaker import BREAKER_PRESETS, CircuitBreakerRegistry
from .connectors.base import BaseConnector, ConnectorResult
from .errors import ErrorCode, ProviderError, classify_error
from .rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCall:
    """One invocation of a provider operation; created per call."""

    provider: str
    operation: str
    timeout_seconds: float
    max_attempts: int = 1


def _is_retryable(exc: BaseException) -> bool:
    # tenacity records cancellation as an attempt outcome; never retry it
    if isinstance(exc, asyncio.CancelledError):
        return False
    return classify_error(exc).retryable


class ResilientProviderClient:
    """
    Wraps every provider call with a credential check, the provider's circuit
    breaker, a hard timeout, bounded retries, per-provider rate limiting and
    error classification. Each attempt first takes a token from the
    provider's bucket, so the wait counts against the call timeout.

    Only ProviderError ever leaves ``call``.
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        *,
        limiters: Optional[RateLimiterRegistry] = None,
        settings: Any = None,
        credentials: Optional[Mapping[str, Optional[str]]] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_wait: Any = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.breakers = breakers
        self._settings = settings or get_settings()
        self.limiters = limiters if limiters is not None else RateLimiterRegistry.from_settings(self._settings)
        self._credentials = credentials
        self.timeout_seconds = float(
            timeout_seconds or getattr(self._settings, "PROVIDER_TIMEOUT_SECONDS", 30.0)
        )
        self.max_attempts = int(
            max_attempts or getattr(self._settings, "PROVIDER_MAX_ATTEMPTS", 2)
        )
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self._http_client = http_client

    def resolve_credential(self, connector: BaseConnector) -> Optional[str]:
        if not connector.credential_setting:
            return None
        if self._credentials is not None and connector.name in self._credentials:
            return self._credentials[connector.name] or None
        return getattr(self._settings, connector.credential_setting, None) or None

    async def call(
        self,
        connector: BaseConnector,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> ConnectorResult:
        if operation not in connector.operations:
            raise ValueError(f"{connector.name} does not support operation '{operation}'")

        call = ProviderCall(
            provider=connector.name,
            operation=operation,
            timeout_seconds=float(timeout_seconds or self.timeout_seconds),
            max_attempts=self.max_attempts,
        )
        log_extra = {"provider": call.provider, "operation": call.operation}

        # Static precondition: never touches the breaker.
        credential = self.resolve_credential(connector)
        if connector.requires_credential and not credential:
            logger.debug("%s not configured; skipping %s", call.provider, call.operation, extra=log_extra)
            raise ProviderError(
                f"{connector.credential_setting} is not configured",
                ErrorCode.NOT_CONFIGURED,
                provider=call.provider,
            )

        breaker = self.breakers.get_or_create(
            call.provider, BREAKER_PRESETS.get(connector.breaker_preset or "")
        )
        permit = breaker.acquire()
        if permit is None:
            raise ProviderError(
                f"Circuit breaker for {call.provider} is open",
                ErrorCode.CIRCUIT_OPEN,
                provider=call.provider,
                retry_after=breaker.retry_after(),
            )

        try:
            result = await asyncio.wait_for(
                self._invoke_with_retries(connector, call, payload or {}, credential),
                timeout=call.timeout_seconds,
            )
        except asyncio.CancelledError:
            breaker.release_trial(permit)
            raise
        except Exception as exc:
            error = classify_error(exc, provider=call.provider)
            breaker.record_failure(permit)
            logger.warning(
                "Provider call %s.%s failed: %s (%s)",
                call.provider,
                call.operation,
                error.message,
                error.code.value,
                extra=log_extra,
            )
            if error is exc:
                raise
            raise error from exc

        breaker.record_success(permit)
        return result

    async def _invoke_with_retries(
        self,
        connector: BaseConnector,
        call: ProviderCall,
        payload: Dict[str, Any],
        credential: Optional[str],
    ) -> ConnectorResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(call.max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        limiter = self.limiters.get_or_create(call.provider)
        async for attempt in retrying:
            with attempt:
                await limiter.acquire()
                if self._http_client is not None:
                    result = await connector.invoke(
                        self._http_client, call.operation, payload, credential
                    )
                else:
                    async with httpx.AsyncClient(timeout=call.timeout_seconds) as client:
                        result = await connector.invoke(
                            client, call.operation, payload, credential
                        )
        return ConnectorResult(result)
