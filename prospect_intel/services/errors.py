# prospect_intel/services/errors.py
"""
Typed error taxonomy for every external provider call.

Raw transport exceptions (httpx, asyncio) are classified into a ProviderError
before they leave the resilient client, so callers only ever branch on
``ErrorCode`` and ``retryable``.
"""

from __future__ import annotations

import asyncio
import enum
from typing import Optional

import httpx


class ErrorCode(str, enum.Enum):
    NOT_CONFIGURED = "NOT_CONFIGURED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    RUN_FAILED = "RUN_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES = frozenset(
    {
        ErrorCode.CIRCUIT_OPEN,
        ErrorCode.RATE_LIMITED,
        ErrorCode.TIMEOUT,
        ErrorCode.NETWORK_ERROR,
    }
)


class ProviderError(Exception):
    """A classified failure of one provider call or discovery job."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        *,
        provider: Optional[str] = None,
        job_id: Optional[str] = None,
        retryable: Optional[bool] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider = provider
        self.job_id = job_id
        self.retryable = code in RETRYABLE_CODES if retryable is None else retryable
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        out = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "provider": self.provider,
        }
        if self.job_id:
            out["job_id"] = self.job_id
        if self.retry_after is not None:
            out["retry_after"] = self.retry_after
        return out

    def __repr__(self) -> str:
        return (
            f"ProviderError(code={self.code.value}, provider={self.provider!r}, "
            f"retryable={self.retryable}, message={self.message!r})"
        )


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_error(exc: BaseException, provider: Optional[str] = None) -> ProviderError:
    """
    Map an arbitrary exception onto the provider error taxonomy.

    Already-classified errors pass through unchanged (the provider name is
    filled in when missing).
    """
    if isinstance(exc, ProviderError):
        if exc.provider is None:
            exc.provider = provider
        return exc

    # httpx.TimeoutException is a TransportError, so it must be checked first.
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ProviderError(
            f"{provider or 'provider'} call timed out",
            ErrorCode.TIMEOUT,
            provider=provider,
        )

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ProviderError(
                f"{provider or 'provider'} rate limited the request (429)",
                ErrorCode.RATE_LIMITED,
                provider=provider,
                retry_after=_parse_retry_after(exc.response.headers.get("Retry-After")),
            )
        if status >= 500:
            return ProviderError(
                f"{provider or 'provider'} returned {status}",
                ErrorCode.NETWORK_ERROR,
                provider=provider,
            )
        return ProviderError(str(exc), ErrorCode.UNKNOWN_ERROR, provider=provider)

    if isinstance(exc, httpx.TransportError):
        return ProviderError(
            f"{provider or 'provider'} network error: {exc}",
            ErrorCode.NETWORK_ERROR,
            provider=provider,
        )

    message = str(exc)
    lowered = message.lower()
    if "rate limit" in lowered or "429" in lowered:
        return ProviderError(message, ErrorCode.RATE_LIMITED, provider=provider)
    if "timeout" in lowered or "timed out" in lowered:
        return ProviderError(message, ErrorCode.TIMEOUT, provider=provider)
    if "network" in lowered or "connection" in lowered or "econnrefused" in lowered:
        return ProviderError(message, ErrorCode.NETWORK_ERROR, provider=provider)

    return ProviderError(message or type(exc).__name__, ErrorCode.UNKNOWN_ERROR, provider=provider)
