from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # One trial request allowed


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0


@dataclass(frozen=True)
class BreakerPermit:
    """
    Admission ticket returned by ``CircuitBreaker.acquire``.

    ``generation`` is the breaker's state generation at admission time; an
    outcome reported with a permit from an older generation only updates
    totals and never moves the state machine.
    """

    generation: int
    trial: bool = False


# Presets per provider family; connectors declare which one they use.
BREAKER_PRESETS: Dict[str, BreakerConfig] = {
    "discovery": BreakerConfig(failure_threshold=5, cooldown_seconds=60.0),
    "search": BreakerConfig(failure_threshold=3, cooldown_seconds=30.0),
    "registry": BreakerConfig(failure_threshold=5, cooldown_seconds=120.0),
}


class CircuitBreaker:
    """
    Per-provider circuit breaker.

    States:
    - CLOSED: calls pass through; consecutive failures are counted.
    - OPEN: calls are rejected until the cool-down has elapsed.
    - HALF_OPEN: exactly one trial call is in flight; its outcome decides
      whether the breaker closes or re-opens.

    All state changes happen inside a short critical section so interleaved
    calls (tasks or threads) see consistent counts. Every transition bumps a
    generation counter; outcomes carrying a permit from an earlier generation
    are counted but ignored for transitions, so a slow call admitted while
    CLOSED cannot close an OPEN breaker or settle someone else's trial.
    """

    def __init__(
        self,
        name: str,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._generation = 0

        self._total_permitted = 0
        self._total_rejected = 0
        self._total_successes = 0
        self._total_failures = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_at(self) -> Optional[float]:
        return self._last_failure_at

    def _cooldown_elapsed(self, now: float) -> bool:
        return self._opened_at is None or now - self._opened_at >= self.config.cooldown_seconds

    def _is_stale(self, permit: Optional[BreakerPermit]) -> bool:
        return permit is not None and permit.generation != self._generation

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        self._generation += 1

    def acquire(self) -> Optional[BreakerPermit]:
        """Return a permit when a call may proceed, else None; reserves the trial slot in HALF_OPEN."""
        with self._lock:
            now = self._clock()

            if self._state == CircuitState.OPEN and self._cooldown_elapsed(now):
                logger.info(
                    "Circuit breaker '%s' entering HALF_OPEN",
                    self.name,
                    extra={"provider": self.name},
                )
                self._set_state(CircuitState.HALF_OPEN)
                self._trial_in_flight = False

            if self._state == CircuitState.CLOSED:
                self._total_permitted += 1
                return BreakerPermit(self._generation)

            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                self._total_permitted += 1
                return BreakerPermit(self._generation, trial=True)

            self._total_rejected += 1
            return None

    def record_success(self, permit: Optional[BreakerPermit] = None) -> None:
        with self._lock:
            self._total_successes += 1
            if self._is_stale(permit):
                return

            if self._state == CircuitState.CLOSED:
                self._failure_count = 0
            elif self._state == CircuitState.HALF_OPEN:
                logger.info(
                    "Circuit breaker '%s' recovered, entering CLOSED",
                    self.name,
                    extra={"provider": self.name},
                )
                self._set_state(CircuitState.CLOSED)
                self._failure_count = 0
                self._opened_at = None
                self._trial_in_flight = False
            # OPEN: counted only; closing requires a HALF_OPEN trial

    def record_failure(self, permit: Optional[BreakerPermit] = None) -> None:
        with self._lock:
            now = self._clock()
            self._total_failures += 1
            self._last_failure_at = now
            if self._is_stale(permit):
                return

            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                self._open(now)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._open(now)

    def release_trial(self, permit: Optional[BreakerPermit] = None) -> None:
        """Give back a HALF_OPEN trial slot without recording an outcome (cancellation)."""
        with self._lock:
            if permit is None or (permit.trial and not self._is_stale(permit)):
                self._trial_in_flight = False

    def _open(self, now: float) -> None:
        logger.warning(
            "Circuit breaker '%s' OPEN after %d failures",
            self.name,
            self._failure_count,
            extra={"provider": self.name},
        )
        self._set_state(CircuitState.OPEN)
        self._opened_at = now
        self._trial_in_flight = False

    def retry_after(self) -> float:
        """Seconds until an OPEN breaker will permit a trial call (0 if not OPEN)."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._opened_at is None:
                return 0.0
            remaining = self.config.cooldown_seconds - (self._clock() - self._opened_at)
            return max(0.0, remaining)

    def force_open(self) -> None:
        with self._lock:
            self._open(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._set_state(CircuitState.CLOSED)
            self._failure_count = 0
            self._last_failure_at = None
            self._opened_at = None
            self._trial_in_flight = False

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.config.failure_threshold,
                "cooldown_seconds": self.config.cooldown_seconds,
                "total_permitted": self._total_permitted,
                "total_rejected": self._total_rejected,
                "total_successes": self._total_successes,
                "total_failures": self._total_failures,
            }


class CircuitBreakerRegistry:
    """
    Keyed store of breakers (provider name -> breaker).

    One registry is created per process (see ``main.py``) and passed to every
    ResilientProviderClient; nothing reaches for it globally.
    """

    def __init__(
        self,
        default_config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_config = default_config or BreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: Any) -> "CircuitBreakerRegistry":
        return cls(
            default_config=BreakerConfig(
                failure_threshold=int(getattr(settings, "BREAKER_FAILURE_THRESHOLD", 5)),
                cooldown_seconds=float(getattr(settings, "BREAKER_COOLDOWN_SECONDS", 60.0)),
            )
        )

    def get_or_create(self, name: str, config: Optional[BreakerConfig] = None) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config or self.default_config, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        with self._lock:
            return self._breakers.get(name)

    def _all(self) -> List[CircuitBreaker]:
        with self._lock:
            return list(self._breakers.values())

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {b.name: b.snapshot() for b in self._all()}

    def open_circuits(self) -> List[str]:
        return [b.name for b in self._all() if b.state == CircuitState.OPEN]

    def has_open_circuits(self) -> bool:
        return bool(self.open_circuits())

    def reset_all(self) -> None:
        for breaker in self._all():
            breaker.reset()
