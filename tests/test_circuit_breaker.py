"""
Tests for circuit_breaker.py

State transitions, the single HALF_OPEN trial, and the registry.
"""
from prospect_intel.services.circuit_breaker import (
    BREAKER_PRESETS,
    BreakerConfig,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from tests.fixtures.provider_payloads import FakeClock


def _breaker(threshold=3, cooldown=30.0):
    clock = FakeClock()
    breaker = CircuitBreaker(
        "fec", BreakerConfig(failure_threshold=threshold, cooldown_seconds=cooldown), clock=clock
    )
    return breaker, clock


def _fail(breaker, times):
    for _ in range(times):
        permit = breaker.acquire()
        assert permit
        breaker.record_failure(permit)


class TestClosedState:
    """CLOSED counts failures and opens at the threshold."""

    def test_new_breaker_is_closed_and_permits(self):
        """A fresh breaker permits calls."""
        breaker, _ = _breaker()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.acquire() is not None

    def test_opens_at_threshold(self):
        """Failures below the threshold keep it closed; reaching it opens."""
        breaker, _ = _breaker(threshold=3)
        _fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 2
        _fail(breaker, 1)
        assert breaker.state == CircuitState.OPEN

    def test_success_resets_failure_count(self):
        """A success while CLOSED clears the consecutive-failure count."""
        breaker, _ = _breaker(threshold=3)
        _fail(breaker, 2)
        breaker.record_success()
        assert breaker.failure_count == 0
        _fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

    def test_last_failure_time_recorded(self):
        """last_failure_at follows the injected clock."""
        breaker, clock = _breaker()
        clock.advance(5)
        _fail(breaker, 1)
        assert breaker.last_failure_at == clock.now


class TestOpenAndHalfOpen:
    """OPEN rejects until cool-down, then allows exactly one trial."""

    def test_open_rejects_before_cooldown(self):
        """Calls are rejected while the cool-down runs."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        _fail(breaker, 1)
        clock.advance(29.9)
        assert breaker.acquire() is None
        assert breaker.retry_after() > 0

    def test_retry_after_counts_down(self):
        """retry_after reports the remaining cool-down."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        _fail(breaker, 1)
        clock.advance(10)
        assert breaker.retry_after() == 20.0

    def test_single_trial_after_cooldown(self):
        """After the cool-down only one concurrent trial is admitted."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        _fail(breaker, 1)
        clock.advance(30)
        assert breaker.acquire() is not None
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.acquire() is None

    def test_trial_success_closes(self):
        """A successful trial closes the breaker and resets counts."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        _fail(breaker, 1)
        clock.advance(31)
        assert breaker.acquire()
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.acquire() is not None

    def test_trial_failure_reopens_with_new_cooldown(self):
        """A failed trial re-opens and restarts the cool-down."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        _fail(breaker, 1)
        clock.advance(30)
        assert breaker.acquire()
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        clock.advance(29)
        assert breaker.acquire() is None
        clock.advance(1)
        assert breaker.acquire() is not None

    def test_released_trial_can_be_retaken(self):
        """A cancelled trial frees the slot without an outcome."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        _fail(breaker, 1)
        clock.advance(30)
        assert breaker.acquire()
        breaker.release_trial()
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.acquire() is not None

    def test_force_open_and_reset(self):
        """force_open and reset are manual overrides."""
        breaker, _ = _breaker()
        breaker.force_open()
        assert breaker.state == CircuitState.OPEN
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.acquire()

    def test_snapshot_counts_rejections(self):
        """snapshot exposes totals."""
        breaker, _ = _breaker(threshold=1)
        _fail(breaker, 1)
        breaker.acquire()
        snap = breaker.snapshot()
        assert snap["state"] == "open"
        assert snap["total_failures"] == 1
        assert snap["total_rejected"] == 1
        assert snap["total_permitted"] == 1


class TestInterleavedOutcomes:
    """Outcomes of calls admitted before a transition do not drive the state."""

    def test_late_success_does_not_close_open_breaker(self):
        """A slow call admitted while CLOSED cannot close a breaker opened meanwhile."""
        breaker, _ = _breaker(threshold=1)
        slow = breaker.acquire()
        fast = breaker.acquire()
        breaker.record_failure(fast)
        assert breaker.state == CircuitState.OPEN

        breaker.record_success(slow)

        assert breaker.state == CircuitState.OPEN
        assert breaker.snapshot()["total_successes"] == 1

    def test_late_success_does_not_settle_trial(self):
        """Only the HALF_OPEN trial's own outcome closes the breaker."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        slow = breaker.acquire()
        _fail(breaker, 1)
        clock.advance(30)
        trial = breaker.acquire()
        assert trial.trial

        breaker.record_success(slow)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.acquire() is None

        breaker.record_success(trial)
        assert breaker.state == CircuitState.CLOSED

    def test_late_failure_does_not_reopen_recovered_breaker(self):
        """A stale failure after recovery leaves the breaker CLOSED and uncounted."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        slow = breaker.acquire()
        _fail(breaker, 1)
        clock.advance(30)
        breaker.record_success(breaker.acquire())

        breaker.record_failure(slow)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.snapshot()["total_failures"] == 2

    def test_stale_release_keeps_current_trial(self):
        """Releasing an old trial permit does not free the current trial slot."""
        breaker, clock = _breaker(threshold=1, cooldown=30)
        _fail(breaker, 1)
        clock.advance(30)
        old_trial = breaker.acquire()
        breaker.record_failure(old_trial)
        clock.advance(30)
        assert breaker.acquire()

        breaker.release_trial(old_trial)

        assert breaker.acquire() is None

    def test_manual_success_while_open_is_counted_only(self):
        """Without a permit a success in OPEN changes nothing but totals."""
        breaker, _ = _breaker()
        breaker.force_open()
        breaker.record_success()
        assert breaker.state == CircuitState.OPEN


class TestRegistry:
    """Registry keys breakers by provider name."""

    def test_get_or_create_returns_same_instance(self):
        """Repeated lookups share one breaker."""
        registry = CircuitBreakerRegistry()
        assert registry.get_or_create("fec") is registry.get_or_create("fec")
        assert registry.get("missing") is None

    def test_preset_config_applied_on_creation(self):
        """A preset passed on first lookup configures the breaker."""
        registry = CircuitBreakerRegistry()
        breaker = registry.get_or_create("wikidata", BREAKER_PRESETS["search"])
        assert breaker.config.failure_threshold == 3
        assert breaker.config.cooldown_seconds == 30.0

    def test_open_circuits_reported(self):
        """open_circuits lists only OPEN breakers."""
        clock = FakeClock()
        registry = CircuitBreakerRegistry(BreakerConfig(failure_threshold=1), clock=clock)
        registry.get_or_create("fec").record_failure()
        registry.get_or_create("propublica")
        assert registry.open_circuits() == ["fec"]
        assert registry.has_open_circuits()
        assert set(registry.snapshot()) == {"fec", "propublica"}

    def test_reset_all(self):
        """reset_all closes every breaker."""
        registry = CircuitBreakerRegistry(BreakerConfig(failure_threshold=1))
        registry.get_or_create("fec").record_failure()
        registry.reset_all()
        assert not registry.has_open_circuits()

    def test_from_settings(self):
        """Default config comes from settings values."""

        class _Settings:
            BREAKER_FAILURE_THRESHOLD = 7
            BREAKER_COOLDOWN_SECONDS = 12.5

        registry = CircuitBreakerRegistry.from_settings(_Settings())
        assert registry.default_config == BreakerConfig(7, 12.5)
