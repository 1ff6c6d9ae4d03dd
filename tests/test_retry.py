import pytest

from rewards_runner.retry import RetryTracker, TimeBoundedRetry, reload_with_retry


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_tracker_stops_after_configured_limit():
    tracker = RetryTracker(2)

    assert tracker.register_failure() is True
    assert tracker.has_exceeded() is False
    assert tracker.attempt_count == 1

    assert tracker.register_failure() is True
    assert tracker.has_exceeded() is False
    assert tracker.attempt_count == 2

    assert tracker.register_failure() is False
    assert tracker.has_exceeded() is True
    assert tracker.attempt_count == 3


@pytest.mark.parametrize("configured", [-3, 0, None, "abc"])
def test_tracker_normalizes_invalid_configuration(configured):
    tracker = RetryTracker(configured)

    assert tracker.register_failure() is False
    assert tracker.has_exceeded() is True
    assert tracker.attempt_count == 1


def test_tracker_remaining_never_negative():
    tracker = RetryTracker(1)
    assert tracker.remaining == 1
    tracker.register_failure()
    tracker.register_failure()
    assert tracker.remaining == 0


def test_time_bounded_retry_hits_clock_ceiling_first():
    clock = FakeClock()
    budget = TimeBoundedRetry(10, max_total_seconds=30, clock=clock)

    assert budget.should_attempt()
    clock.now = 20
    assert budget.register_failure() is True
    clock.now = 31
    assert budget.register_failure() is False
    assert budget.has_exceeded()
    assert budget.attempt_count == 2
    assert budget.elapsed == 31


def test_time_bounded_retry_hits_attempt_ceiling_first():
    budget = TimeBoundedRetry(1, max_total_seconds=30, clock=FakeClock())

    assert budget.register_failure() is True
    assert budget.register_failure() is False
    assert not budget.time_exceeded()


@pytest.mark.asyncio
async def test_reload_succeeds_on_second_attempt():
    calls = 0

    async def reload():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise TimeoutError("navigation timeout")

    await reload_with_retry(reload, max_attempts=2, settle_delay=0)
    assert calls == 2


@pytest.mark.asyncio
async def test_reload_raises_last_error_when_all_attempts_fail():
    calls = 0

    async def reload():
        nonlocal calls
        calls += 1
        raise TimeoutError(f"timeout {calls}")

    with pytest.raises(TimeoutError, match="timeout 2"):
        await reload_with_retry(reload, max_attempts=2, settle_delay=0)
    assert calls == 2


@pytest.mark.asyncio
async def test_reload_closed_page_recovers_once():
    calls = 0
    recovered = 0

    async def reload():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("Target page has been closed")

    async def recover():
        nonlocal recovered
        recovered += 1

    await reload_with_retry(reload, recover=recover, max_attempts=3, settle_delay=0)
    assert calls == 2
    assert recovered == 1


@pytest.mark.asyncio
async def test_reload_closed_page_on_later_attempt_stops():
    calls = 0

    async def reload():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("net::ERR_CONNECTION_RESET")
        raise RuntimeError("Target page has been closed")

    with pytest.raises(RuntimeError, match="has been closed"):
        await reload_with_retry(reload, max_attempts=5, settle_delay=0)
    assert calls == 2


@pytest.mark.asyncio
async def test_reload_respects_total_time_ceiling():
    clock = FakeClock()
    calls = 0

    async def slow_failure():
        nonlocal calls
        calls += 1
        clock.now += 40
        raise TimeoutError("slow")

    with pytest.raises(TimeoutError):
        await reload_with_retry(
            slow_failure, max_attempts=5, max_total_seconds=30, settle_delay=0, clock=clock
        )
    assert calls == 1
