"""Tests for the rate-limited scheduler"""

import asyncio
import time

import pytest

from tao_fanout.exceptions import SchedulerClosed
from tao_fanout.scheduler import RateLimitedScheduler


def run(coro):
    return asyncio.run(coro)


async def _run_and_shutdown(scheduler, tasks):
    try:
        return await scheduler.run_all(tasks)
    finally:
        await scheduler.shutdown()


def test_never_exceeds_max_concurrent():
    """A counting task never sees more than max_concurrent tasks running"""
    active = 0
    peak = 0

    async def counted():
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1

    scheduler = RateLimitedScheduler(max_concurrent=3, min_interval=0)
    outcomes = run(_run_and_shutdown(scheduler, [counted for _ in range(20)]))

    assert len(outcomes) == 20
    assert all(o.ok for o in outcomes)
    assert peak == 3


def test_dispatches_are_spaced_by_min_interval():
    """Consecutive task starts are at least min_interval apart"""
    starts = []

    async def stamp():
        starts.append(time.monotonic())

    scheduler = RateLimitedScheduler(max_concurrent=5, min_interval=0.02)
    run(_run_and_shutdown(scheduler, [stamp for _ in range(8)]))

    assert len(starts) == 8
    starts.sort()
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert min(gaps) >= 0.02 - 0.002


def test_zero_tasks_is_a_noop():
    scheduler = RateLimitedScheduler(max_concurrent=2, min_interval=1.0)
    start = time.monotonic()
    outcomes = run(_run_and_shutdown(scheduler, []))
    assert outcomes == []
    assert time.monotonic() - start < 0.5
    assert scheduler.dispatched == 0


def test_failing_task_does_not_affect_siblings():
    """Errors come back as outcomes; every other task still runs exactly once"""
    calls = []

    def make(i):
        async def task():
            calls.append(i)
            if i == 2:
                raise RuntimeError("boom")
            return i * 10
        return task

    scheduler = RateLimitedScheduler(max_concurrent=2, min_interval=0)
    outcomes = run(_run_and_shutdown(scheduler, [make(i) for i in range(5)]))

    assert sorted(calls) == [0, 1, 2, 3, 4]
    assert [o.value for o in outcomes if o.ok] == [0, 10, 30, 40]
    assert isinstance(outcomes[2].error, RuntimeError)
    assert str(outcomes[2].error) == "boom"


def test_synchronous_raise_is_treated_like_async_failure():
    def not_a_coroutine():
        raise ValueError("raised before awaiting")

    async def fine():
        return "ok"

    scheduler = RateLimitedScheduler(max_concurrent=1, min_interval=0)
    outcomes = run(_run_and_shutdown(scheduler, [not_a_coroutine, fine]))

    assert isinstance(outcomes[0].error, ValueError)
    assert outcomes[1].value == "ok"


def test_max_concurrent_above_task_count_only_rate_limits():
    starts = []

    async def stamp():
        starts.append(time.monotonic())

    scheduler = RateLimitedScheduler(max_concurrent=50, min_interval=0.01)
    outcomes = run(_run_and_shutdown(scheduler, [stamp for _ in range(4)]))

    assert len(outcomes) == 4
    starts.sort()
    assert starts[-1] - starts[0] >= 3 * 0.01 - 0.002


def test_stop_dispatching_resolves_queued_tasks_as_closed():
    started = []

    def make(i):
        async def task():
            started.append(i)
            await asyncio.sleep(0.05)
            return i
        return task

    async def scenario():
        scheduler = RateLimitedScheduler(max_concurrent=1, min_interval=0)
        futures = [scheduler.schedule(make(i)) for i in range(4)]
        await asyncio.sleep(0.01)  # first task is running
        scheduler.stop_dispatching()
        outcomes = await asyncio.gather(*futures)
        await scheduler.shutdown()
        return scheduler, outcomes

    scheduler, outcomes = run(scenario())

    assert started == [0]
    assert outcomes[0].value == 0
    assert all(isinstance(o.error, SchedulerClosed) for o in outcomes[1:])
    assert scheduler.closed


def test_schedule_after_shutdown_returns_closed_outcome():
    async def scenario():
        scheduler = RateLimitedScheduler(max_concurrent=1, min_interval=0)
        await scheduler.shutdown()

        async def task():
            return 1

        return await scheduler.schedule(task)

    outcome = run(scenario())
    assert isinstance(outcome.error, SchedulerClosed)


@pytest.mark.parametrize("kwargs", [{"max_concurrent": 0}, {"min_interval": -1}])
def test_rejects_invalid_limits(kwargs):
    with pytest.raises(ValueError):
        RateLimitedScheduler(**kwargs)
