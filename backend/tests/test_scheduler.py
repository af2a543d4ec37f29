"""Tests for the timer registry and periodic driver"""
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from choreflow.utils.scheduler import PeriodicDriver, TimerRegistry
from conftest import START


@pytest.fixture
def timers():
    return TimerRegistry()


@pytest.mark.asyncio
async def test_timers_fire_in_time_order(timers):
    fired = []
    timers.schedule("b", START + timedelta(minutes=2), lambda: fired.append("b"))
    timers.schedule("a", START + timedelta(minutes=1), lambda: fired.append("a"))
    timers.schedule("c", START + timedelta(minutes=5), lambda: fired.append("c"))

    assert await timers.run_due(START + timedelta(minutes=2)) == 2

    assert fired == ["a", "b"]
    assert list(timers.pending()) == [("c", START + timedelta(minutes=5))]


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(timers):
    callback = AsyncMock()
    timers.schedule("a", START, callback)

    await timers.run_due(START)

    callback.assert_awaited_once()


@pytest.mark.asyncio
async def test_rescheduling_a_key_replaces_the_timer(timers):
    first, second = Mock(), Mock()
    timers.schedule("a", START, first)
    timers.schedule("a", START + timedelta(minutes=1), second)

    await timers.run_due(START + timedelta(hours=1))

    first.assert_not_called()
    second.assert_called_once()
    assert len(timers) == 0


@pytest.mark.asyncio
async def test_cancelled_timer_never_fires(timers):
    callback = Mock()
    timers.schedule("a", START, callback)

    assert timers.cancel("a") is True
    assert timers.cancel("a") is False
    await timers.run_due(START + timedelta(hours=1))

    callback.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_group_leaves_other_groups(timers):
    callback = Mock()
    timers.schedule(("reminder", "t1", 0), START, callback, group=("reminder", "t1"))
    timers.schedule(("reminder", "t1", 1), START, callback, group=("reminder", "t1"))
    timers.schedule(("response", "t1", 1), START, callback, group=("response", "t1"))

    assert timers.cancel_group(("reminder", "t1")) == 2
    assert timers.cancel_group(("reminder", "t1")) == 0
    await timers.run_due(START)

    assert callback.call_count == 1


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_the_pump(timers):
    after = Mock()
    timers.schedule("a", START, Mock(side_effect=RuntimeError("boom")))
    timers.schedule("b", START + timedelta(seconds=1), after)

    assert await timers.run_due(START + timedelta(seconds=1)) == 2
    after.assert_called_once()


def test_next_fire_time_skips_cancelled(timers):
    timers.schedule("a", START, Mock())
    timers.schedule("b", START + timedelta(minutes=3), Mock())
    timers.cancel("a")

    assert timers.next_fire_time() == START + timedelta(minutes=3)
    timers.clear()
    assert timers.next_fire_time() is None


def test_driver_registers_interval_jobs():
    scheduler = Mock(running=False)
    scheduler.get_jobs.return_value = []
    driver = PeriodicDriver(scheduler)

    driver.add_job("queue_drain", "Drain", AsyncMock(), 30)
    driver.start()

    kwargs = scheduler.add_job.call_args.kwargs
    assert kwargs["id"] == "queue_drain"
    assert kwargs["trigger"].interval == timedelta(seconds=30)
    assert kwargs["max_instances"] == 1
    scheduler.start.assert_called_once()


@pytest.mark.asyncio
async def test_driver_job_swallows_and_logs_errors():
    scheduler = Mock(running=False)
    driver = PeriodicDriver(scheduler)
    job = AsyncMock(side_effect=RuntimeError("boom"))

    driver.add_job("sweep", "Sweep", job, 60)
    await scheduler.add_job.call_args.args[0]()

    job.assert_awaited_once()


def test_driver_shutdown_only_when_running():
    scheduler = Mock(running=False)
    PeriodicDriver(scheduler).shutdown()
    scheduler.shutdown.assert_not_called()

    scheduler.running = True
    PeriodicDriver(scheduler).shutdown()
    scheduler.shutdown.assert_called_once_with(wait=False)
