from __future__ import annotations

import asyncio

import pytest

from lessonsync.failsafe import BackgroundTasks, FailsafeTimer, race_with_timeout


@pytest.mark.asyncio
async def test_timer_fires_once_after_delay() -> None:
    fired: list[str] = []
    timer = FailsafeTimer(0.05, lambda: fired.append("x"), name="unit").start()
    assert timer.active
    await asyncio.sleep(0.1)
    assert fired == ["x"]
    assert timer.fired
    assert not timer.active
    assert timer.cancel() is False


@pytest.mark.asyncio
async def test_cancelled_timer_never_fires() -> None:
    fired: list[str] = []
    timer = FailsafeTimer(0.05, lambda: fired.append("x")).start()
    assert timer.cancel() is True
    await asyncio.sleep(0.1)
    assert fired == []
    assert not timer.fired


@pytest.mark.asyncio
async def test_timer_callback_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    def _boom() -> None:
        raise RuntimeError("boom")

    FailsafeTimer(0.01, _boom, name="exploding").start()
    await asyncio.sleep(0.05)
    assert "exploding" in caplog.text


@pytest.mark.asyncio
async def test_race_returns_result_before_deadline() -> None:
    async def _fast() -> int:
        return 7

    race = await race_with_timeout(_fast(), 1.0)
    assert race.ok
    assert race.result == 7


@pytest.mark.asyncio
async def test_race_times_out_and_cancels_operation() -> None:
    async def _slow() -> None:
        await asyncio.sleep(10)

    task = asyncio.ensure_future(_slow())
    race = await race_with_timeout(task, 0.05)
    assert race.timed_out
    assert not race.ok
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_race_keeps_operation_running_when_asked() -> None:
    async def _slow() -> str:
        await asyncio.sleep(0.1)
        return "late"

    task = asyncio.ensure_future(_slow())
    race = await race_with_timeout(task, 0.01, cancel_on_timeout=False)
    assert race.timed_out
    assert await task == "late"


@pytest.mark.asyncio
async def test_race_reports_errors_instead_of_raising() -> None:
    async def _fail() -> None:
        raise ValueError("nope")

    race = await race_with_timeout(_fail(), 1.0)
    assert isinstance(race.error, ValueError)
    assert not race.timed_out


@pytest.mark.asyncio
async def test_background_tasks_cancel_all() -> None:
    tasks = BackgroundTasks("unit")
    task = tasks.spawn(asyncio.sleep(10), name="sleeper")
    assert len(tasks) == 1
    await tasks.cancel_all()
    assert task.cancelled()
    assert len(tasks) == 0


@pytest.mark.asyncio
async def test_background_tasks_log_failures(caplog: pytest.LogCaptureFixture) -> None:
    tasks = BackgroundTasks("unit")

    async def _fail() -> None:
        raise RuntimeError("detached failure")

    tasks.spawn(_fail(), name="failing")
    await tasks.drain()
    await asyncio.sleep(0)
    assert "detached failure" in caplog.text


@pytest.mark.asyncio
async def test_cancel_from_inside_a_task_spares_the_caller() -> None:
    tasks = BackgroundTasks("unit")
    other = tasks.spawn(asyncio.sleep(10), name="other")

    async def _resetter() -> str:
        await tasks.cancel_all()
        return "done"

    resetter = tasks.spawn(_resetter(), name="resetter")
    assert await resetter == "done"
    assert other.cancelled()
