"""Deadline primitives: failsafe timers, bounded waits and detached tasks.

Everything here runs on the single asyncio event loop. A timer is a
``loop.call_later`` handle; a bounded wait is ``asyncio.wait`` with a timeout.
Neither ever blocks the loop or spawns threads.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Generic, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailsafeTimer:
    """Run ``callback`` once after ``delay`` seconds unless cancelled first."""

    def __init__(self, delay: float, callback: Callable[[], None], *, name: str = "failsafe") -> None:
        self.delay = delay
        self.name = name
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self.fired = False

    def start(self) -> "FailsafeTimer":
        if self._handle is not None or self.fired:
            return self
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)
        return self

    @property
    def active(self) -> bool:
        return self._handle is not None

    def cancel(self) -> bool:
        """Cancel the timer. Returns True when a pending firing was prevented."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self) -> None:
        self._handle = None
        self.fired = True
        logger.debug("Failsafe %s fired after %.1fs", self.name, self.delay)
        try:
            self._callback()
        except Exception:  # noqa: BLE001
            logger.exception("Failsafe %s callback failed", self.name)


@dataclass(frozen=True)
class RaceResult(Generic[T]):
    result: Optional[T] = None
    timed_out: bool = False
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.error is None


async def race_with_timeout(
    operation: Awaitable[T],
    deadline: float,
    *,
    cancel_on_timeout: bool = True,
) -> RaceResult[T]:
    """Wait for ``operation`` for at most ``deadline`` seconds.

    Never raises for the operation's own failure: the exception is returned in
    ``RaceResult.error``. With ``cancel_on_timeout=False`` the losing operation
    keeps running; pass a task that something else holds a reference to.
    """
    task = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({task}, timeout=deadline)
    except asyncio.CancelledError:
        if cancel_on_timeout:
            task.cancel()
        raise
    if task not in done:
        if cancel_on_timeout:
            task.cancel()
        return RaceResult(timed_out=True)
    if task.cancelled():
        return RaceResult(error=asyncio.CancelledError())
    exc = task.exception()
    if exc is not None:
        return RaceResult(error=exc)
    return RaceResult(result=task.result())


class BackgroundTasks:
    """Owner of fire-and-forget tasks.

    Nothing awaits a spawned task; the registry only keeps a reference so the
    task is not collected mid-flight, logs its failure, and cancels whatever is
    still running on ``cancel_all``.
    """

    def __init__(self, label: str = "background") -> None:
        self.label = label
        self._tasks: Set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, T], *, name: Optional[str] = None) -> asyncio.Task[T]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._discard)
        return task

    def _discard(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Detached %s task %s failed: %s", self.label, task.get_name(), exc)

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every task, including ones spawned while draining."""
        current = asyncio.current_task()
        while True:
            pending = [task for task in self._tasks if task is not current]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def cancel(self) -> list[asyncio.Task[Any]]:
        """Request cancellation of every task other than the caller's own."""
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        return tasks

    async def cancel_all(self) -> None:
        tasks = self.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["BackgroundTasks", "FailsafeTimer", "RaceResult", "race_with_timeout"]
