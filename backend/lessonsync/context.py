"""Owned session state shared by the bootstrapper, reconciler and lessons."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .cache import CompletionLedger, EnrollmentCache
from .failsafe import BackgroundTasks, FailsafeTimer
from .models import AppState, AuthEvent, Enrollment, Identity
from .remote import RemoteStateService, Subscription
from .storage import LocalDurableStore

logger = logging.getLogger(__name__)

StateListener = Callable[[AppState, AppState], None]
AuthHandler = Callable[[AuthEvent, Optional[Identity]], None]

# Transitions refused unless forced (sign-out is the only forcing path).
_BLOCKED_FROM_READY = {AppState.CHECKING, AppState.NEEDS_ENROLLMENT}


class SessionContext:
    """Identity, application state and enrollment for one signed-in session.

    Created once per process, ``init`` subscribes to auth events and
    ``teardown`` disposes the subscription, the session timers and every
    detached task.
    """

    def __init__(self, store: LocalDurableStore, remote: RemoteStateService) -> None:
        self.store = store
        self.remote = remote
        self.enrollment_cache = EnrollmentCache(store)
        self.ledger = CompletionLedger(store)
        self.tasks = BackgroundTasks("session")
        self.state = AppState.CHECKING
        self.identity: Optional[Identity] = None
        self.enrollment: Optional[Enrollment] = None
        self.bootstrap_complete = False
        self.generation = 0
        self._timers: List[FailsafeTimer] = []
        self._listeners: List[StateListener] = []
        self._subscription: Optional[Subscription] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, on_auth_event: AuthHandler) -> None:
        if self._subscription is not None and self._subscription.active:
            return
        self._subscription = self.remote.subscribe(on_auth_event)

    async def teardown(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self.cancel_timers()
        await self.tasks.cancel_all()

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def transition(self, state: AppState, *, force: bool = False) -> bool:
        """Move to ``state``. A ready session never falls back to checking or
        needs_enrollment unless ``force`` is set."""
        previous = self.state
        if previous == state:
            return False
        if not force and previous == AppState.READY and state in _BLOCKED_FROM_READY:
            logger.debug("Ignoring %s -> %s transition", previous.value, state.value)
            return False
        self.state = state
        logger.info("Application state %s -> %s", previous.value, state.value)
        for listener in list(self._listeners):
            try:
                listener(previous, state)
            except Exception:  # noqa: BLE001
                logger.exception("State listener failed for %s", state.value)
        return True

    def adopt_enrollment(self, enrollment: Enrollment) -> None:
        self.enrollment = enrollment
        self.transition(AppState.READY)

    def forget(self) -> None:
        self.generation += 1
        self.identity = None
        self.enrollment = None
        self.bootstrap_complete = False

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def arm(self, timer: FailsafeTimer) -> FailsafeTimer:
        self._timers = [entry for entry in self._timers if entry.active]
        self._timers.append(timer)
        return timer.start()

    def cancel_timers(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()


__all__ = ["SessionContext", "StateListener"]
