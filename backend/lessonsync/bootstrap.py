"""Session bootstrap: cached state first, identity and enrollment afterwards."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from . import constants
from .context import SessionContext
from .enrollment import EnrollmentReconciler
from .errors import AuthSessionMissing, NetworkTimeout
from .failsafe import FailsafeTimer, race_with_timeout
from .models import AppState, AuthEvent, Identity
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class SessionBootstrapper:
    """Produces an application state within the bootstrap deadline and keeps
    it in step with sign-in / sign-out events.

    None of the public coroutines raise: failures end in ``no_session`` or
    leave the stale cache in place.
    """

    def __init__(self, context: SessionContext, reconciler: Optional[EnrollmentReconciler] = None) -> None:
        self._context = context
        self.reconciler = reconciler or EnrollmentReconciler(context)
        self._sign_in_task: Optional[asyncio.Task[AppState]] = None

    @property
    def context(self) -> SessionContext:
        return self._context

    async def start(self) -> AppState:
        context = self._context
        context.init(self._on_auth_event)
        try:
            await self._bootstrap()
        except Exception:  # noqa: BLE001
            logger.exception("Session bootstrap failed")
            self._no_session()
        return context.state

    async def _bootstrap(self) -> None:
        context = self._context
        loop = asyncio.get_running_loop()
        started = loop.time()

        cached = context.enrollment_cache.load()
        if cached is not None:
            context.enrollment = cached
            context.transition(AppState.READY)
        else:
            self._arm_enrollment_failsafe()

        race = await race_with_timeout(context.remote.get_session(), constants.SESSION_BOOTSTRAP_SECONDS)
        identity = race.result if race.ok else None
        if identity is None:
            if race.timed_out:
                logger.info("%s", NetworkTimeout("session check", constants.SESSION_BOOTSTRAP_SECONDS))
            elif race.error is not None:
                logger.warning("Session check failed: %s", race.error)
            self._no_session()
            return

        remaining = constants.SESSION_BOOTSTRAP_SECONDS - (loop.time() - started)
        await self._enter_session(identity, remaining)

    async def _enter_session(self, identity: Identity, deadline: float) -> None:
        context = self._context
        context.identity = identity

        cached = context.enrollment_cache.load_for(identity.user_id)
        if cached is not None:
            context.cancel_timers()
            context.adopt_enrollment(cached)
            context.bootstrap_complete = True
            emit_event("bootstrap_completed", user_id=identity.user_id, source="cache")
            self.reconciler.refresh_in_background(identity.user_id)
            return

        if context.enrollment is not None:
            # The snapshot on screen belongs to someone else.
            logger.info("Cached enrollment does not belong to %s; re-checking", identity.user_id)
            context.enrollment = None
            context.transition(AppState.CHECKING, force=True)
        if context.state == AppState.CHECKING:
            self._arm_enrollment_failsafe()

        check = context.tasks.spawn(
            self.reconciler.reconcile(identity.user_id),
            name=f"enrollment-check:{identity.user_id}",
        )
        race = await race_with_timeout(check, max(deadline, 0.0), cancel_on_timeout=False)
        if race.timed_out:
            logger.info("%s; continuing in the background", NetworkTimeout("enrollment check", constants.SESSION_BOOTSTRAP_SECONDS))
            context.transition(AppState.NEEDS_ENROLLMENT)
        else:
            context.cancel_timers()
        context.bootstrap_complete = True
        emit_event(
            "bootstrap_completed",
            user_id=identity.user_id,
            source="pending" if race.timed_out else "remote",
        )

    def _arm_enrollment_failsafe(self) -> None:
        context = self._context

        def _fire() -> None:
            if context.state != AppState.CHECKING:
                return
            identity = context.identity
            cached = context.enrollment_cache.load_for(identity.user_id) if identity else None
            if cached is not None:
                context.adopt_enrollment(cached)
            else:
                context.transition(AppState.NEEDS_ENROLLMENT)

        context.arm(FailsafeTimer(constants.ENROLLMENT_CHECK_FAILSAFE_SECONDS, _fire, name="enrollment-check"))

    def _no_session(self) -> None:
        context = self._context
        if context.identity is not None:
            # A sign-in event won the race with the session check.
            return
        context.cancel_timers()
        logger.info("%s; routing to sign-in", AuthSessionMissing("no identity for this session"))
        context.transition(AppState.NO_SESSION, force=True)

    # ------------------------------------------------------------------
    # Auth events
    # ------------------------------------------------------------------

    def _on_auth_event(self, event: AuthEvent, identity: Optional[Identity]) -> None:
        context = self._context
        if event == AuthEvent.SIGNED_IN and identity is not None:
            if context.identity == identity:
                return
            self._sign_in_task = context.tasks.spawn(
                self.handle_signed_in(identity),
                name=f"signed-in:{identity.user_id}",
            )
        elif event == AuthEvent.SIGNED_OUT:
            context.tasks.spawn(self.reset_session(), name="signed-out")

    async def handle_signed_in(self, identity: Identity) -> AppState:
        context = self._context
        try:
            if context.identity is not None and context.identity != identity:
                await self.reset_session()
            if context.state in (AppState.NO_SESSION, AppState.ERROR):
                context.transition(AppState.CHECKING, force=True)
            await self._enter_session(identity, constants.SESSION_BOOTSTRAP_SECONDS)
        except Exception:  # noqa: BLE001
            logger.exception("Sign-in handling failed for %s", identity.user_id)
        return context.state

    async def wait_for_sign_in(self) -> AppState:
        """Wait for the latest sign-in handler, even if a reset cancelled it."""
        task = self._sign_in_task
        if task is not None:
            await asyncio.wait([task])
        return self._context.state

    async def sign_out(self) -> None:
        race = await race_with_timeout(self._context.remote.sign_out(), constants.SESSION_BOOTSTRAP_SECONDS)
        if race.error is not None:
            logger.warning("Remote sign-out failed: %s", race.error)
        await self.reset_session()

    async def reset_session(self) -> None:
        """Drop cached enrollment keys, identity and session work."""
        context = self._context
        context.cancel_timers()
        context.enrollment_cache.clear()
        context.forget()
        context.transition(AppState.CHECKING, force=True)
        await context.tasks.cancel_all()

    def complete_onboarding(self) -> AppState:
        context = self._context
        context.enrollment_cache.mark_onboarding_complete()
        if context.enrollment is not None:
            context.transition(AppState.READY)
        return context.state


__all__ = ["SessionBootstrapper"]
