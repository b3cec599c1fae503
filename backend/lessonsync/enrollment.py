"""Enrollment reconciliation between the local snapshot and the remote record.

The cached snapshot always wins the foreground: a user with a usable cache is
``ready`` at once and the remote copy only refreshes the cache afterwards.
Without a cache the remote fetch is raced against a failsafe; losing that race
or finding nothing leads to auto-enrollment, and a failed auto-enrollment
still produces a local-only enrollment so the session can proceed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from . import constants
from .context import SessionContext
from .errors import NetworkTimeout
from .failsafe import race_with_timeout
from .models import AppState, Enrollment
from .telemetry import emit_event

logger = logging.getLogger(__name__)


def local_enrollment(user_id: str) -> Enrollment:
    """Enrollment that exists only on this device."""
    return Enrollment(
        id=f"{constants.LOCAL_ENROLLMENT_PREFIX}{int(time.time() * 1000)}",
        user_id=user_id,
        program=constants.DEFAULT_PROGRAM,
        track_level=constants.DEFAULT_TRACK_LEVEL,
        locale=constants.DEFAULT_LOCALE,
    )


class EnrollmentReconciler:
    def __init__(self, context: SessionContext) -> None:
        self._context = context

    async def reconcile(self, user_id: Optional[str]) -> Optional[Enrollment]:
        context = self._context
        if not user_id:
            logger.warning("Cannot reconcile an enrollment without an identity")
            context.transition(AppState.ERROR, force=True)
            return None
        generation = context.generation

        cached = context.enrollment_cache.load_for(user_id)
        if cached is not None:
            context.adopt_enrollment(cached)
            self.refresh_in_background(user_id)
            return cached

        stale = context.enrollment_cache.load()
        if stale is not None:
            logger.info("Ignoring cached enrollment of %s for %s", stale.user_id, user_id)
            context.enrollment_cache.discard()

        race = await race_with_timeout(self._fetch(user_id), constants.ENROLLMENT_REMOTE_SECONDS)
        if generation != context.generation:
            return race.result
        if race.timed_out:
            logger.info("%s; treating as not enrolled", NetworkTimeout("enrollment fetch", constants.ENROLLMENT_REMOTE_SECONDS))
        elif race.result is not None and race.result.user_id == user_id:
            context.enrollment_cache.store(race.result)
            context.adopt_enrollment(race.result)
            return race.result

        context.transition(AppState.NEEDS_ENROLLMENT)
        return await self.enroll_default(user_id)

    async def enroll_default(self, user_id: str) -> Enrollment:
        """Create the default enrollment, degrading to a local-only one."""
        context = self._context
        generation = context.generation
        race = await race_with_timeout(
            context.remote.create_enrollment(
                constants.DEFAULT_PROGRAM,
                constants.DEFAULT_TRACK_LEVEL,
                constants.DEFAULT_LOCALE,
            ),
            constants.ENROLLMENT_REMOTE_SECONDS,
        )
        if race.ok and race.result is not None:
            enrollment = race.result
        else:
            if race.timed_out:
                logger.info("%s; enrolling locally", NetworkTimeout("enrollment creation", constants.ENROLLMENT_REMOTE_SECONDS))
            else:
                logger.warning("Enrollment creation failed for %s, enrolling locally: %s", user_id, race.error)
            enrollment = local_enrollment(user_id)
        emit_event(
            "enrollment_created",
            user_id=user_id,
            enrollment_id=enrollment.id,
            local=enrollment.is_local,
        )
        if generation != context.generation:
            return enrollment
        context.enrollment_cache.store(enrollment)
        context.enrollment_cache.mark_onboarding_complete()
        context.adopt_enrollment(enrollment)
        return enrollment

    def refresh_in_background(self, user_id: str) -> asyncio.Task[Optional[Enrollment]]:
        """Detached cache refresh; nothing awaits it."""
        return self._context.tasks.spawn(self.refresh(user_id), name=f"enrollment-refresh:{user_id}")

    async def refresh(self, user_id: str) -> Optional[Enrollment]:
        context = self._context
        generation = context.generation
        race = await race_with_timeout(self._fetch(user_id), constants.ENROLLMENT_REMOTE_SECONDS)
        if race.timed_out:
            logger.info("%s; keeping cached enrollment", NetworkTimeout("enrollment refresh", constants.ENROLLMENT_REMOTE_SECONDS))
            return None
        remote = race.result
        if remote is None or remote.user_id != user_id or generation != context.generation:
            return None
        changed = context.enrollment_cache.store(remote)
        context.adopt_enrollment(remote)
        emit_event("enrollment_refreshed", user_id=user_id, enrollment_id=remote.id, changed=changed)
        return remote

    async def _fetch(self, user_id: str) -> Optional[Enrollment]:
        try:
            return await self._context.remote.get_active_enrollment(user_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Enrollment fetch failed for %s: %s", user_id, exc)
            return None


__all__ = ["EnrollmentReconciler", "local_enrollment"]
