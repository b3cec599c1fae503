"""Session endpoints: bootstrap, state, sign-in, sign-out and onboarding."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from .engine import ProgressSyncEngine, get_sync_engine
from .errors import AuthSessionMissing, RemoteWriteFailure
from .models import AppState, Enrollment


router = APIRouter(prefix="/api/session", tags=["session"])
logger = logging.getLogger(__name__)


class SignInRequest(BaseModel):
    access_token: str = Field(..., min_length=1)


class SessionPayload(BaseModel):
    state: AppState
    user_id: Optional[str] = None
    enrollment: Optional[Enrollment] = None
    bootstrap_complete: bool = False
    onboarding_complete: bool = False


def _session_payload(engine: ProgressSyncEngine) -> SessionPayload:
    context = engine.context
    return SessionPayload(
        state=context.state,
        user_id=context.identity.user_id if context.identity else None,
        enrollment=context.enrollment,
        bootstrap_complete=context.bootstrap_complete,
        onboarding_complete=context.enrollment_cache.onboarding_complete(),
    )


@router.post("/bootstrap", response_model=SessionPayload, status_code=status.HTTP_200_OK)
async def bootstrap_session(engine: ProgressSyncEngine = Depends(get_sync_engine)) -> SessionPayload:
    state = await engine.start()
    logger.info("Bootstrap finished in state %s", state.value)
    return _session_payload(engine)


@router.get("", response_model=SessionPayload, status_code=status.HTTP_200_OK)
def read_session(engine: ProgressSyncEngine = Depends(get_sync_engine)) -> SessionPayload:
    return _session_payload(engine)


@router.post("/sign-in", response_model=SessionPayload, status_code=status.HTTP_200_OK)
async def sign_in(
    payload: SignInRequest,
    engine: ProgressSyncEngine = Depends(get_sync_engine),
) -> SessionPayload:
    try:
        state = await engine.sign_in(payload.access_token)
    except AuthSessionMissing as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except RemoteWriteFailure as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    logger.info("Sign-in finished in state %s", state.value)
    return _session_payload(engine)


@router.post("/sign-out", response_model=SessionPayload, status_code=status.HTTP_200_OK)
async def sign_out(engine: ProgressSyncEngine = Depends(get_sync_engine)) -> SessionPayload:
    await engine.sign_out()
    return _session_payload(engine)


@router.post("/onboarding", response_model=SessionPayload, status_code=status.HTTP_200_OK)
async def complete_onboarding(engine: ProgressSyncEngine = Depends(get_sync_engine)) -> SessionPayload:
    engine.complete_onboarding()
    return _session_payload(engine)
