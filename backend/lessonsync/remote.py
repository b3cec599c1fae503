"""Remote state service: the async protocol the engine consumes and its REST client."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from .config import Settings
from .errors import AuthSessionMissing, RemoteWriteFailure
from .models import ActivityResponse, AuthEvent, Enrollment, Identity

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthEvent, Optional[Identity]], None]

_HTTP_TIMEOUT = httpx.Timeout(10.0)
_ENROLLMENT_COLUMNS = "id,user_id,program_id,track_level,language,enrolled_at"


class Subscription:
    """Handle for an auth-event listener; the owner disposes it explicitly."""

    def __init__(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe: Optional[Callable[[], None]] = unsubscribe

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def unsubscribe(self) -> None:
        if self._unsubscribe is None:
            return
        callback, self._unsubscribe = self._unsubscribe, None
        callback()


class AuthEventHub:
    """Fan-out of SIGNED_IN / SIGNED_OUT notifications to subscribers."""

    def __init__(self) -> None:
        self._listeners: List[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Subscription:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(_remove)

    def publish(self, event: AuthEvent, identity: Optional[Identity]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, identity)
            except Exception:  # noqa: BLE001
                logger.exception("Auth listener failed for %s", event.value)

    def __len__(self) -> int:
        return len(self._listeners)


class RemoteStateService(Protocol):
    async def get_session(self) -> Optional[Identity]:  # pragma: no cover - protocol definition
        ...

    async def get_active_enrollment(self, user_id: str) -> Optional[Enrollment]:  # pragma: no cover
        ...

    async def create_enrollment(self, program: str, level: str, locale: str) -> Enrollment:  # pragma: no cover
        ...

    async def insert_activity_response(self, response: ActivityResponse) -> None:  # pragma: no cover
        ...

    async def list_activity_responses(self, user_id: str, week_number: int) -> List[int]:  # pragma: no cover
        ...

    async def sign_out(self) -> None:  # pragma: no cover - protocol definition
        ...

    def subscribe(self, listener: AuthListener) -> Subscription:  # pragma: no cover - protocol definition
        ...


def _enrollment_from_row(row: Dict[str, Any]) -> Enrollment:
    return Enrollment(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        program=str(row.get("program_id") or row.get("program") or ""),
        track_level=str(row.get("track_level") or ""),
        locale=str(row.get("language") or row.get("locale") or ""),
        created_at=row.get("enrolled_at") or row.get("created_at"),
    )


class HttpRemoteStateService:
    """REST client for the hosted data service (auth + row endpoints)."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        access_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"apikey": api_key} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=_HTTP_TIMEOUT,
            transport=transport,
        )
        self._access_token = access_token
        self._identity: Optional[Identity] = None
        self._events = AuthEventHub()

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpRemoteStateService":
        if not settings.remote_url:
            raise RuntimeError("LESSONSYNC_REMOTE_URL must be configured before using the remote service.")
        return cls(
            settings.remote_url,
            settings.remote_api_key,
            access_token=settings.remote_access_token,
        )

    def _auth_headers(self) -> Dict[str, str]:
        if not self._access_token:
            raise AuthSessionMissing("No access token is available for the remote service.")
        return {"Authorization": f"Bearer {self._access_token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteWriteFailure(
                f"{method} {path} failed with {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteWriteFailure(f"{method} {path} failed: {exc}") from exc
        return response

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def sign_in(self, access_token: str) -> Optional[Identity]:
        self._access_token = access_token
        self._identity = None
        identity = await self.get_session()
        if identity is not None:
            self._events.publish(AuthEvent.SIGNED_IN, identity)
        return identity

    async def get_session(self) -> Optional[Identity]:
        if not self._access_token:
            return None
        if self._identity is not None:
            return self._identity
        response = await self._request("GET", "/auth/v1/user")
        payload = response.json()
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not user_id:
            return None
        self._identity = Identity(user_id=str(user_id), email=str(payload.get("email") or ""))
        return self._identity

    async def sign_out(self) -> None:
        token, self._access_token = self._access_token, None
        self._identity = None
        try:
            if token:
                await self._client.post("/auth/v1/logout", headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            logger.warning("Remote sign-out failed: %s", exc)
        finally:
            self._events.publish(AuthEvent.SIGNED_OUT, None)

    def subscribe(self, listener: AuthListener) -> Subscription:
        return self._events.subscribe(listener)

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    async def get_active_enrollment(self, user_id: str) -> Optional[Enrollment]:
        response = await self._request(
            "GET",
            "/rest/v1/enrollments",
            params={
                "select": _ENROLLMENT_COLUMNS,
                "user_id": f"eq.{user_id}",
                "order": "enrolled_at.desc",
                "limit": "1",
            },
        )
        rows = response.json()
        if not rows:
            return None
        return _enrollment_from_row(rows[0])

    async def create_enrollment(self, program: str, level: str, locale: str) -> Enrollment:
        identity = await self.get_session()
        if identity is None:
            raise AuthSessionMissing("Cannot create an enrollment without a session.")
        response = await self._request(
            "POST",
            "/rest/v1/enrollments",
            params={"select": _ENROLLMENT_COLUMNS},
            headers={"Prefer": "return=representation"},
            json={
                "user_id": identity.user_id,
                "program_id": program,
                "track_level": level,
                "language": locale,
            },
        )
        rows = response.json()
        row = rows[0] if isinstance(rows, list) else rows
        if not row:
            raise RemoteWriteFailure("Enrollment insert returned no row.")
        return _enrollment_from_row(row)

    async def insert_activity_response(self, response: ActivityResponse) -> None:
        await self._request(
            "POST",
            "/rest/v1/activity_responses",
            headers={"Prefer": "return=minimal"},
            json=response.model_dump(mode="json"),
        )

    async def list_activity_responses(self, user_id: str, week_number: int) -> List[int]:
        response = await self._request(
            "GET",
            "/rest/v1/activity_responses",
            params={
                "select": "section_index",
                "user_id": f"eq.{user_id}",
                "week_number": f"eq.{week_number}",
            },
        )
        indices: List[int] = []
        for row in response.json() or []:
            value = row.get("section_index") if isinstance(row, dict) else None
            if isinstance(value, int):
                indices.append(value)
        return indices

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "AuthEventHub",
    "AuthListener",
    "HttpRemoteStateService",
    "RemoteStateService",
    "Subscription",
]
