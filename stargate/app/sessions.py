"""Opaque session records keyed by the ``stargate_session_id`` cookie."""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from fastapi import Request, Response

from .errors import SessionStoreError
from .storage import SessionStorage, StorageError

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "stargate_session_id"
AUTHENTICATED_KEY = "authenticated"
STEP_UP_KEY = "step_up_verified"

USER_FIELDS: tuple[str, ...] = (
    "user_id",
    "user_phone",
    "user_mail",
    "user_name",
    "user_status",
    "user_scope",
    "user_role",
    "user_amr",
)
LOGIN_FIELDS: tuple[str, ...] = (STEP_UP_KEY, "provider")
OAUTH_PREFIX = "oauth_"


def new_session_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class Session:
    """Mutable view over one stored session record.

    Handlers mutate the view and hand it back to :meth:`SessionStore.save`;
    nothing keeps a reference past the request.
    """

    id: str
    data: dict[str, Any] = field(default_factory=dict)
    fresh: bool = True

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def pop(self, key: str, default: Any = None) -> Any:
        return self.data.pop(key, default)

    def get_str(self, key: str) -> str:
        value = self.data.get(key)
        return value if isinstance(value, str) else ""

    def get_list(self, key: str) -> list[str]:
        value = self.data.get(key)
        if isinstance(value, list):
            return [str(item) for item in value if str(item)]
        if isinstance(value, str) and value:
            return [value]
        return []

    def append_unique(self, key: str, values: Iterable[str]) -> None:
        current = self.get_list(key)
        for value in values:
            if value and value not in current:
                current.append(value)
        self.data[key] = current

    def set_user(
        self,
        *,
        user_id: str | None = None,
        phone: str | None = None,
        mail: str | None = None,
        name: str | None = None,
        status: str | None = None,
        scope: Iterable[str] | None = None,
        role: str | None = None,
        amr: Iterable[str] | None = None,
    ) -> None:
        """Copy the non-empty identity fields into the record."""

        for key, value in (
            ("user_id", user_id),
            ("user_phone", phone),
            ("user_mail", mail),
            ("user_name", name),
            ("user_status", status),
            ("user_role", role),
        ):
            if value:
                self.data[key] = value
        scopes = [item for item in (scope or ()) if item]
        if scopes:
            self.data["user_scope"] = scopes
        methods = [item for item in (amr or ()) if item]
        if methods:
            self.data["user_amr"] = methods

    def clear_user(self) -> None:
        """Forget the previous login: identity, step-up status and OIDC leftovers."""

        for key in USER_FIELDS + LOGIN_FIELDS:
            self.data.pop(key, None)
        for key in [key for key in self.data if key.startswith(OAUTH_PREFIX)]:
            del self.data[key]


def authenticate(session: Session) -> None:
    session.set(AUTHENTICATED_KEY, True)


def is_authenticated(session: Session) -> bool:
    return session.get(AUTHENTICATED_KEY) is not None


def is_step_up_verified(session: Session) -> bool:
    return session.get(STEP_UP_KEY) is True


class SessionStore:
    """Load, save and destroy sessions through a :class:`SessionStorage`."""

    def __init__(
        self,
        storage: SessionStorage,
        *,
        expiration_seconds: int = 86_400,
        cookie_domain: str | None = None,
        cookie_name: str = SESSION_COOKIE_NAME,
    ) -> None:
        self._storage = storage
        self._expiration_seconds = expiration_seconds
        self._cookie_domain = cookie_domain or None
        self._cookie_name = cookie_name

    @property
    def storage(self) -> SessionStorage:
        return self._storage

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    @property
    def expiration_seconds(self) -> int:
        return self._expiration_seconds

    async def get(self, session_id: str) -> Session | None:
        """Return the stored session for ``session_id`` or ``None``."""

        if not session_id:
            return None
        try:
            raw = await self._storage.get(session_id)
        except StorageError as exc:
            raise SessionStoreError(detail=str(exc)) from exc
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("discarding unreadable session record")
            return None
        if not isinstance(payload, dict):
            return None
        return Session(id=session_id, data=payload, fresh=False)

    async def load(self, request: Request) -> Session:
        """Return the caller's session, or a new empty one."""

        session_id = request.cookies.get(self._cookie_name, "").strip()
        if session_id:
            session = await self.get(session_id)
            if session is not None:
                return session
        return Session(id=new_session_id())

    async def save(self, session: Session, response: Response | None = None, *, secure: bool = False) -> None:
        body = json.dumps(session.data, separators=(",", ":")).encode("utf-8")
        try:
            await self._storage.set(session.id, body, self._expiration_seconds)
        except StorageError as exc:
            raise SessionStoreError(detail=str(exc)) from exc
        session.fresh = False
        if response is not None:
            self.set_cookie(response, session.id, secure=secure)

    async def destroy(self, session: Session, response: Response | None = None, *, secure: bool = False) -> None:
        try:
            await self._storage.delete(session.id)
        except StorageError as exc:
            raise SessionStoreError(detail=str(exc)) from exc
        session.data.clear()
        if response is not None:
            response.delete_cookie(
                self._cookie_name,
                path="/",
                domain=self._cookie_domain,
                secure=secure,
                httponly=True,
                samesite="lax",
            )

    def set_cookie(self, response: Response, session_id: str, *, secure: bool = False) -> None:
        response.set_cookie(
            self._cookie_name,
            session_id,
            max_age=self._expiration_seconds,
            path="/",
            domain=self._cookie_domain,
            secure=secure,
            httponly=True,
            samesite="lax",
        )


async def unauthenticate(
    store: SessionStore,
    session: Session,
    response: Response | None = None,
    *,
    secure: bool = False,
) -> None:
    await store.destroy(session, response, secure=secure)


def is_opaque_session_id(value: str) -> bool:
    """Session ids handed to ``/_session_exchange`` must not look like URLs."""

    if not value or "//" in value or ":" in value:
        return False
    return all(char.isalnum() or char in "-_." for char in value)


__all__ = [
    "AUTHENTICATED_KEY",
    "SESSION_COOKIE_NAME",
    "STEP_UP_KEY",
    "Session",
    "SessionStore",
    "authenticate",
    "is_authenticated",
    "is_opaque_session_id",
    "is_step_up_verified",
    "new_session_id",
    "unauthenticate",
]
