"""Tests for session storage backends and the session store."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import Response

from stargate.app.errors import SessionStoreError
from stargate.app.sessions import (
    SESSION_COOKIE_NAME,
    Session,
    SessionStore,
    authenticate,
    is_authenticated,
    is_opaque_session_id,
    is_step_up_verified,
    unauthenticate,
)
from stargate.app.storage import MemoryStorage, RedisStorage, StorageError


class _FakeRedis:
    """The subset of ``redis.asyncio.Redis`` used by :class:`RedisStorage`."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.ttl: dict[str, int | None] = {}
        self.closed = False

    async def get(self, name: str) -> bytes | None:
        return self.data.get(name)

    async def set(self, *, name: str, value: bytes, ex: int | None = None) -> None:
        self.data[name] = value
        self.ttl[name] = ex

    async def delete(self, *names: str) -> None:
        for name in names:
            self.data.pop(name, None)

    async def scan_iter(self, *, match: str, count: int = 100):
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_memory_storage_expires_entries() -> None:
    storage = MemoryStorage()
    await storage.set("a", b"1", ttl=1)
    await storage.set("b", b"2")

    assert await storage.get("a") == b"1"
    await asyncio.sleep(1.05)
    assert await storage.get("a") is None
    assert await storage.get("b") == b"2"


@pytest.mark.asyncio
async def test_memory_storage_sweep_and_empty_values() -> None:
    storage = MemoryStorage()
    await storage.set("", b"x")
    await storage.set("k", b"")
    assert len(storage) == 0

    await storage.set("old", b"1", ttl=1)
    await asyncio.sleep(1.05)
    assert await storage.sweep() == 1
    assert len(storage) == 0


@pytest.mark.asyncio
async def test_memory_storage_sweeper_task_lifecycle() -> None:
    storage = MemoryStorage(sweep_interval=0.01)
    await storage.start()
    await storage.set("old", b"1", ttl=1)
    await asyncio.sleep(1.1)
    assert len(storage) == 0
    await storage.close()


@pytest.mark.asyncio
async def test_redis_storage_prefixes_keys_and_resets_only_its_own() -> None:
    fake = _FakeRedis()
    fake.data["other:key"] = b"keep"
    storage = RedisStorage(addr="localhost:6379", prefix="gate", client=fake)  # type: ignore[arg-type]

    assert storage.prefix == "gate:"
    await storage.set("sid", b"{}", ttl=60)
    assert fake.data["gate:sid"] == b"{}"
    assert fake.ttl["gate:sid"] == 60
    assert await storage.get("missing") is None

    await storage.set("", b"x")
    await storage.set("k", b"")
    assert set(fake.data) == {"other:key", "gate:sid"}

    await storage.reset()
    assert fake.data == {"other:key": b"keep"}

    await storage.close()
    assert fake.closed


@pytest.mark.asyncio
async def test_store_round_trip_sets_cookie() -> None:
    store = SessionStore(MemoryStorage(), expiration_seconds=120, cookie_domain="example.com")
    session = Session(id="sid-1")
    session.set_user(user_id="u-1", mail="a@example.com", scope=["read"], amr=["pwd"])
    authenticate(session)
    response = Response()

    await store.save(session, response, secure=True)

    header = response.headers["set-cookie"]
    assert header.startswith(f"{SESSION_COOKIE_NAME}=sid-1")
    assert "Domain=example.com" in header
    assert "HttpOnly" in header
    assert "Max-Age=120" in header
    assert "Secure" in header
    assert "SameSite=lax" in header

    loaded = await store.get("sid-1")
    assert loaded is not None
    assert is_authenticated(loaded)
    assert loaded.get_list("user_scope") == ["read"]
    assert not loaded.fresh


@pytest.mark.asyncio
async def test_unauthenticate_destroys_record() -> None:
    store = SessionStore(MemoryStorage())
    session = Session(id="sid-2")
    authenticate(session)
    await store.save(session)

    await unauthenticate(store, session, Response())

    assert await store.get("sid-2") is None
    assert not is_authenticated(session)


@pytest.mark.asyncio
async def test_storage_failures_surface_as_session_store_error() -> None:
    class _Broken(MemoryStorage):
        async def get(self, key: str) -> bytes | None:
            raise StorageError("down")

    store = SessionStore(_Broken())

    with pytest.raises(SessionStoreError):
        await store.get("sid")


def test_session_helpers() -> None:
    session = Session(id="s")
    session.set_user(user_id="u", phone="", role="admin", amr=["otp"])
    session.append_unique("user_amr", ["otp", "totp"])

    assert session.get_str("user_id") == "u"
    assert "user_phone" not in session.data
    assert session.get_list("user_amr") == ["otp", "totp"]

    session.clear_user()
    assert session.get_str("user_role") == ""


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("6f1c2a4e-7d0b-4b8e-9a77-2c0f6c3f9d10", True),
        ("abc_DEF.1", True),
        ("", False),
        ("https://evil.example.com", False),
        ("//evil", False),
        ("a b", False),
    ],
)
def test_opaque_session_ids(value: str, expected: bool) -> None:
    assert is_opaque_session_id(value) is expected


def test_clear_user_forgets_previous_login() -> None:
    session = Session(
        id="s",
        data={
            "user_id": "u-1",
            "user_amr": ["otp", "totp"],
            "step_up_verified": True,
            "provider": "oidc",
            "oauth_state": "st4te",
            "oauth_callback": "app.example.com",
            "lang": "zh",
        },
    )

    session.clear_user()

    assert session.data == {"lang": "zh"}
    assert not is_step_up_verified(session)
