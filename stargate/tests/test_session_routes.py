"""Tests for the index, logout and session exchange endpoints."""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from stargate.app import dependencies
from stargate.app.audit import AuditEvent
from stargate.app.sessions import SESSION_COOKIE_NAME, SessionStore
from stargate.app.storage import MemoryStorage

from .utils import JSON, cookie_header, make_session, set_cookie_values


@pytest.mark.asyncio
async def test_index_reports_session_state(client: httpx.AsyncClient, store: SessionStore) -> None:
    anonymous = await client.get("/")
    assert anonymous.status_code == 200
    assert anonymous.text == "Not authenticated"

    session = await make_session(store, user_id="u-1")
    signed_in = await client.get("/", headers=cookie_header(session))
    assert signed_in.text == "Authenticated"


@pytest.mark.asyncio
async def test_index_uses_lang_parameter(client: httpx.AsyncClient) -> None:
    response = await client.get("/", params={"lang": "zh"})

    assert response.text == "未认证"


@pytest.mark.asyncio
async def test_logout_destroys_session(
    client: httpx.AsyncClient,
    store: SessionStore,
    audit_events: list[AuditEvent],
) -> None:
    session = await make_session(store, user_id="u-1")

    response = await client.get("/_logout", headers=cookie_header(session))

    assert response.status_code == 200
    assert response.text == "Logged out"
    assert await store.get(session.id) is None
    [cleared] = set_cookie_values(response, SESSION_COOKIE_NAME)
    assert "Max-Age=0" in cleared
    assert [(event.event_type, event.user_id) for event in audit_events] == [
        ("logout", "u-1"),
        ("session_destroy", "u-1"),
    ]

    after = await client.get("/_auth", headers={**JSON, **cookie_header(session)})
    assert after.status_code == 401


@pytest.mark.asyncio
async def test_session_exchange_plants_cookie(app: FastAPI) -> None:
    shared = SessionStore(MemoryStorage(), cookie_domain=".example.com")
    app.dependency_overrides[dependencies.get_session_store] = lambda: shared
    source = await make_session(shared, user_id="u-1")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://app.example.com") as http:
        response = await http.get("/_session_exchange", params={"id": source.id})
        auth = await http.get("/_auth", headers={**JSON, **cookie_header(source)})

    assert response.status_code == 302
    assert response.headers["location"] == "/"
    [cookie] = set_cookie_values(response, SESSION_COOKIE_NAME)
    assert cookie.startswith(f"{SESSION_COOKIE_NAME}={source.id};")
    assert "Domain=.example.com" in cookie
    assert "HttpOnly" in cookie
    assert "Path=/" in cookie
    assert "SameSite=lax" in cookie
    assert "Secure" not in cookie
    assert auth.status_code == 200
    assert auth.headers["X-Forwarded-User"] == "u-1"


@pytest.mark.asyncio
async def test_session_exchange_over_https_sets_secure(client: httpx.AsyncClient) -> None:
    response = await client.get(
        "/_session_exchange",
        params={"id": "abc"},
        headers={"X-Forwarded-Proto": "https"},
    )

    assert response.status_code == 302
    [cookie] = set_cookie_values(response, SESSION_COOKIE_NAME)
    assert "Secure" in cookie


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", ["", "   ", "https://evil.test", "//evil.test", "a b"])
async def test_session_exchange_rejects_missing_or_unsafe_id(
    client: httpx.AsyncClient,
    session_id: str,
) -> None:
    response = await client.get("/_session_exchange", params={"id": session_id}, headers=JSON)

    assert response.status_code == 400
    assert response.json()["error"] == "Missing session ID"
    assert "location" not in response.headers


@pytest.mark.asyncio
async def test_session_exchange_without_id(client: httpx.AsyncClient) -> None:
    response = await client.get("/_session_exchange", headers={"Accept": "text/plain"})

    assert response.status_code == 400
    assert response.text == "Missing session ID"
