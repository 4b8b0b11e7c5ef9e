"""Tests for authenticator enrollment and revocation."""

from __future__ import annotations

import httpx
import pytest

from stargate.app.herald import HeraldError
from stargate.app.sessions import SessionStore

from .utils import HTML, JSON, FakeTOTP, cookie_header, make_session


@pytest.mark.asyncio
async def test_enroll_requires_login(wired_client: httpx.AsyncClient) -> None:
    response = await wired_client.get("/totp/enroll", headers=HTML)

    assert response.status_code == 302
    assert response.headers["location"] == "/_login"


@pytest.mark.asyncio
async def test_enroll_renders_otpauth_link(
    wired_client: httpx.AsyncClient,
    totp: FakeTOTP,
    store: SessionStore,
) -> None:
    session = await make_session(store, user_id="u-1", user_phone="13812345678", user_mail="alice@example.com")

    response = await wired_client.get("/totp/enroll", headers={**HTML, **cookie_header(session)})

    assert response.status_code == 200
    assert "otpauth://totp/Stargate:alice@example.com?secret=JBSWY3DPEHPK3PXP" in response.text
    assert 'name="enroll_id" value="enr_1"' in response.text
    assert 'action="/totp/enroll/confirm"' in response.text
    assert totp.labels == ["alice@example.com"]


@pytest.mark.asyncio
async def test_enroll_label_falls_back_to_phone_then_id(
    wired_client: httpx.AsyncClient,
    totp: FakeTOTP,
    store: SessionStore,
) -> None:
    with_phone = await make_session(store, user_id="u-1", user_phone="13812345678")
    bare = await make_session(store, user_id="u-2")

    await wired_client.get("/totp/enroll", headers={**HTML, **cookie_header(with_phone)})
    await wired_client.get("/totp/enroll", headers={**HTML, **cookie_header(bare)})

    assert totp.labels == ["13812345678", "u-2"]


@pytest.mark.asyncio
async def test_enroll_requires_user_id(wired_client: httpx.AsyncClient, store: SessionStore) -> None:
    session = await make_session(store, user_amr=["pwd"])

    response = await wired_client.get("/totp/enroll", headers={**JSON, **cookie_header(session)})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_enroll_without_service(client: httpx.AsyncClient, store: SessionStore) -> None:
    session = await make_session(store, user_id="u-1")

    response = await client.get("/totp/enroll", headers={**JSON, **cookie_header(session)})

    assert response.status_code == 503
    assert response.json()["error"] == "Authenticator service is not configured"


@pytest.mark.asyncio
async def test_enroll_broker_failure(
    wired_client: httpx.AsyncClient,
    totp: FakeTOTP,
    store: SessionStore,
) -> None:
    totp.enroll_error = HeraldError(500, "internal_error")
    session = await make_session(store, user_id="u-1")

    response = await wired_client.get("/totp/enroll", headers={**JSON, **cookie_header(session)})

    assert response.status_code == 502
    assert response.json()["error"] == "Failed to start authenticator enrollment"


@pytest.mark.asyncio
async def test_confirm_returns_backup_codes(wired_client: httpx.AsyncClient, store: SessionStore) -> None:
    session = await make_session(store, user_id="u-1")

    response = await wired_client.post(
        "/totp/enroll/confirm",
        data={"enroll_id": "enr_1", "code": "123456"},
        headers=cookie_header(session),
    )

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "subject": "u-1",
        "totp_enabled": True,
        "backup_codes": ["aaaa-bbbb", "cccc-dddd"],
    }


@pytest.mark.asyncio
async def test_confirm_accepts_json_body(wired_client: httpx.AsyncClient, store: SessionStore) -> None:
    session = await make_session(store, user_id="u-1")

    response = await wired_client.post(
        "/totp/enroll/confirm",
        json={"enroll_id": "enr_1", "code": " 123456 "},
        headers=cookie_header(session),
    )

    assert response.status_code == 200
    assert response.json()["ok"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("fields", "status_code", "error"),
    [
        ({"enroll_id": "enr_1"}, 400, "enroll_id and code required"),
        ({"enroll_id": "enr_1", "code": "000000"}, 400, "invalid_code"),
    ],
)
async def test_confirm_failures(
    wired_client: httpx.AsyncClient,
    store: SessionStore,
    fields: dict[str, str],
    status_code: int,
    error: str,
) -> None:
    session = await make_session(store, user_id="u-1")

    response = await wired_client.post("/totp/enroll/confirm", data=fields, headers=cookie_header(session))

    assert response.status_code == status_code
    assert response.json() == {"ok": False, "error": error}


@pytest.mark.asyncio
async def test_confirm_requires_login(wired_client: httpx.AsyncClient) -> None:
    response = await wired_client.post("/totp/enroll/confirm", data={"enroll_id": "enr_1", "code": "123456"})

    assert response.status_code == 401
    assert response.json() == {"ok": False, "error": "unauthorized"}


@pytest.mark.asyncio
async def test_revoke_page_and_revoke(
    wired_client: httpx.AsyncClient,
    totp: FakeTOTP,
    store: SessionStore,
) -> None:
    session = await make_session(store, user_id="u-1")

    page = await wired_client.get("/totp/revoke", headers={**HTML, **cookie_header(session)})
    assert page.status_code == 200
    assert 'action="/totp/revoke"' in page.text

    response = await wired_client.post("/totp/revoke", headers=cookie_header(session))
    assert response.status_code == 200
    assert response.json() == {"ok": True, "subject": "u-1"}
    assert totp.revoked == ["u-1"]


@pytest.mark.asyncio
async def test_revoke_requires_user_id(wired_client: httpx.AsyncClient, store: SessionStore) -> None:
    session = await make_session(store, user_amr=["pwd"])

    response = await wired_client.post("/totp/revoke", headers=cookie_header(session))

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "user_id not in session"}


@pytest.mark.asyncio
async def test_revoke_broker_failure(
    wired_client: httpx.AsyncClient,
    totp: FakeTOTP,
    store: SessionStore,
) -> None:
    totp.revoke_error = HeraldError(503, "unavailable")
    session = await make_session(store, user_id="u-1")

    response = await wired_client.post("/totp/revoke", headers=cookie_header(session))

    assert response.status_code == 502
    assert response.json() == {"ok": False, "error": "revoke_failed"}
    assert totp.revoked == []


@pytest.mark.asyncio
async def test_revoke_without_service(client: httpx.AsyncClient, store: SessionStore) -> None:
    session = await make_session(store, user_id="u-1")

    page = await client.get("/totp/revoke", headers={**JSON, **cookie_header(session)})
    response = await client.post("/totp/revoke", headers=cookie_header(session))

    assert page.status_code == 503
    assert response.status_code == 503
    assert response.json() == {"ok": False, "error": "TOTP service unavailable"}
