"""Common test fixtures for the Stargate gateway."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator

# Settings are read when ``stargate.app`` is imported.
os.environ.setdefault("AUTH_HOST", "auth.example.com")
os.environ.setdefault("PASSWORDS", "plaintext:test123|test456")
os.environ.setdefault("LANGUAGE", "en")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from stargate.app import dependencies
from stargate.app.audit import AuditEvent, AuditLogger
from stargate.app.config import settings
from stargate.app.main import create_app
from stargate.app.sessions import SessionStore
from stargate.app.stepup import StepUpMatcher
from stargate.app.storage import MemoryStorage

from .utils import ALICE, BOB, CAROL, FakeHerald, FakeTOTP, FakeWarden


@pytest.fixture
def store() -> SessionStore:
    return SessionStore(MemoryStorage(), expiration_seconds=3600)


@pytest.fixture
def audit_events() -> list[AuditEvent]:
    return []


@pytest.fixture
def audit(audit_events: list[AuditEvent]) -> AuditLogger:
    return AuditLogger(enabled=True, format="json", sink=audit_events.append)


@pytest.fixture
def warden() -> FakeWarden:
    return FakeWarden([ALICE, BOB, CAROL])


@pytest.fixture
def herald() -> FakeHerald:
    return FakeHerald()


@pytest.fixture
def totp() -> FakeTOTP:
    return FakeTOTP()


@pytest.fixture
def step_up_matcher() -> StepUpMatcher:
    return StepUpMatcher(["/admin*", "/settings/*"], enabled=True)


@pytest.fixture
def app(
    monkeypatch: pytest.MonkeyPatch,
    store: SessionStore,
    audit: AuditLogger,
    step_up_matcher: StepUpMatcher,
) -> Iterator[FastAPI]:
    """Create a test application backed by in-memory storage."""

    monkeypatch.setattr(settings, "cookie_domain", "example.com")
    dependencies.reset_services()
    dependencies.init_services(settings)
    application = create_app()
    application.dependency_overrides[dependencies.get_session_store] = lambda: store
    application.dependency_overrides[dependencies.get_audit_logger] = lambda: audit
    application.dependency_overrides[dependencies.get_step_up_matcher] = lambda: step_up_matcher
    try:
        yield application
    finally:
        application.dependency_overrides.clear()
        dependencies.reset_services()


@pytest.fixture
def wired_app(app: FastAPI, warden: FakeWarden, herald: FakeHerald, totp: FakeTOTP) -> FastAPI:
    """Same application with the directory, broker and TOTP doubles plugged in."""

    app.dependency_overrides[dependencies.get_warden_client] = lambda: warden
    app.dependency_overrides[dependencies.get_herald_client] = lambda: herald
    app.dependency_overrides[dependencies.get_totp_client] = lambda: totp
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest_asyncio.fixture
async def wired_client(wired_app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=wired_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
