"""Validation tests for gateway configuration models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stargate.app.config import AuditSettings, SessionStorageSettings, Settings, StepUpSettings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PASSWORDS", "AUTH_HOST", "COOKIE_DOMAIN", "WARDEN_ENABLED", "OIDC_ENABLED"):
        monkeypatch.delenv(name, raising=False)


def test_minimal_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_HOST", "Auth.Example.com")
    monkeypatch.setenv("PASSWORDS", "plaintext:abc")

    config = Settings()

    assert config.auth_host == "auth.example.com"
    assert config.user_header_name == "X-Forwarded-User"
    assert config.language == "en"
    assert config.session_expiration_seconds == 86_400
    assert config.password_set is not None
    assert config.password_set.check("ABC")
    assert config.oidc_redirect_uri == "https://auth.example.com/_oidc/callback"


def test_auth_host_is_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PASSWORDS", "plaintext:abc")

    with pytest.raises(ValidationError):
        Settings()


def test_auth_host_rejects_scheme(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_HOST", "https://auth.example.com")
    monkeypatch.setenv("PASSWORDS", "plaintext:abc")

    with pytest.raises(ValidationError):
        Settings()


def test_passwords_required_without_other_methods(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_HOST", "auth.example.com")

    with pytest.raises(ValidationError):
        Settings()


def test_warden_replaces_passwords(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_HOST", "auth.example.com")
    monkeypatch.setenv("WARDEN_ENABLED", "true")
    monkeypatch.setenv("WARDEN_URL", "http://warden:8080/")

    config = Settings()

    assert config.password_set is None
    assert config.warden.url == "http://warden:8080"


def test_warden_requires_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_HOST", "auth.example.com")
    monkeypatch.setenv("WARDEN_ENABLED", "true")
    monkeypatch.delenv("WARDEN_URL", raising=False)

    with pytest.raises(ValidationError):
        Settings()


def test_oidc_requires_client_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_HOST", "auth.example.com")
    monkeypatch.setenv("OIDC_ENABLED", "true")
    monkeypatch.setenv("OIDC_ISSUER_URL", "https://idp.example.com")
    monkeypatch.delenv("OIDC_CLIENT_ID", raising=False)
    monkeypatch.delenv("OIDC_CLIENT_SECRET", raising=False)

    with pytest.raises(ValidationError):
        Settings()


def test_unknown_password_algorithm(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_HOST", "auth.example.com")
    monkeypatch.setenv("PASSWORDS", "sha1:abc")

    with pytest.raises(ValidationError):
        Settings()


def test_unsupported_language(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_HOST", "auth.example.com")
    monkeypatch.setenv("PASSWORDS", "plaintext:abc")
    monkeypatch.setenv("LANGUAGE", "es")

    with pytest.raises(ValidationError):
        Settings()


def test_audit_format_is_validated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUDIT_LOG_FORMAT", "TEXT")
    assert AuditSettings().format == "text"

    monkeypatch.setenv("AUDIT_LOG_FORMAT", "xml")
    with pytest.raises(ValidationError):
        AuditSettings()


def test_redis_prefix_always_ends_with_colon(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SESSION_STORAGE_REDIS_KEY_PREFIX", "gate")
    monkeypatch.setenv("SESSION_STORAGE_REDIS_DB", "")

    config = SessionStorageSettings()

    assert config.redis_key_prefix == "gate:"
    assert config.redis_db == 0


def test_step_up_patterns_are_split(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STEP_UP_PATHS", " /admin* , ,/billing/* ")

    assert StepUpSettings().patterns == ("/admin*", "/billing/*")
