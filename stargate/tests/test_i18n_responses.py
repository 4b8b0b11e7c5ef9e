"""Tests for language negotiation and content negotiated errors."""

from __future__ import annotations

import json

import pytest
from fastapi import Request

from stargate.app.i18n import herald_locale, request_language, translate, translate_format
from stargate.app.responses import is_html_request, preferred_error_format, render_error


def _request(headers: dict[str, str] | None = None, query: str = "") -> Request:
    raw = [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()]
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/_auth",
            "query_string": query.encode(),
            "headers": raw,
        }
    )


@pytest.mark.parametrize(
    ("accept", "expected"),
    [
        ("", True),
        ("text/html", True),
        ("application/json, text/html;q=0.9", True),
        ("*/*", True),
        ("*/*, application/json", True),
        ("application/json, */*", False),
        ("application/json", False),
        ("text/plain", False),
    ],
)
def test_is_html_request(accept: str, expected: bool) -> None:
    headers = {"Accept": accept} if accept else {}
    assert is_html_request(_request(headers)) is expected


@pytest.mark.parametrize(
    ("accept", "expected"),
    [
        ("application/json", "json"),
        ("application/json; charset=utf-8", "json"),
        ("application/xml", "xml"),
        ("text/plain, application/xml", "xml"),
        ("text/plain", "text"),
        ("", "text"),
    ],
)
def test_preferred_error_format(accept: str, expected: str) -> None:
    assert preferred_error_format(_request({"Accept": accept})) == expected


def test_json_error_carries_reason() -> None:
    response = render_error(
        _request({"Accept": "application/json"}),
        429,
        "Too many requests",
        reason="rate_limited",
    )

    assert response.status_code == 429
    assert json.loads(response.body) == {"error": "Too many requests", "code": 429, "reason": "rate_limited"}


def test_xml_error_is_escaped() -> None:
    response = render_error(_request({"Accept": "application/xml"}), 400, "a < b & c", reason="bad")

    assert response.media_type == "application/xml"
    assert response.body.decode() == (
        '<errors><error code="400" reason="bad">a &lt; b &amp; c</error></errors>'
    )


def test_plain_text_error() -> None:
    response = render_error(_request({"Accept": "text/plain"}), 401, "Authentication required")

    assert response.body == b"Authentication required"
    assert response.media_type == "text/plain"


def test_language_precedence() -> None:
    assert request_language(_request({"Accept-Language": "fr-FR,fr;q=0.9"})) == "fr"
    assert request_language(_request({"Cookie": "lang=ja", "Accept-Language": "fr"})) == "ja"
    assert request_language(_request({"Cookie": "lang=ja"}, query="lang=zh")) == "zh"
    assert request_language(_request({"Accept-Language": "pt-BR"}), default="de") == "de"


def test_translation_falls_back_to_english_then_key() -> None:
    assert translate("error.auth_required", "zh") == "需要身份验证"
    assert translate("error.totp_revoke_failed", "ko") == "Failed to revoke authenticator"
    assert translate("no.such.key", "fr") == "no.such.key"


def test_translate_format() -> None:
    assert translate_format("login.oidc_button", "en", provider="Okta") == "Login with Okta"
    assert translate_format("error.verify_code_invalid_remaining", "en") == (
        "Invalid verification code, {remaining} attempts remaining"
    )


def test_herald_locale() -> None:
    assert herald_locale("zh") == "zh-CN"
    assert herald_locale("xx") == "en-US"
    assert herald_locale("en", "ja-JP,ja;q=0.9") == "ja-JP"
