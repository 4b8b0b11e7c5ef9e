"""Tests for the ``PASSWORDS`` option parser and matcher."""

from __future__ import annotations

import hashlib

import pytest

from stargate.app.passwords import PasswordConfigError, normalise_password, parse_passwords

BCRYPT_HELLO_WORLD = "$2a$10$k8fBIpJInrE70BzYy5rO/OUSt1w2.IX0bWhiMdb2mJEhjheVHDhvK"


def test_plaintext_ignores_case_and_whitespace() -> None:
    passwords = parse_passwords("plaintext:test123|test456")

    assert passwords.check("test123")
    assert passwords.check("TEST 456")
    assert passwords.check(" Test123 ")
    assert not passwords.check("test789")
    assert not passwords.check("")
    assert not passwords.check(None)


def test_md5_hashes_the_normalised_candidate() -> None:
    digest = hashlib.md5(b"SECRET").hexdigest()
    passwords = parse_passwords(f"md5:{digest}")

    assert passwords.check("secret")
    assert passwords.check("s e c r e t")
    assert not passwords.check("other")


def test_sha512_accepts_lower_case_hex_in_configuration() -> None:
    digest = hashlib.sha512(b"HELLO").hexdigest().lower()
    passwords = parse_passwords(f"sha512:{digest}")

    assert passwords.check("hello")


def test_bcrypt_keeps_hash_case() -> None:
    passwords = parse_passwords(f"bcrypt:{BCRYPT_HELLO_WORLD}")

    assert passwords.hashes == (BCRYPT_HELLO_WORLD,)
    assert passwords.check("Hello, World!")
    assert not passwords.check("hello, world!")


def test_malformed_bcrypt_entry_is_skipped() -> None:
    passwords = parse_passwords(f"bcrypt:not-a-hash|{BCRYPT_HELLO_WORLD}")

    assert passwords.check("Hello, World!")


@pytest.mark.parametrize(
    "raw",
    ["", "   ", "test123", "rot13:abc", "plaintext:", "plaintext:a||b"],
)
def test_invalid_configuration_is_rejected(raw: str) -> None:
    with pytest.raises(PasswordConfigError):
        parse_passwords(raw)


def test_normalise_password() -> None:
    assert normalise_password(" ab c\td ") == "ABCD"
