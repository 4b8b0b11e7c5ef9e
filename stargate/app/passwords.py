"""Password verification for the ``PASSWORDS`` option.

The option has the shape ``<algorithm>:<hash>|<hash>|...``. Hex digests and
plaintext entries are normalised by removing whitespace and upper-casing, and
candidates are normalised the same way before hashing, so comparisons are
insensitive to case and spacing. Bcrypt hashes keep their original case and
are checked by :func:`bcrypt.checkpw` against the raw candidate.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Callable

import bcrypt

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS: tuple[str, ...] = ("plaintext", "md5", "sha512", "bcrypt")


class PasswordConfigError(ValueError):
    """Raised when the ``PASSWORDS`` option cannot be parsed."""


def normalise_password(value: str) -> str:
    """Upper-case ``value`` and drop every whitespace character."""

    return "".join(value.split()).upper()


def _md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def _sha512_hex(value: str) -> str:
    return hashlib.sha512(value.encode("utf-8")).hexdigest()


_DIGESTS: dict[str, Callable[[str], str]] = {
    "md5": _md5_hex,
    "sha512": _sha512_hex,
}


@dataclass(frozen=True, slots=True)
class PasswordSet:
    """Parsed ``PASSWORDS`` configuration."""

    algorithm: str
    hashes: tuple[str, ...]

    def check(self, candidate: str | None) -> bool:
        """Return ``True`` when ``candidate`` matches any configured entry."""

        if not candidate or not self.hashes:
            return False

        if self.algorithm == "bcrypt":
            return self._check_bcrypt(candidate.strip())

        normalised = normalise_password(candidate)
        if not normalised:
            return False

        if self.algorithm == "plaintext":
            return any(hmac.compare_digest(normalised, entry) for entry in self.hashes)

        digest = _DIGESTS[self.algorithm](normalised).upper()
        return any(hmac.compare_digest(digest, entry) for entry in self.hashes)

    def _check_bcrypt(self, candidate: str) -> bool:
        encoded = candidate.encode("utf-8")
        for entry in self.hashes:
            try:
                if bcrypt.checkpw(encoded, entry.encode("utf-8")):
                    return True
            except ValueError:
                logger.warning("configured bcrypt hash is malformed and was skipped")
        return False


def parse_passwords(raw: str | None) -> PasswordSet:
    """Parse ``raw`` into a :class:`PasswordSet`.

    Raises :class:`PasswordConfigError` for unknown algorithms, a missing
    separator or empty entries.
    """

    if raw is None or not raw.strip():
        raise PasswordConfigError("PASSWORDS must be a non-empty string")

    algorithm, separator, payload = raw.strip().partition(":")
    algorithm = algorithm.strip().lower()
    if not separator:
        raise PasswordConfigError("PASSWORDS must use the '<algorithm>:<hash>|<hash>' format")
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise PasswordConfigError(f"Unsupported password algorithm: {algorithm!r}")

    entries: list[str] = []
    for part in payload.split("|"):
        if algorithm == "bcrypt":
            cleaned = part.strip()
        else:
            cleaned = normalise_password(part)
        if not cleaned:
            raise PasswordConfigError("PASSWORDS contains an empty entry")
        entries.append(cleaned)

    return PasswordSet(algorithm=algorithm, hashes=tuple(entries))


__all__ = [
    "PasswordConfigError",
    "PasswordSet",
    "SUPPORTED_ALGORITHMS",
    "normalise_password",
    "parse_passwords",
]
