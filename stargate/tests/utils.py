"""Test doubles and helpers shared by the gateway tests."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from stargate.app.herald import Challenge, HeraldError, VerifyResult
from stargate.app.sessions import Session, SessionStore, authenticate, new_session_id
from stargate.app.totp import Enrollment, EnrollmentConfirmation, TOTPVerifyResult
from stargate.app.warden import WardenError, WardenUser

JSON = {"Accept": "application/json"}
HTML = {"Accept": "text/html"}


class FakeWarden:
    """In-memory directory keyed by phone and mail."""

    def __init__(self, users: list[WardenUser] | None = None) -> None:
        self.users = list(users or [])
        self.fail = False
        self.lookups: list[dict[str, str | None]] = []

    async def lookup_user(
        self,
        *,
        phone: str | None = None,
        mail: str | None = None,
        user_id: str | None = None,
    ) -> WardenUser | None:
        self.lookups.append({"phone": phone, "mail": mail, "user_id": user_id})
        if self.fail:
            raise WardenError("directory offline")
        for user in self.users:
            if phone:
                matched = user.phone == phone
            else:
                matched = bool(mail) and user.mail == (mail or "").lower()
            if matched:
                return user if user.active else None
        return None

    async def get_user(self, **kwargs: Any) -> WardenUser | None:
        try:
            return await self.lookup_user(**kwargs)
        except WardenError:
            return None

    async def health(self) -> None:
        if self.fail:
            raise WardenError("directory offline")


@dataclass
class FakeHerald:
    """Broker double; set ``create_error`` or ``verify_error`` to fail calls."""

    challenge: Challenge = field(default_factory=lambda: Challenge("ch_1", expires_in=300, next_resend_in=60))
    result: VerifyResult = field(
        default_factory=lambda: VerifyResult(ok=True, user_id="u-1", amr=("otp",), issued_at=1)
    )
    create_error: HeraldError | None = None
    verify_error: HeraldError | None = None
    created: list[dict[str, Any]] = field(default_factory=list)
    verified: list[dict[str, Any]] = field(default_factory=list)

    async def create_challenge(self, **kwargs: Any) -> Challenge:
        self.created.append(kwargs)
        if self.create_error is not None:
            raise self.create_error
        return self.challenge

    async def verify_challenge(self, **kwargs: Any) -> VerifyResult:
        self.verified.append(kwargs)
        if self.verify_error is not None:
            raise self.verify_error
        return self.result

    async def health(self) -> None:
        return None


@dataclass
class FakeTOTP:
    valid_code: str = "123456"
    unavailable: bool = False
    enroll_error: HeraldError | None = None
    revoke_error: HeraldError | None = None
    revoked: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)

    async def verify(self, *, subject: str, code: str, challenge_id: str | None = None) -> TOTPVerifyResult:
        if self.unavailable:
            raise HeraldError(0, "connection_failed")
        if code == self.valid_code:
            return TOTPVerifyResult(ok=True)
        return TOTPVerifyResult(ok=False, reason="invalid")

    async def enroll_start(self, *, subject: str, label: str) -> Enrollment:
        if self.enroll_error is not None:
            raise self.enroll_error
        self.labels.append(label)
        return Enrollment(
            enroll_id="enr_1",
            otpauth_uri=f"otpauth://totp/Stargate:{label}?secret=JBSWY3DPEHPK3PXP",
            secret_base32="JBSWY3DPEHPK3PXP",
        )

    async def enroll_confirm(self, *, enroll_id: str, code: str) -> EnrollmentConfirmation:
        if enroll_id != "enr_1" or code != self.valid_code:
            raise HeraldError(400, "invalid_code")
        return EnrollmentConfirmation(subject="u-1", totp_enabled=True, backup_codes=("aaaa-bbbb", "cccc-dddd"))

    async def revoke(self, subject: str) -> None:
        if self.revoke_error is not None:
            raise self.revoke_error
        self.revoked.append(subject)


ALICE = WardenUser(
    user_id="u-1",
    phone="13812345678",
    mail="alice@example.com",
    name="Alice",
    status="active",
    scope=("read", "write"),
    role="admin",
)
BOB = WardenUser(user_id="", phone="", mail="bob@example.com", name="Bob", status="active")
CAROL = WardenUser(user_id="u-3", phone="13900000000", status="inactive")


async def make_session(store: SessionStore, **data: Any) -> Session:
    """Persist an authenticated session carrying ``data``."""

    session = Session(id=new_session_id(), data=dict(data))
    authenticate(session)
    await store.save(session)
    return session


def cookie_header(session: Session | None = None, **extra: str) -> dict[str, str]:
    cookies: dict[str, str] = {}
    if session is not None:
        cookies["stargate_session_id"] = session.id
    cookies.update(extra)
    return {"Cookie": "; ".join(f"{key}={value}" for key, value in cookies.items())}


def set_cookie_values(response: Any, name: str) -> list[str]:
    """Raw ``Set-Cookie`` headers of ``response`` for cookie ``name``."""

    return [value for value in response.headers.get_list("set-cookie") if value.startswith(f"{name}=")]
