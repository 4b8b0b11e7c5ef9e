"""Router modules exposed by the gateway."""
from . import forward_auth, login, oidc, session, step_up, system, totp

__all__ = [
    "forward_auth",
    "login",
    "oidc",
    "session",
    "step_up",
    "system",
    "totp",
]
