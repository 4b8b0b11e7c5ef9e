"""Common FastAPI dependency helpers.

Every shared client lives in a module level slot that :func:`init_services`
fills once at startup. A slot that is already set is left alone, so the first
assignment wins; tests clear the slots with :func:`reset_services`.
"""
from __future__ import annotations

import logging

from .audit import AuditLogger
from .config import Settings, settings
from .herald import HeraldClient, TLSOptions
from .oidc import OIDCProvider
from .passwords import PasswordSet
from .sessions import SessionStore
from .stepup import StepUpMatcher
from .storage import build_storage
from .totp import HeraldTOTPClient
from .warden import WardenClient

logger = logging.getLogger(__name__)

_session_store: SessionStore | None = None
_password_set: PasswordSet | None = None
_warden_client: WardenClient | None = None
_herald_client: HeraldClient | None = None
_totp_client: HeraldTOTPClient | None = None
_oidc_provider: OIDCProvider | None = None
_audit_logger: AuditLogger | None = None
_step_up_matcher: StepUpMatcher | None = None


def init_services(config: Settings | None = None) -> None:
    """Build the shared clients described by ``config``."""

    global _session_store, _password_set, _warden_client, _herald_client
    global _totp_client, _oidc_provider, _audit_logger, _step_up_matcher

    config = config or settings

    if _session_store is None:
        _session_store = SessionStore(
            build_storage(config.session_storage),
            expiration_seconds=config.session_expiration_seconds,
            cookie_domain=config.cookie_domain,
        )

    if _password_set is None:
        _password_set = config.password_set

    if _warden_client is None and config.warden.enabled and config.warden.url:
        _warden_client = WardenClient(
            config.warden.url,
            api_key=config.warden.api_key,
            cache_ttl_seconds=config.warden.cache_ttl_seconds,
            timeout_seconds=config.warden.timeout_seconds,
            max_cache_entries=config.warden.cache_max_entries,
        )

    if _herald_client is None and config.herald.enabled and config.herald.url:
        herald = config.herald
        _herald_client = HeraldClient(
            herald.url,
            api_key=herald.api_key,
            hmac_secret=herald.hmac_secret,
            service_name=herald.service_name,
            timeout_seconds=herald.timeout_seconds,
            tls=TLSOptions(
                ca_cert_file=herald.tls_ca_cert_file,
                client_cert_file=herald.tls_client_cert_file,
                client_key_file=herald.tls_client_key_file,
                server_name=herald.tls_server_name,
                insecure_skip_verify=herald.tls_insecure_skip_verify,
            ),
        )

    if _totp_client is None and config.totp.enabled and config.totp.base_url:
        _totp_client = HeraldTOTPClient(
            config.totp.base_url,
            api_key=config.totp.api_key,
            hmac_secret=config.totp.hmac_secret,
            service_name=config.herald.service_name,
            timeout_seconds=config.totp.timeout_seconds,
        )

    if _oidc_provider is None and config.oidc.enabled:
        oidc = config.oidc
        _oidc_provider = OIDCProvider(
            issuer_url=oidc.issuer_url or "",
            client_id=oidc.client_id or "",
            client_secret=oidc.client_secret or "",
            redirect_uri=config.oidc_redirect_uri,
            provider_name=oidc.provider_name,
            jwks_cache_ttl_seconds=oidc.jwks_cache_ttl_seconds,
        )

    if _audit_logger is None:
        _audit_logger = AuditLogger(enabled=config.audit.enabled, format=config.audit.format)

    if _step_up_matcher is None:
        _step_up_matcher = StepUpMatcher(config.step_up.patterns, enabled=config.step_up.enabled)

    if config.tracing.enabled:
        logger.info("OTLP tracing requested for %s", config.tracing.endpoint or "default endpoint")


def reset_services() -> None:
    """Empty every slot. Intended for tests."""

    global _session_store, _password_set, _warden_client, _herald_client
    global _totp_client, _oidc_provider, _audit_logger, _step_up_matcher

    _session_store = None
    _password_set = None
    _warden_client = None
    _herald_client = None
    _totp_client = None
    _oidc_provider = None
    _audit_logger = None
    _step_up_matcher = None


async def start_services() -> None:
    if _session_store is not None:
        await _session_store.storage.start()
    if _warden_client is not None:
        await _warden_client.warm_cache()


async def close_services() -> None:
    if _session_store is not None:
        await _session_store.storage.close()


def get_settings() -> Settings:
    return settings


def get_session_store() -> SessionStore:
    if _session_store is None:
        raise RuntimeError("Session store is not initialised; call init_services() first")
    return _session_store


def get_password_set() -> PasswordSet | None:
    return _password_set


def get_warden_client() -> WardenClient | None:
    return _warden_client


def get_herald_client() -> HeraldClient | None:
    return _herald_client


def get_totp_client() -> HeraldTOTPClient | None:
    return _totp_client


def get_oidc_provider() -> OIDCProvider | None:
    return _oidc_provider


def get_audit_logger() -> AuditLogger:
    if _audit_logger is None:
        raise RuntimeError("Audit logger is not initialised; call init_services() first")
    return _audit_logger


def get_step_up_matcher() -> StepUpMatcher:
    if _step_up_matcher is None:
        raise RuntimeError("Step-up policy is not initialised; call init_services() first")
    return _step_up_matcher


__all__ = [
    "close_services",
    "get_audit_logger",
    "get_herald_client",
    "get_oidc_provider",
    "get_password_set",
    "get_session_store",
    "get_settings",
    "get_step_up_matcher",
    "get_totp_client",
    "get_warden_client",
    "init_services",
    "reset_services",
    "start_services",
]
