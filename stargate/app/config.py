"""Centralized application configuration for the Stargate gateway."""
from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .passwords import PasswordConfigError, PasswordSet, parse_passwords


_ROOT_DIR = Path(__file__).resolve().parents[2]
_DEFAULT_ENV_FILES: tuple[Path, ...] = (
    _ROOT_DIR / ".env",
    Path.cwd() / ".env",
)

SUPPORTED_LANGUAGES: tuple[str, ...] = ("en", "zh", "fr", "it", "ja", "de", "ko")
AUDIT_FORMATS: tuple[str, ...] = ("json", "text")

_SECTION_CONFIG = SettingsConfigDict(
    env_file=_DEFAULT_ENV_FILES,
    env_file_encoding="utf-8",
    extra="ignore",
)


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _clean_url(value: str | None) -> str | None:
    cleaned = _clean_optional(value)
    if cleaned is None:
        return None
    return cleaned.rstrip("/") or cleaned


class SessionStorageSettings(BaseSettings):
    """Shared session store configuration."""

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("SESSION_STORAGE_ENABLED"),
    )
    redis_addr: str = Field(
        default="localhost:6379",
        validation_alias=AliasChoices("SESSION_STORAGE_REDIS_ADDR"),
    )
    redis_password: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SESSION_STORAGE_REDIS_PASSWORD"),
    )
    redis_db: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("SESSION_STORAGE_REDIS_DB"),
    )
    redis_key_prefix: str = Field(
        default="stargate:session:",
        validation_alias=AliasChoices("SESSION_STORAGE_REDIS_KEY_PREFIX"),
    )

    model_config = _SECTION_CONFIG

    @field_validator("redis_password", mode="before")
    @classmethod
    def _clean_password(cls, value: str | None) -> str | None:
        return _clean_optional(value)

    @field_validator("redis_db", mode="before")
    @classmethod
    def _default_db(cls, value: int | str | None) -> int | str:
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0
        return value

    @field_validator("redis_key_prefix", mode="before")
    @classmethod
    def _normalise_prefix(cls, value: str | None) -> str:
        cleaned = _clean_optional(value) or "stargate:session:"
        if not cleaned.endswith(":"):
            cleaned = f"{cleaned}:"
        return cleaned


class HeraldSettings(BaseSettings):
    """Credential broker (Herald) client configuration."""

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("HERALD_ENABLED"),
    )
    url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_URL"),
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_API_KEY"),
    )
    hmac_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_HMAC_SECRET"),
    )
    service_name: str = Field(
        default="stargate",
        validation_alias=AliasChoices("HERALD_SERVICE_NAME"),
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("HERALD_TIMEOUT"),
    )
    tls_ca_cert_file: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_TLS_CA_CERT_FILE"),
    )
    tls_client_cert_file: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_TLS_CLIENT_CERT_FILE"),
    )
    tls_client_key_file: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_TLS_CLIENT_KEY_FILE"),
    )
    tls_server_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_TLS_SERVER_NAME"),
        description="Expected server name when it differs from the HERALD_URL host.",
    )
    tls_insecure_skip_verify: bool = Field(
        default=False,
        validation_alias=AliasChoices("HERALD_TLS_INSECURE_SKIP_VERIFY"),
    )

    model_config = _SECTION_CONFIG

    @field_validator(
        "api_key",
        "hmac_secret",
        "tls_ca_cert_file",
        "tls_client_cert_file",
        "tls_client_key_file",
        "tls_server_name",
        mode="before",
    )
    @classmethod
    def _clean_optional_strings(cls, value: str | None) -> str | None:
        return _clean_optional(value)

    @field_validator("url", mode="before")
    @classmethod
    def _normalise_url(cls, value: str | None) -> str | None:
        return _clean_url(value)

    @field_validator("service_name", mode="before")
    @classmethod
    def _default_service(cls, value: str | None) -> str:
        return _clean_optional(value) or "stargate"

    @model_validator(mode="after")
    def _check_client_pair(self) -> "HeraldSettings":
        if bool(self.tls_client_cert_file) != bool(self.tls_client_key_file):
            raise ValueError(
                "HERALD_TLS_CLIENT_CERT_FILE and HERALD_TLS_CLIENT_KEY_FILE must be set together"
            )
        return self


class WardenSettings(BaseSettings):
    """Allowlist directory (Warden) client configuration."""

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("WARDEN_ENABLED"),
    )
    url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("WARDEN_URL"),
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("WARDEN_API_KEY"),
    )
    cache_ttl_seconds: int = Field(
        default=300,
        ge=0,
        validation_alias=AliasChoices("WARDEN_CACHE_TTL"),
    )
    cache_max_entries: int = Field(
        default=1024,
        ge=1,
        validation_alias=AliasChoices("WARDEN_CACHE_MAX_ENTRIES"),
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("WARDEN_TIMEOUT"),
    )

    model_config = _SECTION_CONFIG

    @field_validator("api_key", mode="before")
    @classmethod
    def _clean_key(cls, value: str | None) -> str | None:
        return _clean_optional(value)

    @field_validator("url", mode="before")
    @classmethod
    def _normalise_url(cls, value: str | None) -> str | None:
        return _clean_url(value)


class HeraldTOTPSettings(BaseSettings):
    """TOTP service configuration."""

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("HERALD_TOTP_ENABLED"),
    )
    base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_TOTP_BASE_URL"),
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_TOTP_API_KEY"),
    )
    hmac_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HERALD_TOTP_HMAC_SECRET"),
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("HERALD_TOTP_TIMEOUT"),
    )

    model_config = _SECTION_CONFIG

    @field_validator("api_key", "hmac_secret", mode="before")
    @classmethod
    def _clean_optional_strings(cls, value: str | None) -> str | None:
        return _clean_optional(value)

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalise_url(cls, value: str | None) -> str | None:
        return _clean_url(value)


class StepUpSettings(BaseSettings):
    """Step-up authentication policy."""

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("STEP_UP_ENABLED"),
    )
    paths: str = Field(
        default="",
        validation_alias=AliasChoices("STEP_UP_PATHS"),
        description="Comma separated glob patterns matched against the forwarded URI.",
    )

    model_config = _SECTION_CONFIG

    @field_validator("paths", mode="before")
    @classmethod
    def _clean_paths(cls, value: str | None) -> str:
        return _clean_optional(value) or ""

    @property
    def patterns(self) -> tuple[str, ...]:
        return tuple(part.strip() for part in self.paths.split(",") if part.strip())


class OIDCSettings(BaseSettings):
    """OpenID Connect relying party configuration."""

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("OIDC_ENABLED"),
    )
    issuer_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OIDC_ISSUER_URL"),
    )
    client_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OIDC_CLIENT_ID"),
    )
    client_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OIDC_CLIENT_SECRET"),
    )
    redirect_uri: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OIDC_REDIRECT_URI"),
        description="Defaults to https://<AUTH_HOST>/_oidc/callback.",
    )
    provider_name: str = Field(
        default="OIDC",
        validation_alias=AliasChoices("OIDC_PROVIDER_NAME"),
    )
    jwks_cache_ttl_seconds: int = Field(
        default=600,
        ge=60,
        validation_alias=AliasChoices("OIDC_JWKS_CACHE_TTL"),
    )

    model_config = _SECTION_CONFIG

    @field_validator("client_id", "client_secret", mode="before")
    @classmethod
    def _clean_optional_strings(cls, value: str | None) -> str | None:
        return _clean_optional(value)

    @field_validator("issuer_url", "redirect_uri", mode="before")
    @classmethod
    def _normalise_url(cls, value: str | None) -> str | None:
        return _clean_url(value)

    @field_validator("provider_name", mode="before")
    @classmethod
    def _default_provider_name(cls, value: str | None) -> str:
        return _clean_optional(value) or "OIDC"


class AuditSettings(BaseSettings):
    """Audit trail emission."""

    enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("AUDIT_LOG_ENABLED"),
    )
    format: str = Field(
        default="json",
        validation_alias=AliasChoices("AUDIT_LOG_FORMAT"),
    )

    model_config = _SECTION_CONFIG

    @field_validator("format", mode="before")
    @classmethod
    def _normalise_format(cls, value: str | None) -> str:
        cleaned = (_clean_optional(value) or "json").lower()
        if cleaned not in AUDIT_FORMATS:
            raise ValueError("AUDIT_LOG_FORMAT must be one of: json, text")
        return cleaned


class AuthRefreshSettings(BaseSettings):
    """Periodic refresh of directory-backed sessions during ``/_auth``."""

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("AUTH_REFRESH_ENABLED"),
    )
    interval_seconds: int = Field(
        default=300,
        ge=1,
        validation_alias=AliasChoices("AUTH_REFRESH_INTERVAL"),
    )

    model_config = _SECTION_CONFIG


class TracingSettings(BaseSettings):
    """OTLP exporter settings.

    The values are validated and reported at startup; exporting spans is left
    to the deployment's OpenTelemetry instrumentation.
    """

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("OTLP_ENABLED"),
    )
    endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OTLP_ENDPOINT"),
    )

    model_config = _SECTION_CONFIG

    @field_validator("endpoint", mode="before")
    @classmethod
    def _normalise_endpoint(cls, value: str | None) -> str | None:
        return _clean_url(value)


class Settings(BaseSettings):
    """Top level Stargate configuration."""

    debug: bool = Field(default=False, validation_alias=AliasChoices("DEBUG"))
    auth_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("AUTH_HOST"),
        description="Host serving the login pages, for example auth.example.com.",
    )
    passwords: str | None = Field(default=None, validation_alias=AliasChoices("PASSWORDS"))
    user_header_name: str = Field(
        default="X-Forwarded-User",
        validation_alias=AliasChoices("USER_HEADER_NAME"),
    )
    cookie_domain: str | None = Field(default=None, validation_alias=AliasChoices("COOKIE_DOMAIN"))
    language: str = Field(default="en", validation_alias=AliasChoices("LANGUAGE"))
    login_page_title: str = Field(
        default="Stargate - Login",
        validation_alias=AliasChoices("LOGIN_PAGE_TITLE"),
    )
    login_page_footer_text: str = Field(
        default="Copyright © 2024 - Stargate",
        validation_alias=AliasChoices("LOGIN_PAGE_FOOTER_TEXT"),
    )
    port: int = Field(default=80, ge=1, le=65_535, validation_alias=AliasChoices("PORT"))
    session_expiration_seconds: int = Field(
        default=86_400,
        ge=60,
        validation_alias=AliasChoices("SESSION_EXPIRATION"),
    )
    log_level: str | None = Field(default=None, validation_alias=AliasChoices("LOG_LEVEL"))

    session_storage: SessionStorageSettings = Field(default_factory=SessionStorageSettings)
    herald: HeraldSettings = Field(default_factory=HeraldSettings)
    warden: WardenSettings = Field(default_factory=WardenSettings)
    totp: HeraldTOTPSettings = Field(default_factory=HeraldTOTPSettings)
    step_up: StepUpSettings = Field(default_factory=StepUpSettings)
    oidc: OIDCSettings = Field(default_factory=OIDCSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    auth_refresh: AuthRefreshSettings = Field(default_factory=AuthRefreshSettings)
    tracing: TracingSettings = Field(default_factory=TracingSettings)

    model_config = SettingsConfigDict(
        env_file=_DEFAULT_ENV_FILES,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("auth_host", mode="before")
    @classmethod
    def _normalise_auth_host(cls, value: str | None) -> str | None:
        cleaned = _clean_optional(value)
        if cleaned is None:
            return None
        if "://" in cleaned or "/" in cleaned:
            raise ValueError("AUTH_HOST must be a bare host name, without scheme or path")
        return cleaned.lower()

    @field_validator("passwords", "cookie_domain", "log_level", mode="before")
    @classmethod
    def _clean_optional_strings(cls, value: str | None) -> str | None:
        return _clean_optional(value)

    @field_validator("user_header_name", mode="before")
    @classmethod
    def _default_header_name(cls, value: str | None) -> str:
        return _clean_optional(value) or "X-Forwarded-User"

    @field_validator("language", mode="before")
    @classmethod
    def _normalise_language(cls, value: str | None) -> str:
        cleaned = (_clean_optional(value) or "en").lower()
        if cleaned not in SUPPORTED_LANGUAGES:
            raise ValueError(f"LANGUAGE must be one of: {', '.join(SUPPORTED_LANGUAGES)}")
        return cleaned

    @model_validator(mode="after")
    def _validate_startup_requirements(self) -> "Settings":
        """Reject configurations the gateway cannot serve."""

        if not self.auth_host:
            raise ValueError("AUTH_HOST must be configured")

        if self.passwords is not None:
            try:
                parse_passwords(self.passwords)
            except PasswordConfigError as exc:
                raise ValueError(str(exc)) from exc
        elif not (self.warden.enabled or self.oidc.enabled):
            raise ValueError("PASSWORDS must be configured unless WARDEN_ENABLED or OIDC_ENABLED is set")

        if self.oidc.enabled:
            missing = [
                name
                for name, value in (
                    ("OIDC_ISSUER_URL", self.oidc.issuer_url),
                    ("OIDC_CLIENT_ID", self.oidc.client_id),
                    ("OIDC_CLIENT_SECRET", self.oidc.client_secret),
                )
                if not value
            ]
            if missing:
                raise ValueError(f"OIDC is enabled but {', '.join(missing)} is not configured")

        if self.herald.enabled and not self.herald.url:
            raise ValueError("HERALD_URL must be configured when HERALD_ENABLED is set")
        if self.warden.enabled and not self.warden.url:
            raise ValueError("WARDEN_URL must be configured when WARDEN_ENABLED is set")
        if self.totp.enabled and not self.totp.base_url:
            raise ValueError("HERALD_TOTP_BASE_URL must be configured when HERALD_TOTP_ENABLED is set")
        return self

    @property
    def password_set(self) -> PasswordSet | None:
        if self.passwords is None:
            return None
        return parse_passwords(self.passwords)

    @property
    def oidc_redirect_uri(self) -> str:
        return self.oidc.redirect_uri or f"https://{self.auth_host}/_oidc/callback"

    @property
    def cookie_domain_suffix(self) -> str | None:
        """Cookie domain without its leading dot, lower-cased."""

        if not self.cookie_domain:
            return None
        return self.cookie_domain.lstrip(".").lower() or None

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level
        return "DEBUG" if self.debug else "INFO"


settings = Settings()

__all__ = [
    "AUDIT_FORMATS",
    "AuditSettings",
    "AuthRefreshSettings",
    "HeraldSettings",
    "HeraldTOTPSettings",
    "OIDCSettings",
    "SUPPORTED_LANGUAGES",
    "SessionStorageSettings",
    "Settings",
    "StepUpSettings",
    "TracingSettings",
    "WardenSettings",
    "settings",
]
