"""Translated user-facing messages."""
from __future__ import annotations

from typing import Any

from fastapi import Request

from .config import SUPPORTED_LANGUAGES

DEFAULT_LANGUAGE = "en"

_HERALD_LOCALES: dict[str, str] = {
    "en": "en-US",
    "zh": "zh-CN",
    "fr": "fr-FR",
    "it": "it-IT",
    "ja": "ja-JP",
    "de": "de-DE",
    "ko": "ko-KR",
}

TRANSLATIONS: dict[str, dict[str, str]] = {
    "en": {
        "error.auth_required": "Authentication required",
        "error.invalid_password": "Invalid password",
        "error.invalid_callback": "Invalid callback host",
        "error.session_store_failed": "Internal server error: failed to access session store",
        "error.authenticate_failed": "Internal server error: failed to authenticate session",
        "error.authentication_failed": "Authentication failed",
        "error.missing_session_id": "Missing session ID",
        "error.oidc_not_configured": "OIDC is not configured",
        "error.state_generation_failed": "Failed to generate security token",
        "error.oidc_missing_code": "Authorization code is missing",
        "error.oidc_invalid_state": "Invalid security token",
        "error.oidc_token_exchange_failed": "Failed to exchange authorization code",
        "error.oidc_missing_id_token": "ID token is missing from response",
        "error.oidc_token_verification_failed": "Failed to verify authentication token",
        "error.oidc_error": "Authentication Error",
        "error.step_up_required": "Additional verification required",
        "error.step_up_failed": "Additional verification failed",
        "error.user_not_in_list": "User is not allowed to sign in",
        "error.missing_identifier": "Phone number or email is required",
        "error.warden_unavailable": "User directory is temporarily unavailable",
        "error.user_id_missing": "User ID is missing from the session",
        "error.herald_not_configured": "Verification code service is not configured",
        "error.herald_unavailable": "Verification code service is temporarily unavailable",
        "error.herald_unavailable_totp": (
            "Verification code service is temporarily unavailable, "
            "please sign in with your authenticator app"
        ),
        "error.totp_not_configured": "Authenticator service is not configured",
        "error.totp_unavailable": "Authenticator service is temporarily unavailable",
        "error.totp_invalid_code": "Invalid authenticator code",
        "error.totp_enroll_failed": "Failed to start authenticator enrollment",
        "error.totp_revoke_failed": "Failed to revoke authenticator",
        "error.missing_fields": "Required fields are missing",
        "error.verify_code_required": "Challenge ID and verification code are required",
        "error.verify_code_send_failed": "Failed to send verification code",
        "error.verify_code_expired": "Verification code has expired",
        "error.verify_code_invalid": "Invalid verification code",
        "error.verify_code_invalid_remaining": (
            "Invalid verification code, {remaining} attempts remaining"
        ),
        "error.verify_code_locked": "Too many failed attempts, the challenge is locked",
        "error.verify_code_too_many_attempts": "Too many attempts, please request a new code",
        "error.verify_code_rate_limited": "Too many requests, please try again later",
        "error.verify_code_rate_limited_wait": (
            "Too many requests, please try again in {seconds} seconds"
        ),
        "error.verify_code_unauthorized": "Verification service rejected the request",
        "error.verify_code_failed": "Verification failed",
        "error.internal": "Internal server error",
        "success.login": "Login successful",
        "success.logout": "Logged out",
        "success.verify_code_sent": "Verification code sent",
        "success.authenticated": "Authenticated",
        "success.not_authenticated": "Not authenticated",
        "login.password": "Password",
        "login.phone_or_mail": "Phone number or email",
        "login.send_code": "Send code",
        "login.verify_code": "Verification code",
        "login.submit": "Sign in",
        "login.oidc_button": "Login with {provider}",
        "login.redirecting": "Login successful, redirecting...",
        "step_up.title": "Additional verification",
        "step_up.prompt": "Enter the code from your authenticator app",
        "totp.enroll_title": "Set up authenticator",
        "totp.enroll_prompt": "Scan the link below with your authenticator app, then enter a code",
        "totp.revoke_title": "Remove authenticator",
        "totp.revoke_prompt": "Remove the authenticator bound to this account?",
        "common.retry": "Retry",
        "common.confirm": "Confirm",
    },
    "zh": {
        "error.auth_required": "需要身份验证",
        "error.invalid_password": "密码无效",
        "error.invalid_callback": "回调地址无效",
        "error.session_store_failed": "内部服务器错误：无法访问会话存储",
        "error.authenticate_failed": "内部服务器错误：无法验证会话",
        "error.authentication_failed": "认证失败",
        "error.missing_session_id": "缺少会话 ID",
        "error.oidc_not_configured": "OIDC 未配置",
        "error.state_generation_failed": "生成安全令牌失败",
        "error.oidc_missing_code": "缺少授权码",
        "error.oidc_invalid_state": "无效的安全令牌",
        "error.oidc_token_exchange_failed": "交换授权码失败",
        "error.oidc_missing_id_token": "响应中缺少 ID 令牌",
        "error.oidc_token_verification_failed": "验证认证令牌失败",
        "error.oidc_error": "认证错误",
        "error.step_up_required": "需要额外验证",
        "error.step_up_failed": "额外验证失败",
        "error.user_not_in_list": "用户不在允许列表中",
        "error.missing_identifier": "请提供手机号或邮箱",
        "error.warden_unavailable": "用户目录服务暂时不可用",
        "error.herald_unavailable": "验证码服务暂时不可用",
        "error.herald_unavailable_totp": "验证码服务暂时不可用，请使用身份验证器登录",
        "error.totp_invalid_code": "身份验证器验证码错误",
        "error.verify_code_required": "请提供验证码",
        "error.verify_code_expired": "验证码已过期",
        "error.verify_code_invalid": "验证码错误",
        "error.verify_code_invalid_remaining": "验证码错误，剩余 {remaining} 次尝试",
        "error.verify_code_locked": "失败次数过多，已被锁定",
        "error.verify_code_too_many_attempts": "尝试次数过多，请重新获取验证码",
        "error.verify_code_rate_limited": "请求过于频繁，请稍后再试",
        "error.verify_code_rate_limited_wait": "请求过于频繁，请在 {seconds} 秒后重试",
        "error.verify_code_send_failed": "验证码发送失败",
        "error.verify_code_failed": "验证失败",
        "success.login": "登录成功",
        "success.logout": "已登出",
        "success.verify_code_sent": "验证码已发送",
        "success.authenticated": "已认证",
        "success.not_authenticated": "未认证",
        "login.oidc_button": "使用 {provider} 登录",
    },
    "fr": {
        "error.auth_required": "Authentification requise",
        "error.invalid_password": "Mot de passe invalide",
        "error.invalid_callback": "Hôte de rappel invalide",
        "error.session_store_failed": (
            "Erreur interne du serveur : échec d'accès au stockage de session"
        ),
        "error.missing_session_id": "ID de session manquant",
        "error.oidc_not_configured": "OIDC n'est pas configuré",
        "error.oidc_missing_code": "Code d'autorisation manquant",
        "error.oidc_invalid_state": "Jeton de sécurité invalide",
        "error.oidc_error": "Erreur d'authentification",
        "error.step_up_required": "Vérification supplémentaire requise",
        "error.user_not_in_list": "Utilisateur non autorisé",
        "error.verify_code_invalid": "Code de vérification invalide",
        "error.verify_code_expired": "Le code de vérification a expiré",
        "success.login": "Connexion réussie",
        "success.logout": "Déconnecté",
        "login.oidc_button": "Se connecter avec {provider}",
    },
    "it": {
        "error.auth_required": "Autenticazione richiesta",
        "error.invalid_password": "Password non valida",
        "error.invalid_callback": "Host di callback non valido",
        "error.missing_session_id": "ID sessione mancante",
        "error.oidc_not_configured": "OIDC non è configurato",
        "error.oidc_invalid_state": "Token di sicurezza non valido",
        "error.oidc_error": "Errore di autenticazione",
        "error.step_up_required": "Verifica aggiuntiva richiesta",
        "error.user_not_in_list": "Utente non autorizzato",
        "error.verify_code_invalid": "Codice di verifica non valido",
        "success.login": "Accesso riuscito",
        "success.logout": "Disconnesso",
        "login.oidc_button": "Accedi con {provider}",
    },
    "ja": {
        "error.auth_required": "認証が必要です",
        "error.invalid_password": "パスワードが無効です",
        "error.invalid_callback": "コールバックホストが無効です",
        "error.missing_session_id": "セッション ID がありません",
        "error.oidc_not_configured": "OIDC が設定されていません",
        "error.oidc_invalid_state": "無効なセキュリティトークンです",
        "error.oidc_error": "認証エラー",
        "error.step_up_required": "追加の認証が必要です",
        "error.user_not_in_list": "ユーザーは許可されていません",
        "error.verify_code_invalid": "認証コードが無効です",
        "success.login": "ログインに成功しました",
        "success.logout": "ログアウトしました",
        "login.oidc_button": "{provider} でログイン",
    },
    "de": {
        "error.auth_required": "Authentifizierung erforderlich",
        "error.invalid_password": "Ungültiges Passwort",
        "error.invalid_callback": "Ungültiger Callback-Host",
        "error.missing_session_id": "Sitzungs-ID fehlt",
        "error.oidc_not_configured": "OIDC ist nicht konfiguriert",
        "error.oidc_invalid_state": "Ungültiges Sicherheitstoken",
        "error.oidc_error": "Authentifizierungsfehler",
        "error.step_up_required": "Zusätzliche Verifizierung erforderlich",
        "error.user_not_in_list": "Benutzer ist nicht zugelassen",
        "error.verify_code_invalid": "Ungültiger Bestätigungscode",
        "success.login": "Anmeldung erfolgreich",
        "success.logout": "Abgemeldet",
        "login.oidc_button": "Mit {provider} anmelden",
    },
    "ko": {
        "error.auth_required": "인증이 필요합니다",
        "error.invalid_password": "잘못된 비밀번호입니다",
        "error.invalid_callback": "잘못된 콜백 호스트입니다",
        "error.missing_session_id": "세션 ID가 없습니다",
        "error.oidc_not_configured": "OIDC가 구성되지 않았습니다",
        "error.oidc_invalid_state": "잘못된 보안 토큰입니다",
        "error.oidc_error": "인증 오류",
        "error.step_up_required": "추가 인증이 필요합니다",
        "error.user_not_in_list": "허용되지 않은 사용자입니다",
        "error.verify_code_invalid": "잘못된 인증 코드입니다",
        "success.login": "로그인 성공",
        "success.logout": "로그아웃되었습니다",
        "login.oidc_button": "{provider}(으)로 로그인",
    },
}


def _normalise_language(value: str | None) -> str | None:
    if not value:
        return None
    primary = value.strip().lower().replace("_", "-").split("-", 1)[0]
    if primary in SUPPORTED_LANGUAGES:
        return primary
    return None


def translate(key: str, lang: str | None = None) -> str:
    """Return the message for ``key``, falling back to English then the key."""

    catalogue = TRANSLATIONS.get(lang or DEFAULT_LANGUAGE, {})
    if key in catalogue:
        return catalogue[key]
    return TRANSLATIONS[DEFAULT_LANGUAGE].get(key, key)


def translate_format(key: str, lang: str | None = None, **values: Any) -> str:
    template = translate(key, lang)
    try:
        return template.format(**values)
    except (KeyError, IndexError, ValueError):
        return template


def first_accept_language(header: str | None) -> str | None:
    """Return the first language tag listed in an ``Accept-Language`` header."""

    if not header:
        return None
    first = header.split(",", 1)[0].split(";", 1)[0].strip()
    return first or None


def request_language(request: Request, default: str = DEFAULT_LANGUAGE) -> str:
    """Resolve the language for ``request``.

    The ``lang`` query parameter wins, then the ``lang`` cookie, then the first
    ``Accept-Language`` tag and finally ``default``.
    """

    candidates: tuple[str | None, ...] = (
        request.query_params.get("lang"),
        request.cookies.get("lang"),
        first_accept_language(request.headers.get("accept-language")),
    )
    for candidate in candidates:
        resolved = _normalise_language(candidate)
        if resolved:
            return resolved
    return default


def herald_locale(language: str, accept_language: str | None = None) -> str:
    """Locale passed to the credential broker for message templates."""

    requested = first_accept_language(accept_language)
    if requested:
        return requested
    return _HERALD_LOCALES.get(language, "en-US")


__all__ = [
    "DEFAULT_LANGUAGE",
    "TRANSLATIONS",
    "first_accept_language",
    "herald_locale",
    "request_language",
    "translate",
    "translate_format",
]
