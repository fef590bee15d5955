from __future__ import annotations

import os
from dataclasses import dataclass

MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS_MS = (5000, 10000, 20000)
DEFAULT_EVENT_TYPES = ("conversation.admin.closed", "conversation.closed")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values = tuple(item.strip() for item in raw.split(",") if item.strip())
    return values or default


def _delays_env(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        values = tuple(int(item) for item in raw.split(",") if item.strip())
    except ValueError:
        return default
    if len(values) != MAX_RETRIES or any(value < 0 for value in values):
        return default
    return values


@dataclass(frozen=True)
class Settings:
    app_env: str
    persistence_enabled: bool
    persistence_db_path: str
    database_url: str
    auth_enabled: bool
    jwt_secret: str
    jwt_algorithm: str
    business_name: str
    trustpilot_domain: str
    recognized_event_types: tuple[str, ...]
    retry_delays_ms: tuple[int, ...]
    send_timeout_seconds: float
    dispatch_max_concurrency: int
    intercom_access_token: str
    intercom_api_url: str
    contact_lookup_timeout_seconds: float
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_from: str
    smtp_starttls: bool
    audit_log_path: str

    @property
    def max_retries(self) -> int:
        return MAX_RETRIES

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from)

    @property
    def contact_lookup_configured(self) -> bool:
        return bool(self.intercom_access_token)


def load_settings() -> Settings:
    persistence_db_path = os.getenv("PERSISTENCE_DB_PATH", "data/review_invites.sqlite3").strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    smtp_user = os.getenv("SMTP_USER", "").strip()
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        auth_enabled=_bool_env("AUTH_ENABLED", False),
        jwt_secret=os.getenv("JWT_SECRET", "dev-only-secret-change-in-prod").strip(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
        business_name=os.getenv("BUSINESS_NAME", "Our Business").strip() or "Our Business",
        trustpilot_domain=os.getenv("TRUSTPILOT_DOMAIN", "your-business.trustpilot.com").strip(),
        recognized_event_types=_list_env("RECOGNIZED_EVENT_TYPES", DEFAULT_EVENT_TYPES),
        retry_delays_ms=_delays_env("RETRY_DELAYS_MS", DEFAULT_RETRY_DELAYS_MS),
        send_timeout_seconds=max(1.0, _float_env("SEND_TIMEOUT_SECONDS", 30.0)),
        dispatch_max_concurrency=max(1, min(64, _int_env("DISPATCH_MAX_CONCURRENCY", 8))),
        intercom_access_token=os.getenv("INTERCOM_ACCESS_TOKEN", "").strip(),
        intercom_api_url=os.getenv("INTERCOM_API_URL", "https://api.intercom.io").strip(),
        contact_lookup_timeout_seconds=max(1.0, _float_env("CONTACT_LOOKUP_TIMEOUT_SECONDS", 8.0)),
        smtp_host=os.getenv("SMTP_HOST", "").strip(),
        smtp_port=_int_env("SMTP_PORT", 587),
        smtp_user=smtp_user,
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        smtp_from=os.getenv("SMTP_FROM", smtp_user).strip(),
        smtp_starttls=_bool_env("SMTP_STARTTLS", True),
        audit_log_path=os.getenv("AUDIT_LOG_PATH", "logs/invitations.jsonl").strip(),
    )
