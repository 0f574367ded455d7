"""
Application settings read from environment variables.

Settings are built once in the app factory (or the cron entrypoint) and
passed down through app.state; core modules never read the environment.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

DEFAULT_DATABASE_URL = "sqlite:///./marketplace.db"
DEFAULT_SITE_NAME = "Marketplace"
DEFAULT_CONNECTION_RETENTION_DAYS = 90


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    raw = env.get(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def normalize_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass(frozen=True)
class SmtpSettings:
    host: Optional[str] = None
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    sender_email: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password and self.sender_email)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the marketplace service."""

    database_url: str = DEFAULT_DATABASE_URL
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    sign_in_path: str = "/login"

    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_base_url: str = "https://api.razorpay.com/v1"
    enable_online_payment: bool = False

    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    admin_notification_email: Optional[str] = None
    site_name: str = DEFAULT_SITE_NAME
    site_url: Optional[str] = None

    access_tiers_path: Optional[str] = None
    redis_url: Optional[str] = None
    review_mark_when_pending_elsewhere: bool = False

    connection_retention_days: int = DEFAULT_CONNECTION_RETENTION_DAYS
    connection_cleanup_dry_run: bool = True

    @property
    def payments_configured(self) -> bool:
        return bool(self.enable_online_payment and self.razorpay_key_id and self.razorpay_key_secret)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        retention_days = _env_int(env, "CONNECTION_RETENTION_DAYS", DEFAULT_CONNECTION_RETENTION_DAYS)
        if retention_days < 1:
            raise ValueError("CONNECTION_RETENTION_DAYS must be at least 1")
        return cls(
            database_url=normalize_database_url(_env_str(env, "DATABASE_URL") or DEFAULT_DATABASE_URL),
            jwt_secret=_env_str(env, "JWT_SECRET"),
            sign_in_path=_env_str(env, "SIGN_IN_PATH") or "/login",
            razorpay_key_id=_env_str(env, "RAZORPAY_KEY_ID"),
            razorpay_key_secret=_env_str(env, "RAZORPAY_KEY_SECRET"),
            razorpay_base_url=_env_str(env, "RAZORPAY_BASE_URL") or "https://api.razorpay.com/v1",
            enable_online_payment=_env_bool(env, "ENABLE_ONLINE_PAYMENT", False),
            smtp=SmtpSettings(
                host=_env_str(env, "SMTP_HOST"),
                port=_env_int(env, "SMTP_PORT", 587),
                user=_env_str(env, "SMTP_USER"),
                password=_env_str(env, "SMTP_PASS"),
                sender_email=_env_str(env, "SENDER_EMAIL"),
            ),
            admin_notification_email=_env_str(env, "ADMIN_NOTIFICATION_EMAIL"),
            site_name=_env_str(env, "SITE_NAME") or DEFAULT_SITE_NAME,
            site_url=_env_str(env, "SITE_URL"),
            access_tiers_path=_env_str(env, "ACCESS_TIERS_PATH"),
            redis_url=_env_str(env, "REDIS_URL"),
            review_mark_when_pending_elsewhere=_env_bool(env, "REVIEW_MARK_WHEN_PENDING_ELSEWHERE", False),
            connection_retention_days=retention_days,
            connection_cleanup_dry_run=_env_bool(env, "CONNECTION_CLEANUP_DRY_RUN", True),
        )
