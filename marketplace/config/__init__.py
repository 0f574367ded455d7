"""Configuration for the marketplace service."""

from marketplace.config.settings import Settings, SmtpSettings, normalize_database_url

__all__ = [
    "Settings",
    "SmtpSettings",
    "normalize_database_url",
]
