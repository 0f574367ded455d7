from __future__ import annotations

import pytest

from marketplace.config.settings import DEFAULT_DATABASE_URL, Settings, normalize_database_url


def test_defaults_from_empty_environment():
    settings = Settings.from_env({})

    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.enable_online_payment is False
    assert settings.payments_configured is False
    assert settings.smtp.is_configured is False
    assert settings.connection_retention_days == 90
    assert settings.connection_cleanup_dry_run is True
    assert settings.review_mark_when_pending_elsewhere is False


def test_reads_environment():
    settings = Settings.from_env({
        "DATABASE_URL": "postgres://app:pw@db:5432/market",
        "JWT_SECRET": "s3cret",
        "ENABLE_ONLINE_PAYMENT": "true",
        "RAZORPAY_KEY_ID": "rzp_live_x",
        "RAZORPAY_KEY_SECRET": "shh",
        "SMTP_HOST": "smtp.example.com",
        "SMTP_PORT": "465",
        "SMTP_USER": "mailer",
        "SMTP_PASS": "pw",
        "SENDER_EMAIL": "noreply@example.com",
        "REVIEW_MARK_WHEN_PENDING_ELSEWHERE": "yes",
        "CONNECTION_CLEANUP_DRY_RUN": "false",
        "SITE_NAME": "  ",
    })

    assert settings.database_url == "postgresql://app:pw@db:5432/market"
    assert settings.payments_configured is True
    assert settings.smtp.port == 465
    assert settings.smtp.is_configured is True
    assert settings.review_mark_when_pending_elsewhere is True
    assert settings.connection_cleanup_dry_run is False
    assert settings.site_name == "Marketplace"


def test_payments_need_keys_and_flag():
    assert not Settings(enable_online_payment=True, razorpay_key_id="k").payments_configured
    assert not Settings(razorpay_key_id="k", razorpay_key_secret="s").payments_configured


@pytest.mark.parametrize("env", [{"SMTP_PORT": "abc"}, {"CONNECTION_RETENTION_DAYS": "0"}])
def test_invalid_values_are_rejected(env):
    with pytest.raises(ValueError):
        Settings.from_env(env)


def test_only_postgres_scheme_is_rewritten():
    assert normalize_database_url("sqlite:///x.db") == "sqlite:///x.db"
    assert normalize_database_url("postgresql://h/db") == "postgresql://h/db"
