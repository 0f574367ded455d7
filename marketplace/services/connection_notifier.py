"""
Fire-and-forget notifications after a connection is granted.

Sends up to three emails (user, provider, platform operator) and writes an
in-app entry to the provider's inbox. Runs as a FastAPI background task with
its own database session. Every failure is logged and swallowed; nothing
here can change the outcome of the request that granted access.
"""

import logging
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from marketplace.config.settings import Settings
from marketplace.entitlements.models import AccessTierId, ConnectionRecord
from marketplace.models.provider import Provider
from marketplace.models.user import User
from marketplace.services import email_templates
from marketplace.services.email_service import send_email
from marketplace.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

DISPLAY_TIMEZONE = ZoneInfo("Asia/Kolkata")
FREE_TRANSACTION_ID = "FREE_ACCESS"


def format_local_timestamp(value: datetime) -> str:
    return value.astimezone(DISPLAY_TIMEZONE).strftime("%d %b %Y, %I:%M %p IST")


class ConnectionNotifier:
    """Best-effort delivery of connection notifications."""

    def __init__(
        self,
        settings: Settings,
        session_factory: Callable[[], Session],
        send: Callable[..., None] = send_email,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self._send = send

    def notify(
        self,
        record: ConnectionRecord,
        access_label: str,
        disclaimer: str = "",
    ) -> None:
        """Entry point for BackgroundTasks. Never raises."""
        try:
            db = self.session_factory()
        except Exception:
            logger.exception(
                "Could not open session for connection notifications",
                extra={"record_id": record.record_id},
            )
            return

        try:
            user = db.get(User, record.user_id)
            provider = db.get(Provider, record.provider_id)
            user_name = (user.display_name if user else None) or "A customer"
            self._write_inbox_entry(db, record, user_name, access_label)
            self._send_emails(record, user, provider, access_label, disclaimer)
        except Exception:
            logger.exception(
                "Connection notifications failed",
                extra={"record_id": record.record_id},
            )
        finally:
            db.close()

    def _write_inbox_entry(
        self,
        db: Session,
        record: ConnectionRecord,
        user_name: str,
        access_label: str,
    ) -> None:
        try:
            NotificationService(db).notify_connection_created(record, user_name, access_label)
        except Exception:
            db.rollback()
            logger.exception(
                "Failed to write provider inbox notification",
                extra={"record_id": record.record_id},
            )

    def _send_emails(
        self,
        record: ConnectionRecord,
        user: Optional[User],
        provider: Optional[Provider],
        access_label: str,
        disclaimer: str,
    ) -> None:
        smtp = self.settings.smtp
        if not smtp.is_configured:
            logger.warning(
                "SMTP configuration incomplete; connection emails not sent",
                extra={"record_id": record.record_id},
            )
            return

        ctx = email_templates.ConnectionEmailContext(
            site_name=self.settings.site_name,
            site_url=self.settings.site_url,
            user_name=(user.display_name if user else None) or "Unknown User",
            user_email=user.email if user else None,
            user_mobile=user.mobile_number if user else None,
            provider_name=(provider.full_name if provider else None) or "Unknown Provider",
            provider_email=provider.email if provider else None,
            provider_category=(provider.work_category_name if provider else None) or "N/A",
            access_label=access_label,
            transaction_id=(
                FREE_TRANSACTION_ID
                if record.access_type == AccessTierId.FREE
                else (record.payment_id or "N/A")
            ),
            timestamp=format_local_timestamp(record.granted_at),
            disclaimer=disclaimer,
        )

        site_name = self.settings.site_name
        if ctx.user_email:
            self._deliver(
                ctx.user_email,
                email_templates.USER_SUBJECT,
                email_templates.render_user_email(ctx),
                site_name,
                record,
            )
        else:
            logger.warning("Skipping user email: address not provided", extra={"record_id": record.record_id})

        if ctx.provider_email:
            self._deliver(
                ctx.provider_email,
                email_templates.PROVIDER_SUBJECT,
                email_templates.render_provider_email(ctx),
                site_name,
                record,
            )
        else:
            logger.warning("Skipping provider email: address not provided", extra={"record_id": record.record_id})

        admin_email = self.settings.admin_notification_email
        if admin_email:
            self._deliver(
                admin_email,
                email_templates.ADMIN_SUBJECT,
                email_templates.render_admin_email(ctx),
                f"{site_name} Admin",
                record,
            )
        else:
            logger.warning("Skipping admin email: ADMIN_NOTIFICATION_EMAIL not set", extra={"record_id": record.record_id})

    def _deliver(self, to: str, subject: str, html: str, from_name: str, record: ConnectionRecord) -> None:
        try:
            self._send(self.settings.smtp, to, subject, html, from_name)
        except Exception as exc:
            logger.error(
                "Connection email failed to send",
                extra={"record_id": record.record_id, "subject": subject, "error": str(exc)},
            )
