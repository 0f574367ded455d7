"""
SMTP email delivery.

Port 465 uses implicit TLS; any other port uses STARTTLS. Callers decide
whether a failure matters; connection emails treat every failure as
log-and-continue.
"""

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from marketplace.config.settings import SmtpSettings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30


class EmailNotConfiguredError(Exception):
    """SMTP settings are incomplete; nothing can be sent."""


def send_email(
    smtp: SmtpSettings,
    to: str,
    subject: str,
    html_content: str,
    from_name: str,
) -> None:
    """
    Send one HTML email.

    Raises:
        EmailNotConfiguredError: SMTP settings are incomplete
        smtplib.SMTPException / OSError: delivery failed
    """
    if not smtp.is_configured:
        raise EmailNotConfiguredError("SMTP configuration incomplete")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, smtp.sender_email))
    msg["To"] = to
    msg.attach(MIMEText(html_content, "html", "utf-8"))

    context = ssl.create_default_context()
    if smtp.port == 465:
        server = smtplib.SMTP_SSL(smtp.host, smtp.port, context=context, timeout=SMTP_TIMEOUT_SECONDS)
    else:
        server = smtplib.SMTP(smtp.host, smtp.port, timeout=SMTP_TIMEOUT_SECONDS)
        server.starttls(context=context)

    try:
        server.login(smtp.user, smtp.password)
        server.sendmail(smtp.sender_email, [to], msg.as_string())
    finally:
        server.quit()

    logger.info("Email sent", extra={"to": to, "subject": subject, "smtp_host": smtp.host})
