"""
HTML templates for connection emails.

All interpolated values are escaped; names and categories come from user
and provider profiles.
"""

from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Optional

USER_SUBJECT = "You’re Connected with a Provider"
PROVIDER_SUBJECT = "A Customer Has Connected With You"
ADMIN_SUBJECT = "New Contact Unlock Purchase"


@dataclass(frozen=True)
class ConnectionEmailContext:
    """Everything the three connection emails render."""
    site_name: str
    user_name: str
    user_email: Optional[str]
    user_mobile: Optional[str]
    provider_name: str
    provider_email: Optional[str]
    provider_category: str
    access_label: str
    transaction_id: str
    timestamp: str
    disclaimer: str = ""
    site_url: Optional[str] = None


def _layout(title: str, body: str, site_name: str, site_url: Optional[str]) -> str:
    header = escape(site_name)
    if site_url:
        header = f'<a href="{escape(site_url, quote=True)}" target="_blank">{header}</a>'
    year = datetime.now().year
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>
        body {{ margin: 0; padding: 0; background-color: #F8F9FA; font-family: Arial, sans-serif; }}
        .container {{ max-width: 600px; margin: 0 auto; background-color: #ffffff; padding: 20px; }}
        .header {{ text-align: center; padding-bottom: 20px; font-size: 20px; font-weight: bold; }}
        .content {{ padding: 20px 0; color: #333333; line-height: 1.6; }}
        .footer {{ text-align: center; font-size: 12px; color: #999999; padding-top: 20px; border-top: 1px solid #eeeeee; }}
        .notice {{ background-color: #fffbe6; border-left: 4px solid #ffe58f; padding: 15px; margin: 20px 0; font-size: 14px; }}
        .details-box {{ border: 1px solid #e0e0e0; padding: 15px; margin-top: 15px; border-radius: 5px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">{header}</div>
        <div class="content">
            <h2>{escape(title)}</h2>
            {body}
        </div>
        <div class="footer">&copy; {year} {escape(site_name)}. All rights reserved.</div>
    </div>
</body>
</html>"""


def _notice(paragraphs) -> str:
    inner = "".join(f'<p style="margin-bottom:0;">{escape(p)}</p>' for p in paragraphs if p)
    return f'<div class="notice"><h3 style="margin-top:0;">Important Notice</h3>{inner}</div>'


def render_user_email(ctx: ConnectionEmailContext) -> str:
    body = f"""
      <p>Hello,</p>
      <p>Thank you for your purchase. You are now connected with the following provider:</p>
      <div class="details-box">
        <p><strong>Category:</strong> {escape(ctx.provider_category)}</p>
        <p><strong>Provider Name:</strong> {escape(ctx.provider_name)}</p>
        <p><strong>Access:</strong> {escape(ctx.access_label)}</p>
      </div>
      <p>You may contact the provider through the platform using the unlocked contact option.</p>
      {_notice([
          "This platform’s purpose is only to connect users with service providers. We do not manage or "
          "control service quality, pricing, work execution, agreements, or transactions.",
          "All service discussions, payments, and decisions are strictly between you and the provider. "
          "Please proceed carefully.",
          ctx.disclaimer,
      ])}
      <p>Thank you for using our platform.</p>
    """
    return _layout(USER_SUBJECT, body, ctx.site_name, ctx.site_url)


def render_provider_email(ctx: ConnectionEmailContext) -> str:
    body = f"""
      <p>Hello,</p>
      <p>A customer has unlocked your profile and may contact you regarding services in the following category:</p>
      <div class="details-box">
        <p><strong>Category:</strong> {escape(ctx.provider_category)}</p>
      </div>
      <p>Please communicate professionally and provide honest service.</p>
      {_notice([
          "This platform connects users and providers only. We do not control service agreements, "
          "pricing, work execution, or transactions.",
          "All dealings are directly between you and the customer.",
          ctx.disclaimer,
      ])}
      <p>We wish you success through our platform.</p>
    """
    return _layout(PROVIDER_SUBJECT, body, ctx.site_name, ctx.site_url)


def render_admin_email(ctx: ConnectionEmailContext) -> str:
    body = f"""
      <p>Hello Admin,</p>
      <p>A new contact unlock purchase has been completed.</p>
      <h3>User Details</h3>
      <div class="details-box">
        <p><strong>Name:</strong> {escape(ctx.user_name)}</p>
        <p><strong>Mobile Number:</strong> {escape(ctx.user_mobile or "Not Provided")}</p>
        <p><strong>Email:</strong> {escape(ctx.user_email or "Not Provided")}</p>
      </div>
      <h3>Provider Details</h3>
      <div class="details-box">
        <p><strong>Provider Name:</strong> {escape(ctx.provider_name)}</p>
        <p><strong>Category:</strong> {escape(ctx.provider_category)}</p>
      </div>
      <h3>Transaction Details</h3>
      <div class="details-box">
        <p><strong>Access:</strong> {escape(ctx.access_label)}</p>
        <p><strong>Transaction ID:</strong> {escape(ctx.transaction_id)}</p>
        <p><strong>Date &amp; Time:</strong> {escape(ctx.timestamp)}</p>
      </div>
      <p>Please review this transaction if required.</p>
    """
    return _layout(ADMIN_SUBJECT, body, ctx.site_name, ctx.site_url)
