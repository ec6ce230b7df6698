"""
Transactional email for farm invitations.
Uses SMTP in development when configured, the Resend API otherwise.
Every sender returns True only when the provider accepted the message.
"""
import html
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import quote

from app.core.config import settings

logger = logging.getLogger(__name__)

_resend_client = None


def _get_resend():
    """Configure the Resend module on first use; None when no API key is set."""
    global _resend_client
    if _resend_client is None:
        if not settings.RESEND_API_KEY:
            logger.warning("RESEND_API_KEY not configured, emails will not be sent")
            return None
        import resend
        resend.api_key = settings.RESEND_API_KEY
        _resend_client = resend
    return _resend_client


def _send_email_smtp(to: str, subject: str, body: str) -> bool:
    if not settings.SMTP_HOST or not settings.SMTP_USERNAME:
        logger.warning("SMTP not configured, email to %s not sent", to)
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM_EMAIL or "noreply@agriassist.app"
    msg["To"] = to
    msg.attach(MIMEText(body, "html"))

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
            server.starttls()
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
            server.sendmail(msg["From"], [to], msg.as_string())
    except (smtplib.SMTPException, OSError):
        logger.exception("SMTP delivery failed: %s to %s", subject, to)
        return False

    logger.info("Email sent via SMTP: %s to %s", subject, to)
    return True


def _send_email_resend(to: str, subject: str, body: str) -> bool:
    resend = _get_resend()
    if resend is None:
        return False

    params = {
        "from": settings.RESEND_FROM_EMAIL,
        "to": [to],
        "subject": subject,
        "html": body,
    }
    try:
        resend.Emails.send(params)
    except Exception:
        logger.exception("Resend delivery failed: %s to %s", subject, to)
        return False

    logger.info("Email sent via Resend: %s to %s", subject, to)
    return True


def _send_email(to: str, subject: str, body: str) -> bool:
    if settings.ENVIRONMENT == "development" and settings.SMTP_HOST:
        return _send_email_smtp(to, subject, body)
    return _send_email_resend(to, subject, body)


def invitation_link(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/accept-invitation?token={quote(token)}"


def send_staff_invitation_email(
    to: str,
    token: str,
    *,
    farm_name: Optional[str],
    role: str,
    expires_at: datetime,
    inviter_name: Optional[str] = None,
) -> bool:
    """Mail the invitee the link that accepts the invitation."""
    link = invitation_link(token)
    farm = html.escape(farm_name or "a farm")
    inviter = html.escape(inviter_name or "A farm owner")

    if settings.ENVIRONMENT == "development":
        logger.info("[DEV] Staff invitation for %s: %s", to, link)

    body = f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #1f2937; max-width: 560px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #16a34a;">You're invited to {farm}</h2>
        <p>{inviter} has invited you to join <strong>{farm}</strong> on AgriAssist as {html.escape(role)}.</p>
        <p style="text-align: center; margin: 32px 0;">
            <a href="{link}" style="background: #16a34a; color: white; text-decoration: none; padding: 12px 28px; border-radius: 6px; font-weight: 600;">
                View invitation and join farm
            </a>
        </p>
        <p style="color: #6b7280; font-size: 14px;">This link expires on {expires_at:%d %B %Y}. If you were not expecting it, you can ignore this email.</p>
        <p style="color: #9ca3af; font-size: 12px;">Link not working? Paste this into your browser:<br>{link}</p>
    </body>
    </html>
    """

    return _send_email(to, f"You're invited to join {farm_name or 'a farm'} on AgriAssist", body)
