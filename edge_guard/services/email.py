"""
Email delivery for verification codes via SMTP.

In development (no SMTP configured), emails are printed to the console
so you can see what *would* be sent without configuring a mail server.
"""

from __future__ import annotations

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from edge_guard import config

logger = logging.getLogger(__name__)


def _build_html_body(code: str, expires_minutes: int) -> str:
    return f"""
    <html>
    <body style="font-family:sans-serif;color:#333">
      <h2>Your verification code</h2>
      <p style="font-size:2em;letter-spacing:0.2em;font-weight:bold">{code}</p>
      <p>The code expires in {expires_minutes} minutes and can be used once.</p>
      <p style="margin-top:1em;font-size:0.9em;color:#888">
        If you did not try to sign in, you can ignore this email.
      </p>
    </body>
    </html>
    """


async def send_code_email(to_email: str, code: str) -> bool:
    """
    Send (or log) a verification code email.

    Returns False when the SMTP server rejects or cannot be reached.
    If SMTP is not configured, falls back to console output.
    """
    expires_minutes = max(1, int(config.TWO_FACTOR_TOKEN_EXPIRY // 60))
    subject = "Your verification code"

    # ── Console fallback (dev mode) ───────────────────────────────────
    if not config.smtp_enabled():
        logger.info("📧 [DEV] Would send verification code %s to %s", code, to_email)
        return True

    # ── Real SMTP send ────────────────────────────────────────────────
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = config.SMTP_FROM_EMAIL
    msg["To"] = to_email

    plain = f"Your verification code is {code}. It expires in {expires_minutes} minutes."
    msg.attach(MIMEText(plain, "plain"))
    msg.attach(MIMEText(_build_html_body(code, expires_minutes), "html"))

    try:
        await aiosmtplib.send(
            msg,
            hostname=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            start_tls=config.SMTP_USE_TLS,
        )
    except aiosmtplib.SMTPException:
        logger.exception("Failed to send verification email to %s", to_email)
        return False
    logger.info("Verification email sent to %s", to_email)
    return True
