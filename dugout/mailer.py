"""
SMTP delivery for invitation and revocation notices.

Settings come from the Flask config (``EMAIL_ENABLED`` and ``SMTP_*``);
the password is only ever read from the environment.
"""
from __future__ import annotations

import smtplib
from email.message import EmailMessage
from html import escape

import structlog
from flask import current_app

logger = structlog.get_logger(__name__)

PLAIN_FALLBACK = "This message is formatted as HTML. Open it in an HTML-capable mail client."


def _smtp_settings() -> dict:
    cfg = current_app.config
    return {
        "host": cfg.get("SMTP_HOST"),
        "port": int(cfg.get("SMTP_PORT") or 0),
        "username": cfg.get("SMTP_USERNAME"),
        "password": cfg.get("SMTP_PASSWORD"),
        "starttls": bool(cfg.get("SMTP_USE_TLS", True)),
        "ssl": bool(cfg.get("SMTP_USE_SSL", False)),
    }


def is_configured() -> bool:
    """True when sending is enabled and every SMTP setting needed to log in is present."""
    if not current_app.config.get("EMAIL_ENABLED"):
        return False
    settings = _smtp_settings()
    return all(settings[k] for k in ("host", "port", "username", "password"))


def _compose(to_address, subject, html, text, from_address) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = (
        from_address or current_app.config.get("EMAIL_FROM_ADDRESS") or "no-reply@example.com"
    )
    msg["To"] = to_address
    msg.set_content(text or PLAIN_FALLBACK)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def _open(settings: dict) -> smtplib.SMTP:
    if settings["ssl"]:
        return smtplib.SMTP_SSL(settings["host"], settings["port"])
    return smtplib.SMTP(settings["host"], settings["port"])


def send_email(
    to_address: str,
    subject: str,
    html: str | None = None,
    text: str | None = None,
    from_address: str | None = None,
) -> bool:
    """
    Send one message.

    Returns:
        bool: False when email is off, unconfigured, or the SMTP exchange
        failed (logged, never raised); True otherwise
    """
    if not is_configured():
        logger.warning("email_skipped_unconfigured", to=to_address, subject=subject)
        return False

    settings = _smtp_settings()
    msg = _compose(to_address, subject, html, text, from_address)
    try:
        with _open(settings) as smtp:
            if settings["starttls"] and not settings["ssl"]:
                smtp.starttls()
            smtp.login(settings["username"], settings["password"])
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("email_send_failed", to=to_address, error=str(e))
        return False

    logger.info("email_sent", to=to_address, subject=subject)
    return True


def invitation_link(invitation_id: str) -> str:
    """Deep link the app opens to accept or decline an invitation."""
    base = current_app.config.get("APP_LINK_BASE") or "dugout://"
    return f"{base.rstrip('/')}/invitation/{invitation_id}"


def send_invitation_email(
    to_address: str,
    folder_name: str,
    owner_name: str,
    invitation_id: str,
    expires_at: str,
) -> bool:
    """Invite a reviewer to a folder.

    Args:
        to_address: Contact the invitation was addressed to
        folder_name: Folder name as it was when the invitation was sent
        owner_name: Owner display name, same snapshot
        invitation_id: Invitation to accept or decline
        expires_at: Human-readable expiry
    """
    link = invitation_link(invitation_id)
    html = (
        "<h2>Folder invitation</h2>"
        f"<p><strong>{escape(owner_name)}</strong> invited you to review "
        f"<strong>{escape(folder_name)}</strong>.</p>"
        f'<p>Accept or decline in the app: <a href="{link}">{link}</a></p>'
        f'<p style="color: #666;">The invitation expires on {escape(expires_at)}.</p>'
    )
    text = (
        f'{owner_name} invited you to review "{folder_name}".\n\n'
        f"Accept or decline in the app: {link}\n\n"
        f"The invitation expires on {expires_at}.\n"
    )
    subject = f'{owner_name} shared "{folder_name}" with you'
    return send_email(to_address, subject, html=html, text=text)


def send_access_revoked_email(to_address: str, folder_name: str, owner_name: str) -> bool:
    html = (
        f"<p><strong>{escape(owner_name)}</strong> removed your access to "
        f"<strong>{escape(folder_name)}</strong>.</p>"
        "<p>Its videos and annotations are no longer available to you.</p>"
    )
    text = (
        f'{owner_name} removed your access to "{folder_name}".\n'
        "Its videos and annotations are no longer available to you.\n"
    )
    return send_email(
        to_address, f'Your access to "{folder_name}" was removed', html=html, text=text
    )
