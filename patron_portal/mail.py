from __future__ import annotations

import smtplib
from email.mime.text import MIMEText
from typing import Any, Dict
from urllib.parse import urlencode

from patron_portal.config import Config


def _debug(msg: str) -> None:
    print(f"[mail] {msg}")


def reset_password_url(cfg: Config, token: str) -> str:
    return f"{cfg.PUBLIC_APP_URL.rstrip('/')}/reset-password?{urlencode({'token': token})}"


def _reset_body(reset_url: str, expires_minutes: int) -> str:
    return (
        "Password Reset Request\n\n"
        "You have requested to reset your password. Open the link below to reset it:\n\n"
        f"{reset_url}\n\n"
        f"This link will expire in {expires_minutes} minutes.\n\n"
        "If you did not request this password reset, please ignore this email.\n"
    )


def send_mail(cfg: Config, *, to: str, subject: str, body: str) -> None:
    """Send a plain-text email over SMTP. Raises on SMTP errors."""
    if not cfg.SMTP_HOST:
        raise RuntimeError("smtp_not_configured")

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = cfg.SMTP_FROM or cfg.SMTP_USER or f"no-reply@{cfg.SMTP_HOST}"
    msg["To"] = to

    if cfg.SMTP_SECURE:
        server: smtplib.SMTP = smtplib.SMTP_SSL(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=cfg.SMTP_TIMEOUT_SECONDS)
    else:
        server = smtplib.SMTP(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=cfg.SMTP_TIMEOUT_SECONDS)
    with server:
        if not cfg.SMTP_SECURE:
            server.starttls()
        if cfg.SMTP_USER and cfg.SMTP_PASS:
            server.login(cfg.SMTP_USER, cfg.SMTP_PASS)
        server.send_message(msg)


def send_password_reset_email(cfg: Config, *, email: str, token: str) -> Dict[str, Any]:
    """Mail the reset link. Without SMTP settings the link is logged instead (dev)."""
    reset_url = reset_password_url(cfg, token)

    if not cfg.SMTP_HOST:
        _debug(f"SMTP not configured; password reset link for {email}: {reset_url}")
        return {"sent": False, "reason": "smtp_not_configured"}

    send_mail(
        cfg,
        to=email,
        subject="Password Reset Request",
        body=_reset_body(reset_url, cfg.PASSWORD_RESET_EXPIRE_MINUTES),
    )
    _debug(f"Password reset email sent to {email}")
    return {"sent": True}
