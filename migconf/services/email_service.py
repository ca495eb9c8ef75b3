"""
Migration Conference Platform
Email Service.

Sends conference emails (access link, new link, reminder, completion) and
records every attempt in the conference's EmailHistoryEntry log.

Transports, first configured wins:
    - SMTP           MAIL_SERVER is set
    - HTTP backend   EMAIL_BACKEND_URL is set: POST <url>/api/send-email with
                     an ``x-api-key`` header, answered by
                     {"success", "message", "messageId"}
    - dev mode       neither is set: the email is logged, not sent

When EMAIL_NOTIFICATIONS_ENABLED is false nothing is attempted: the result
has ``attempted=False`` and no history entry is written.

Configuration (env vars):
    MAIL_SERVER / MAIL_PORT / MAIL_USE_TLS / MAIL_USERNAME / MAIL_PASSWORD
    MAIL_DEFAULT_SENDER
    EMAIL_BACKEND_URL / EMAIL_BACKEND_API_KEY / EMAIL_BACKEND_TIMEOUT
"""

from __future__ import annotations

import logging
import smtplib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import requests
from flask import current_app
from markupsafe import escape

from migconf.models import db
from migconf.models.conference import EmailHistoryEntry
from migconf.utils.helpers import ensure_utc

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: {header_color}; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{heading}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        <p style="color: #1e293b;">Hello {client_name},</p>
        {body}
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">
            Migration Conference Platform. Automated message.
        </p>
    </div>
</div>
"""

_LINK_BODY = """
<p style="color: #64748b; line-height: 1.6;">
    Please review the migration checklist <strong>{conference_name}</strong>.
</p>
<p style="text-align: center; margin: 24px 0;">
    <a href="{access_link}" style="background: #2563eb; color: white; padding: 10px 20px;
       border-radius: 6px; text-decoration: none;">Open conference</a>
</p>
<p style="color: #94a3b8; font-size: 13px;">This link expires on {expires_at}.</p>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "conference_link": {
        "subject": "Conference access: {conference_name}",
        "heading": "Migration conference",
        "header_color": "#1e293b",
        "body": _LINK_BODY,
        "text": (
            "Hello {client_name},\n\n"
            "Please review the migration checklist {conference_name}:\n{access_link}\n\n"
            "This link expires on {expires_at}.\n"
        ),
    },
    "new_link": {
        "subject": "New access link: {conference_name}",
        "heading": "New access link",
        "header_color": "#1e293b",
        "body": _LINK_BODY,
        "text": (
            "Hello {client_name},\n\n"
            "A new access link was generated for {conference_name}:\n{access_link}\n\n"
            "Previous links no longer work. This link expires on {expires_at}.\n"
        ),
    },
    "reminder": {
        "subject": "Reminder: {conference_name} is waiting for your review",
        "heading": "Pending conference",
        "header_color": "#f59e0b",
        "body": """
<p style="color: #64748b; line-height: 1.6;">
    The conference <strong>{conference_name}</strong> has been waiting for
    your review for {pending_days} day(s).
</p>
<p style="text-align: center; margin: 24px 0;">
    <a href="{access_link}" style="background: #2563eb; color: white; padding: 10px 20px;
       border-radius: 6px; text-decoration: none;">Review now</a>
</p>
<p style="color: #94a3b8; font-size: 13px;">This link expires on {expires_at}.</p>
""",
        "text": (
            "Hello {client_name},\n\n"
            "The conference {conference_name} has been waiting for your review for "
            "{pending_days} day(s):\n{access_link}\n"
        ),
    },
    "completion": {
        "subject": "Conference {conference_name} finished: {status_label}",
        "heading": "Conference finished",
        "header_color": "#22c55e",
        "body": """
<p style="color: #64748b; line-height: 1.6;">
    The conference <strong>{conference_name}</strong> finished with status
    <strong>{status_label}</strong>.
</p>
<p style="color: #64748b;">{correct} item(s) correct, {divergent} item(s) divergent, {auto_ok} auto-resolved.</p>
""",
        "text": (
            "Hello {client_name},\n\n"
            "The conference {conference_name} finished with status {status_label}.\n"
            "{correct} correct, {divergent} divergent, {auto_ok} auto-resolved.\n"
        ),
    },
}

# Template name → EmailHistoryEntry.type
_HISTORY_TYPES = {
    "conference_link": "conference_link",
    "new_link": "conference_link",
    "reminder": "reminder",
    "completion": "completion",
}

STATUS_LABELS = {
    "completed": "completed",
    "divergent": "completed with divergences",
}


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message: str
    message_id: str | None = None
    attempted: bool = True

    def to_dict(self):
        return {
            "success": self.success,
            "message": self.message,
            "message_id": self.message_id,
            "attempted": self.attempted,
        }


class EmailService:
    """
    Email sending service with template support.

    In dev mode (no SMTP server and no HTTP backend configured) emails are
    logged and recorded as sent without leaving the process.
    """

    @staticmethod
    def is_enabled() -> bool:
        return bool(current_app.config.get("EMAIL_NOTIFICATIONS_ENABLED", True))

    @staticmethod
    def transport() -> str:
        cfg = current_app.config
        if cfg.get("MAIL_SERVER"):
            return "smtp"
        if cfg.get("EMAIL_BACKEND_URL"):
            return "http"
        return "dev"

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    # ── Transport ────────────────────────────────────────────────────────

    @classmethod
    def send(cls, *, to: str, subject: str, html: str, text: str | None = None) -> EmailResult:
        """Send one email through the configured transport. Never raises."""
        if not cls.is_enabled():
            return EmailResult(False, "Email notifications are disabled", attempted=False)

        transport = cls.transport()
        if transport == "dev":
            logger.info("Email (dev mode): to=%s subject='%s'", to, subject)
            return EmailResult(True, "Logged (dev mode)", message_id=f"dev-{uuid.uuid4().hex}")

        try:
            if transport == "smtp":
                result = cls._send_smtp(to=to, subject=subject, html=html, text=text)
            else:
                result = cls._send_http(to=to, subject=subject, html=html, text=text)
        except (smtplib.SMTPException, OSError, requests.RequestException, ValueError) as exc:
            logger.error("Email failed: to=%s transport=%s error=%s", to, transport, exc)
            return EmailResult(False, str(exc)[:1000])

        if result.success:
            logger.info("Email sent: to=%s subject='%s' transport=%s", to, subject, transport)
        else:
            logger.error("Email rejected: to=%s transport=%s message=%s", to, transport, result.message)
        return result

    @staticmethod
    def _send_smtp(*, to: str, subject: str, html: str, text: str | None) -> EmailResult:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        message_id = f"<{uuid.uuid4().hex}@{server}>"
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = to
        msg["Message-ID"] = message_id
        if text:
            msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)
        return EmailResult(True, "Email sent", message_id=message_id)

    @staticmethod
    def _send_http(*, to: str, subject: str, html: str, text: str | None) -> EmailResult:
        cfg = current_app.config
        url = f"{cfg['EMAIL_BACKEND_URL'].rstrip('/')}/api/send-email"
        headers = {"Content-Type": "application/json"}
        if cfg.get("EMAIL_BACKEND_API_KEY"):
            headers["x-api-key"] = cfg["EMAIL_BACKEND_API_KEY"]

        resp = requests.post(
            url,
            json={"to": to, "subject": subject, "html": html, "text": text or ""},
            headers=headers,
            timeout=cfg.get("EMAIL_BACKEND_TIMEOUT", 15),
        )
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.ok and body.get("success"):
            return EmailResult(True, body.get("message") or "Email sent", message_id=body.get("messageId"))
        return EmailResult(False, body.get("message") or f"HTTP {resp.status_code}")

    # ── Templates ────────────────────────────────────────────────────────

    @classmethod
    def render(cls, template_name: str, context: dict[str, Any]) -> tuple[str, str, str]:
        """Return (subject, html, text) for a named template."""
        template = cls.get_template(template_name)
        if not template:
            raise ValueError(f"Email template not found: {template_name}")

        safe = _SafeDict({k: escape(v) for k, v in context.items()})
        body = template["body"].format_map(safe)
        html = _LAYOUT.format_map(_SafeDict(
            safe, body=body, heading=template["heading"], header_color=template["header_color"],
        ))
        subject = template["subject"].format_map(_SafeDict(context))
        text = template["text"].format_map(_SafeDict(context))
        return subject, html, text

    # ── Conference emails ────────────────────────────────────────────────

    @staticmethod
    def conference_context(conference) -> dict[str, Any]:
        from migconf.services.access_link import public_url

        expires = ensure_utc(conference.link_expires_at)
        progress = conference.progress()
        created = ensure_utc(conference.created_at) or datetime.now(timezone.utc)
        return {
            "client_name": conference.client_name,
            "conference_name": conference.name,
            "access_link": public_url(conference),
            "expires_at": expires.strftime("%Y-%m-%d %H:%M UTC") if expires else "",
            "pending_days": max((datetime.now(timezone.utc) - created).days, 0),
            "status_label": STATUS_LABELS.get(conference.status, conference.status),
            "correct": progress["correct"],
            "divergent": progress["divergent"],
            "auto_ok": progress["auto_ok"],
        }

    @classmethod
    def send_conference_email(cls, conference, template_name: str) -> EmailResult:
        """
        Render and send a conference email, appending to its email history.

        Commits the history entry on its own so a failed email never rolls
        back the state change it describes.
        """
        if not cls.is_enabled():
            logger.info("Email disabled, not sending %s for conference id=%s", template_name, conference.id)
            return EmailResult(False, "Email notifications are disabled", attempted=False)

        subject, html, text = cls.render(template_name, cls.conference_context(conference))
        result = cls.send(to=conference.client_email, subject=subject, html=html, text=text)

        entry = EmailHistoryEntry(
            conference_id=conference.id,
            type=_HISTORY_TYPES[template_name],
            to=conference.client_email,
            subject=subject[:500],
            status="sent" if result.success else "failed",
            error=None if result.success else result.message[:1000],
            message_id=result.message_id,
        )
        db.session.add(entry)
        db.session.commit()
        return result


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
