"""
Outbound member notifications.

Workflows call ``Notifier.notify`` after their transaction commits. The
notifier only appends a row to ``notification_outbox`` on its own session;
delivery happens out of band (scripts/send_notifications.py). Any failure to
enqueue is logged and swallowed: a lost email never fails a request.
"""
from __future__ import annotations

import logging
import smtplib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage

from flask import Flask, current_app
from sqlalchemy.orm import Session

from app.fellowship.models import NotificationOutbox

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 3


class Notifier:
    def __init__(self, session_factory: Callable[[], Session], *, enabled: bool = True) -> None:
        self._session_factory = session_factory
        self.enabled = enabled

    def notify(self, *, email: str | None, subject: str, body: str, kind: str) -> NotificationOutbox | None:
        if not self.enabled:
            logger.debug("Notifications disabled; dropping %s for %s", kind, email)
            return None
        if not email:
            logger.warning("No recipient for %s notification; skipped", kind)
            return None
        try:
            s = self._session_factory()
            try:
                row = NotificationOutbox(email=email, subject=subject, body_text=body, kind=kind)
                s.add(row)
                s.commit()
                return row
            finally:
                s.close()
        except Exception:
            logger.exception("Failed to enqueue %s notification for %s", kind, email)
            return None


def init_notifier(app: Flask) -> Notifier:
    notifier = Notifier(
        app.extensions["sqlalchemy_sessionmaker"],
        enabled=bool(app.config.get("NOTIFICATIONS_ENABLED", True)),
    )
    app.extensions["notifier"] = notifier
    return notifier


def get_notifier() -> Notifier:
    return current_app.extensions["notifier"]


# ---------- Message bodies ----------

def _format_changes(changes: list[dict]) -> str:
    lines = []
    for c in changes:
        old = c.get("oldValue") or "(empty)"
        lines.append(f"  - {c.get('field')}: {old} -> {c.get('newValue')}")
    return "\n".join(lines)


def edit_request_submitted_message(
    head_name: str,
    member_name: str,
    fellowship_number: str,
    changes: list[dict],
    reason: str,
) -> tuple[str, str]:
    subject = f"Profile edit request from {member_name}"
    body = (
        f"Hello {head_name},\n\n"
        f"{member_name} ({fellowship_number}) has requested changes to their profile:\n\n"
        f"{_format_changes(changes)}\n\n"
        f"Reason: {reason}\n\n"
        "Please review the request from the edit requests page.\n"
    )
    return subject, body


def edit_request_decision_message(
    member_name: str,
    status: str,
    changes: list[dict],
    review_note: str | None,
) -> tuple[str, str]:
    verdict = "approved" if status == "APPROVED" else "rejected"
    subject = f"Your profile edit request was {verdict}"
    body = f"Hello {member_name},\n\nYour request to change the following was {verdict}:\n\n{_format_changes(changes)}\n"
    if review_note:
        body += f"\nReviewer note: {review_note}\n"
    return subject, body


def welcome_message(member_name: str, fellowship_number: str) -> tuple[str, str]:
    subject = "Welcome to the fellowship"
    body = (
        f"Hello {member_name},\n\n"
        f"You have been registered. Your fellowship number is {fellowship_number}.\n\n"
        "Sign in with your fellowship number as both username and password, then keep "
        "your QR code from your profile page handy for event check-in.\n"
    )
    return subject, body


# ---------- Delivery ----------

@dataclass(frozen=True)
class SmtpSender:
    host: str
    port: int
    username: str
    password: str
    from_addr: str

    def send(self, to_addr: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.from_addr
        msg["To"] = to_addr
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)


def sender_from_config(config: dict) -> SmtpSender:
    host = (config.get("SMTP_HOST") or "").strip()
    if not host:
        raise RuntimeError("SMTP_HOST is required to deliver notifications.")
    return SmtpSender(
        host=host,
        port=int(config.get("SMTP_PORT") or 587),
        username=(config.get("SMTP_USERNAME") or "").strip(),
        password=config.get("SMTP_PASSWORD") or "",
        from_addr=(config.get("SMTP_FROM") or "").strip(),
    )


def deliver_pending(s: Session, sender, *, batch_size: int = 50) -> dict[str, int]:
    """
    Send queued notifications. Each row gets up to MAX_DELIVERY_ATTEMPTS
    tries across runs; after that it is parked as FAILED.
    """
    rows = (
        s.query(NotificationOutbox)
        .filter(NotificationOutbox.status == "PENDING")
        .order_by(NotificationOutbox.created_at.asc(), NotificationOutbox.id.asc())
        .limit(batch_size)
        .all()
    )
    sent = failed = 0
    for row in rows:
        row.status = "PROCESSING"
        row.attempts += 1
        row.last_attempt_at = datetime.utcnow()
        s.commit()
        try:
            sender.send(row.email, row.subject, row.body_text)
        except Exception as e:
            logger.error("Notification %s delivery failed (attempt %s): %s", row.id, row.attempts, e)
            row.error = str(e)[:2000]
            row.status = "FAILED" if row.attempts >= MAX_DELIVERY_ATTEMPTS else "PENDING"
            failed += 1
        else:
            row.status = "COMPLETED"
            row.error = None
            sent += 1
        row.updated_at = datetime.utcnow()
        s.commit()
    return {"sent": sent, "failed": failed, "processed": len(rows)}
