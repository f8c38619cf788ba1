from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy import func
from werkzeug.security import check_password_hash

from app.fellowship.audit import record_event
from app.fellowship.db import db_session
from app.fellowship.errors import AuthenticationError, ServiceError, ValidationError, issue
from app.fellowship.models import Member

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


class TooManyAttemptsError(ServiceError):
    status_code = 429


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user (a Member) from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    member_id = session.get("member_id")
    if not member_id:
        g.current_user = None
        return

    try:
        s = db_session()
        member = s.get(Member, int(member_id))
        if not member or member.is_deleted:
            session.pop("member_id", None)
            g.current_user = None
            return
        g.current_user = member
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("member_id", None)
        g.current_user = None


@bp.post("/login")
def login_post():
    payload = request.get_json(silent=True) or {}
    fellowship_number = payload.get("fellowshipNumber")
    fellowship_number = fellowship_number.strip().upper() if isinstance(fellowship_number, str) else ""
    email = payload.get("email")
    email = email.strip().lower() if isinstance(email, str) else ""
    password = payload.get("password")
    password = password if isinstance(password, str) else ""
    ip = request.remote_addr or "unknown"

    if not (fellowship_number or email) or not password:
        raise ValidationError.from_issues(
            [issue("fellowshipNumber", "fellowshipNumber or email, and password, are required")]
        )

    if _check_rate_limit(ip):
        raise TooManyAttemptsError("Too many login attempts. Please wait 5 minutes.")

    _record_attempt(ip)

    s = db_session()
    q = s.query(Member).filter(Member.is_deleted.is_(False))
    if fellowship_number:
        q = q.filter(Member.fellowship_number == fellowship_number)
    else:
        q = q.filter(func.lower(Member.email) == email)
    member = q.first()
    login_id = fellowship_number or email
    if not member or not member.password_hash or not check_password_hash(member.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="Member",
            entity_id=login_id,
            reason="Invalid credentials",
        )
        s.commit()
        raise AuthenticationError("Invalid credentials")

    session.clear()
    session["member_id"] = member.id
    session.permanent = True
    _login_attempts[ip].clear()
    record_event(s, actor=member, action="auth.login", entity_type="Member", entity_id=str(member.id))
    s.commit()
    return jsonify(
        {
            "id": member.id,
            "fellowshipNumber": member.fellowship_number,
            "fullName": member.full_name,
            "role": member.role,
        }
    )


@bp.post("/logout")
def logout():
    s = db_session()
    member = getattr(g, "current_user", None)
    if member:
        record_event(s, actor=member, action="auth.logout", entity_type="Member", entity_id=str(member.id))
        s.commit()
    session.pop("member_id", None)
    return jsonify({"ok": True})
