from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from app.fellowship.audit import record_event
from app.fellowship.constants import ROLE_MEMBER, TAG_PENDING_FIRST_ATTENDANCE
from app.fellowship.db import atomic
from app.fellowship.errors import ConflictError, NotFoundError, ValidationError, issue
from app.fellowship.models import Course, Member, Region, Residence
from app.fellowship.modules.tags.service import assign_tag, get_or_create_system_tag
from app.fellowship.notifications import Notifier, get_notifier, welcome_message
from app.fellowship.utils import format_region_name, is_valid_email, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^([A-Z]{3})(\d{3})$")
FIRST_FELLOWSHIP_NUMBER = "AAA001"


# ---------- Fellowship numbers ----------

def next_fellowship_number(last: str | None) -> str:
    """AAA001 .. AAA999, then AAB001; letters carry right to left."""
    m = _NUMBER_RE.match(last or "")
    if not m:
        return FIRST_FELLOWSHIP_NUMBER
    letters, digits = list(m.group(1)), int(m.group(2))
    if digits < 999:
        return f"{m.group(1)}{digits + 1:03d}"
    for i in range(2, -1, -1):
        if letters[i] == "Z":
            letters[i] = "A"
            continue
        letters[i] = chr(ord(letters[i]) + 1)
        break
    return f"{''.join(letters)}001"


def generate_fellowship_number(s: "Session") -> str:
    # Highest number in the standard format; hand-assigned numbers are skipped.
    for (number,) in s.query(Member.fellowship_number).order_by(Member.fellowship_number.desc()).all():
        if _NUMBER_RE.match(number):
            return next_fellowship_number(number)
    return FIRST_FELLOWSHIP_NUMBER


# ---------- Registration ----------

def validate_registration_payload(s: "Session", payload: dict) -> tuple[dict, list[dict]]:
    errors = []
    fields: dict = {}

    def text(key: str, attr: str, lo: int, hi: int, required: bool = True) -> None:
        v = payload.get(key)
        if v is None and not required:
            return
        if not isinstance(v, str) or not (lo <= len(v.strip()) <= hi):
            errors.append(issue(key, f"Must be between {lo} and {hi} characters"))
        else:
            fields[attr] = v.strip() or None

    def number(key: str, attr: str, lo: int, hi: int) -> None:
        v = payload.get(key)
        if v is None:
            return
        if not isinstance(v, int) or isinstance(v, bool) or not (lo <= v <= hi):
            errors.append(issue(key, f"Must be a whole number between {lo} and {hi}"))
        else:
            fields[attr] = v

    def reference(key: str, attr: str, model, label: str, required: bool = False) -> None:
        v = payload.get(key)
        if v is None and not required:
            return
        if not isinstance(v, int) or isinstance(v, bool):
            errors.append(issue(key, f"Invalid {label} id"))
        elif s.get(model, v) is None:
            errors.append(issue(key, f"{label} not found"))
        else:
            fields[attr] = v

    text("fullName", "full_name", 2, 100)
    text("phoneNumber", "phone_number", 5, 20)
    text("hostelName", "hostel_name", 0, 100, required=False)
    email = payload.get("email")
    if not is_valid_email(email):
        errors.append(issue("email", "Invalid email address"))
    else:
        fields["email"] = email.strip()
    number("initialYearOfStudy", "initial_year_of_study", 1, 10)
    number("initialSemester", "initial_semester", 1, 2)
    reference("regionId", "region_id", Region, "Region", required=True)
    reference("courseId", "course_id", Course, "Course")
    reference("residenceId", "residence_id", Residence, "Residence")
    return fields, errors


def register_member(
    s: "Session", payload: dict, actor: Member, notifier: Notifier | None = None, now: datetime | None = None
) -> Member:
    """
    Create a member with a fresh fellowship number and QR token. The member
    row and its PENDING_FIRST_ATTENDANCE tag commit together; the initial
    password is the fellowship number.
    """
    fields, errors = validate_registration_payload(s, payload)
    if errors:
        raise ValidationError.from_issues(errors)
    taken = (
        s.query(Member.id)
        .filter(func.lower(Member.email) == fields["email"].lower(), Member.is_deleted.is_(False))
        .first()
    )
    if taken:
        raise ConflictError("An account with this email is already registered")

    now = now or datetime.utcnow()
    number = generate_fellowship_number(s)
    try:
        with atomic(s):
            member = Member(
                fellowship_number=number,
                qr_code=uuid.uuid4().hex,
                role=ROLE_MEMBER,
                password_hash=generate_password_hash(number),
                created_at=now,
                updated_at=now,
                **fields,
            )
            s.add(member)
            s.flush()
            tag = get_or_create_system_tag(s, TAG_PENDING_FIRST_ATTENDANCE)
            assign_tag(s, member=member, tag=tag, assigned_by=member, now=now)
            record_event(
                s,
                actor=actor,
                action="member.register",
                entity_type="Member",
                entity_id=str(member.id),
                metadata={"fellowship_number": number, "region_id": member.region_id},
            )
    except IntegrityError:
        logger.info("Fellowship number %s was taken concurrently", number)
        raise ConflictError("Fellowship number already allocated, please retry")

    logger.info("Registered member %s (id=%s)", number, member.id)
    subject, body = welcome_message(member.full_name, number)
    (notifier or get_notifier()).notify(email=member.email, subject=subject, body=body, kind="member.welcome")
    return member


# ---------- Soft delete ----------

def soft_delete_member(s: "Session", member_id: int, actor: Member, now: datetime | None = None) -> Member:
    member = s.get(Member, member_id)
    if member is None or member.is_deleted:
        raise NotFoundError("Member not found")
    if member.id == actor.id:
        raise ValidationError("You cannot delete your own account")
    region = s.query(Region).filter(Region.regional_head_id == member.id).one_or_none()
    if region is not None:
        raise ConflictError(
            f"Member is the regional head of {format_region_name(region.name)}; remove them as regional head first"
        )

    now = now or datetime.utcnow()
    with atomic(s):
        member.is_deleted = True
        member.deleted_at = now
        member.updated_at = now
        record_event(
            s,
            actor=actor,
            action="member.soft_delete",
            entity_type="Member",
            entity_id=str(member.id),
            metadata={"fellowship_number": member.fellowship_number},
        )
    return member


def serialize_member(m: Member) -> dict:
    return {
        "id": m.id,
        "fellowshipNumber": m.fellowship_number,
        "fullName": m.full_name,
        "email": m.email,
        "phoneNumber": m.phone_number,
        "role": m.role,
        "qrCode": m.qr_code,
        "regionId": m.region_id,
        "isDeleted": m.is_deleted,
        "deletedAt": iso(m.deleted_at),
        "createdAt": iso(m.created_at),
    }
