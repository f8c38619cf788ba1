"""
Tag store: tag definitions and the member-tag lifecycle.

An assignment is "current" when ``is_active`` is set and it has not passed
``expires_at``. Reads never write: an expired row simply reads as inactive
until the next assignment for the same (member, tag) deactivates it.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from app.fellowship.audit import record_event
from app.fellowship.constants import (
    DEFAULT_TAG_COLOR,
    SYSTEM_TAG_DEFAULTS,
    TAG_PENDING_FIRST_ATTENDANCE,
    TAG_TYPE_CUSTOM,
    TAG_TYPE_SYSTEM,
)
from app.fellowship.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError, issue
from app.fellowship.models import Member
from app.fellowship.modules.tags.models import MemberTag, Tag
from app.fellowship.utils import iso, member_brief, parse_int_list

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
AUTO_EXPIRED_NOTE = "[Auto-expired]"


def _current_filter(now: datetime):
    return (
        MemberTag.is_active.is_(True),
        or_(MemberTag.expires_at.is_(None), MemberTag.expires_at > now),
    )


# ---------- Reads ----------

def has_active_tag(s: "Session", member_id: int, tag_name: str, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    row = (
        s.query(MemberTag.id)
        .join(Tag, MemberTag.tag_id == Tag.id)
        .filter(MemberTag.member_id == member_id, Tag.name == tag_name)
        .filter(*_current_filter(now))
        .first()
    )
    return row is not None


def get_active_tags(s: "Session", member_id: int, now: datetime | None = None) -> list[str]:
    now = now or datetime.utcnow()
    rows = (
        s.query(Tag.name)
        .join(MemberTag, MemberTag.tag_id == Tag.id)
        .filter(MemberTag.member_id == member_id)
        .filter(*_current_filter(now))
        .order_by(Tag.name.asc())
        .all()
    )
    return [r[0] for r in rows]


def find_active_assignment(s: "Session", member_id: int, tag_id: int) -> MemberTag | None:
    """Active row regardless of expiry (there is at most one)."""
    return (
        s.query(MemberTag)
        .filter(MemberTag.member_id == member_id, MemberTag.tag_id == tag_id, MemberTag.is_active.is_(True))
        .one_or_none()
    )


def get_tag(s: "Session", tag_id: int) -> Tag:
    tag = s.get(Tag, tag_id)
    if not tag:
        raise NotFoundError("Tag not found")
    return tag


def get_or_create_system_tag(
    s: "Session",
    name: str,
    *,
    description: str | None = None,
    color: str | None = None,
    created_by: Member | None = None,
) -> Tag:
    tag = s.query(Tag).filter(Tag.name == name).one_or_none()
    if tag:
        return tag
    default_desc, default_color = SYSTEM_TAG_DEFAULTS.get(name, (None, DEFAULT_TAG_COLOR))
    tag = Tag(
        name=name,
        description=description or default_desc,
        type=TAG_TYPE_SYSTEM,
        color=color or default_color,
        is_system=True,
        created_by_member_id=created_by.id if created_by else None,
    )
    s.add(tag)
    s.flush()
    logger.info("Created system tag %s (id=%s)", name, tag.id)
    return tag


# ---------- Assignment lifecycle ----------

def _deactivate(row: MemberTag, *, removed_by_id: int | None, now: datetime, note: str | None) -> None:
    row.is_active = False
    row.removed_at = now
    row.removed_by_member_id = removed_by_id
    if note:
        row.notes = f"{row.notes} {note}".strip() if row.notes else note


def assign_tag(
    s: "Session",
    *,
    member: Member,
    tag: Tag,
    assigned_by: Member | None,
    notes: str | None = None,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> MemberTag:
    """
    Create a fresh active assignment. Flushes but does not commit; the caller
    owns the transaction.
    """
    now = now or datetime.utcnow()
    existing = find_active_assignment(s, member.id, tag.id)
    if existing is not None:
        if existing.is_current(now):
            raise ConflictError("Member already has this tag")
        # Stale active row: correct it before inserting the replacement.
        _deactivate(existing, removed_by_id=None, now=now, note=AUTO_EXPIRED_NOTE)
        s.flush()

    mt = MemberTag(
        member_id=member.id,
        tag_id=tag.id,
        is_active=True,
        expires_at=expires_at,
        notes=notes,
        assigned_by_member_id=assigned_by.id if assigned_by else None,
        assigned_at=now,
    )
    s.add(mt)
    try:
        s.flush()
    except IntegrityError:
        s.rollback()
        raise ConflictError("Member already has this tag")

    record_event(
        s,
        actor=assigned_by,
        action="tag.assign",
        entity_type="MemberTag",
        entity_id=str(mt.id),
        metadata={"member_id": member.id, "tag": tag.name, "expires_at": iso(expires_at)},
    )
    return mt


def remove_tag(
    s: "Session",
    *,
    member_id: int,
    tag_id: int,
    removed_by: Member | None,
    notes: str | None = None,
    now: datetime | None = None,
) -> MemberTag:
    now = now or datetime.utcnow()
    row = find_active_assignment(s, member_id, tag_id)
    if row is None:
        raise NotFoundError("Tag assignment not found")
    _deactivate(row, removed_by_id=removed_by.id if removed_by else None, now=now, note=None)
    if notes:
        row.notes = notes
    record_event(
        s,
        actor=removed_by,
        action="tag.remove",
        entity_type="MemberTag",
        entity_id=str(row.id),
        metadata={"member_id": member_id, "tag_id": tag_id},
    )
    return row


def remove_first_attendance_tag(s: "Session", member: Member, now: datetime | None = None) -> bool:
    """
    Drop PENDING_FIRST_ATTENDANCE once the member has attended. The member is
    recorded as the remover. Runs inside the caller's transaction.
    """
    now = now or datetime.utcnow()
    row = (
        s.query(MemberTag)
        .join(Tag, MemberTag.tag_id == Tag.id)
        .filter(MemberTag.member_id == member.id, Tag.name == TAG_PENDING_FIRST_ATTENDANCE)
        .filter(*_current_filter(now))
        .one_or_none()
    )
    if row is None:
        return False
    _deactivate(row, removed_by_id=member.id, now=now, note=None)
    record_event(
        s,
        actor=member,
        action="tag.first_attendance_removed",
        entity_type="MemberTag",
        entity_id=str(row.id),
        metadata={"member_id": member.id},
    )
    logger.info("Removed %s from member %s", TAG_PENDING_FIRST_ATTENDANCE, member.id)
    return True


# ---------- Tag definitions ----------

def validate_tag_payload(payload: dict) -> list[dict]:
    errors = []
    name = payload.get("name")
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        errors.append(issue("name", "Name is required"))
    elif len(name) > 50:
        errors.append(issue("name", "Name must be at most 50 characters"))
    description = payload.get("description")
    if description is not None and (not isinstance(description, str) or len(description) > 200):
        errors.append(issue("description", "Description must be at most 200 characters"))
    color = payload.get("color")
    if color is not None and (not isinstance(color, str) or not _COLOR_RE.match(color)):
        errors.append(issue("color", "Invalid color format"))
    return errors


def list_tags(s: "Session", now: datetime | None = None) -> list[dict]:
    now = now or datetime.utcnow()
    counts = dict(
        s.query(MemberTag.tag_id, func.count(MemberTag.id))
        .filter(*_current_filter(now))
        .group_by(MemberTag.tag_id)
        .all()
    )
    tags = s.query(Tag).order_by(Tag.is_system.desc(), Tag.created_at.asc(), Tag.id.asc()).all()
    return [serialize_tag(t, member_count=counts.get(t.id, 0)) for t in tags]


def create_tag(s: "Session", payload: dict, member: Member) -> Tag:
    errors = validate_tag_payload(payload)
    if errors:
        raise ValidationError.from_issues(errors, "Invalid input")
    name = payload["name"].strip()
    if s.query(Tag.id).filter(Tag.name == name).first():
        raise ConflictError("Tag with this name already exists")

    tag = Tag(
        name=name,
        description=(payload.get("description") or "").strip() or None,
        type=TAG_TYPE_CUSTOM,
        color=payload.get("color") or DEFAULT_TAG_COLOR,
        is_system=False,
        created_by_member_id=member.id,
    )
    s.add(tag)
    s.flush()
    record_event(s, actor=member, action="tag.create", entity_type="Tag", entity_id=str(tag.id), metadata={"name": name})
    return tag


def delete_tag(s: "Session", tag_id: int, member: Member) -> None:
    tag = get_tag(s, tag_id)
    if tag.is_system:
        raise AuthorizationError("Cannot delete system tags")
    used = s.query(func.count(MemberTag.id)).filter(MemberTag.tag_id == tag.id).scalar() or 0
    if used:
        raise ConflictError("Tag has assignment history and cannot be deleted")
    record_event(s, actor=member, action="tag.delete", entity_type="Tag", entity_id=str(tag.id), metadata={"name": tag.name})
    s.delete(tag)


def set_registration_visibility(s: "Session", tag_id: int, show, member: Member) -> Tag:
    if not isinstance(show, bool):
        raise ValidationError("showOnRegistration must be a boolean")
    tag = get_tag(s, tag_id)
    tag.show_on_registration = show
    record_event(
        s,
        actor=member,
        action="tag.registration_visibility",
        entity_type="Tag",
        entity_id=str(tag.id),
        metadata={"show_on_registration": show},
    )
    return tag


def members_with_tag(s: "Session", tag_id: int, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    tag = get_tag(s, tag_id)
    rows = (
        s.query(MemberTag)
        .join(Member, MemberTag.member_id == Member.id)
        .filter(MemberTag.tag_id == tag.id, Member.is_deleted.is_(False))
        .filter(*_current_filter(now))
        .order_by(MemberTag.assigned_at.asc())
        .all()
    )
    members = []
    for mt in rows:
        d = member_brief(mt.member)
        d.update(
            {
                "region": mt.member.region.name if mt.member.region else None,
                "assignedAt": iso(mt.assigned_at),
                "expiresAt": iso(mt.expires_at),
                "notes": mt.notes,
            }
        )
        members.append(d)
    return {"tag": serialize_tag(tag), "members": members}


# ---------- Bulk ----------

def _parse_bulk_payload(payload: dict) -> tuple[list[int], int, str | None]:
    member_ids, errors = parse_int_list(payload.get("memberIds"), "memberIds")
    tag_id = payload.get("tagId")
    if not isinstance(tag_id, int) or isinstance(tag_id, bool):
        errors.append(issue("tagId", "tagId is required"))
    notes = payload.get("notes")
    if notes is not None and (not isinstance(notes, str) or len(notes) > 500):
        errors.append(issue("notes", "Notes must be at most 500 characters"))
    if errors:
        raise ValidationError.from_issues(errors, "Invalid input")
    # Preserve order, drop repeats
    return list(dict.fromkeys(member_ids)), tag_id, notes


def bulk_assign(s: "Session", payload: dict, actor: Member, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    member_ids, tag_id, notes = _parse_bulk_payload(payload)
    tag = get_tag(s, tag_id)

    members = s.query(Member).filter(Member.id.in_(member_ids), Member.is_deleted.is_(False)).all()
    found = {m.id for m in members}
    missing = [mid for mid in member_ids if mid not in found]
    if missing:
        raise NotFoundError("Member not found", details=[issue("memberIds", f"Unknown member id {mid}") for mid in missing])

    holders = {
        mt.member_id
        for mt in s.query(MemberTag).filter(MemberTag.tag_id == tag.id, MemberTag.member_id.in_(member_ids), *_current_filter(now))
    }
    targets = [m for m in members if m.id not in holders]
    if not targets:
        raise ValidationError("All selected members already have this tag")

    for m in targets:
        assign_tag(s, member=m, tag=tag, assigned_by=actor, notes=notes, now=now)
    return {"message": f"Tag assigned to {len(targets)} member(s)", "count": len(targets), "skipped": len(holders)}


def bulk_remove(s: "Session", payload: dict, actor: Member, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    member_ids, tag_id, notes = _parse_bulk_payload(payload)
    tag = get_tag(s, tag_id)
    rows = (
        s.query(MemberTag)
        .filter(MemberTag.tag_id == tag.id, MemberTag.member_id.in_(member_ids), MemberTag.is_active.is_(True))
        .all()
    )
    for row in rows:
        _deactivate(row, removed_by_id=actor.id, now=now, note=None)
        if notes:
            row.notes = notes
    record_event(
        s,
        actor=actor,
        action="tag.bulk_remove",
        entity_type="Tag",
        entity_id=str(tag.id),
        metadata={"member_ids": [r.member_id for r in rows]},
    )
    return {"message": f"Tag removed from {len(rows)} member(s)", "count": len(rows)}


def member_tag_history(s: "Session", member_id: int) -> list[dict]:
    if not s.get(Member, member_id):
        raise NotFoundError("Member not found")
    rows = (
        s.query(MemberTag)
        .filter(MemberTag.member_id == member_id)
        .order_by(MemberTag.assigned_at.desc(), MemberTag.id.desc())
        .all()
    )
    now = datetime.utcnow()
    return [
        {
            "id": mt.id,
            "tag": serialize_tag(mt.tag),
            "isActive": mt.is_current(now),
            "assignedAt": iso(mt.assigned_at),
            "assignedBy": member_brief(mt.assigned_by),
            "removedAt": iso(mt.removed_at),
            "removedBy": member_brief(mt.removed_by),
            "expiresAt": iso(mt.expires_at),
            "notes": mt.notes,
        }
        for mt in rows
    ]


def serialize_tag(tag: Tag, member_count: int | None = None) -> dict:
    d = {
        "id": tag.id,
        "name": tag.name,
        "description": tag.description,
        "type": tag.type,
        "color": tag.color,
        "isSystem": tag.is_system,
        "showOnRegistration": tag.show_on_registration,
        "createdAt": iso(tag.created_at),
    }
    if member_count is not None:
        d["memberCount"] = member_count
    return d
