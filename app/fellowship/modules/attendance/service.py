from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.fellowship.audit import record_event
from app.fellowship.constants import CIVIL_UTC_OFFSET, TAG_CHECK_IN_VOLUNTEER
from app.fellowship.db import atomic
from app.fellowship.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError, issue
from app.fellowship.models import Member
from app.fellowship.modules.attendance.models import (
    CHECKIN_METHODS,
    EVENT_TYPES,
    Attendance,
    Event,
    EventVolunteer,
    GuestAttendance,
)
from app.fellowship.modules.tags.models import Tag
from app.fellowship.modules.tags.service import (
    assign_tag,
    find_active_assignment,
    get_or_create_system_tag,
    has_active_tag,
    remove_first_attendance_tag,
    remove_tag,
)
from app.fellowship.utils import civil_now, event_status, event_window, is_valid_hhmm, iso, member_brief, parse_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# ---------- Events ----------

def validate_event_payload(payload: dict) -> list[dict]:
    errors = []
    name = payload.get("name")
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        errors.append(issue("name", "Name is required"))
    elif len(name) > 100:
        errors.append(issue("name", "Name must be at most 100 characters"))
    if payload.get("type") not in EVENT_TYPES:
        errors.append(issue("type", f"Must be one of: {', '.join(EVENT_TYPES)}"))
    try:
        if not parse_date(payload.get("date")):
            errors.append(issue("date", "Date is required"))
    except (AttributeError, TypeError, ValueError):
        errors.append(issue("date", "Invalid date (YYYY-MM-DD)"))
    start, end = payload.get("startTime"), payload.get("endTime")
    if not is_valid_hhmm(start):
        errors.append(issue("startTime", "Invalid time format (HH:MM)"))
    if not is_valid_hhmm(end):
        errors.append(issue("endTime", "Invalid time format (HH:MM)"))
    if is_valid_hhmm(start) and is_valid_hhmm(end) and end.strip() <= start.strip():
        errors.append(issue("endTime", "End time must be after start time"))
    venue = payload.get("venue")
    if venue is not None and (not isinstance(venue, str) or len(venue) > 200):
        errors.append(issue("venue", "Venue must be at most 200 characters"))
    allow = payload.get("allowGuestCheckin")
    if allow is not None and not isinstance(allow, bool):
        errors.append(issue("allowGuestCheckin", "Must be a boolean"))
    return errors


def create_event(s: "Session", payload: dict, actor: Member) -> Event:
    """New events start inactive; check-in opens when a manager activates them."""
    errors = validate_event_payload(payload)
    if errors:
        raise ValidationError.from_issues(errors)
    now = datetime.utcnow()
    event = Event(
        name=payload["name"].strip(),
        type=payload["type"],
        event_date=parse_date(payload["date"]),
        start_time=payload["startTime"].strip(),
        end_time=payload["endTime"].strip(),
        venue=(payload.get("venue") or "").strip() or None,
        is_active=False,
        allow_guest_checkin=bool(payload.get("allowGuestCheckin", False)),
        created_at=now,
        updated_at=now,
    )
    s.add(event)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="event.create",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"name": event.name, "date": event.event_date.isoformat()},
    )
    return event


def get_event(s: "Session", event_id: int) -> Event:
    event = s.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    return event


def _attendance_counts(s: "Session") -> tuple[dict[int, int], dict[int, int]]:
    members = dict(s.query(Attendance.event_id, func.count(Attendance.id)).group_by(Attendance.event_id).all())
    guests = dict(
        s.query(GuestAttendance.event_id, func.count(GuestAttendance.id)).group_by(GuestAttendance.event_id).all()
    )
    return members, guests


def list_events(s: "Session", now: datetime | None = None) -> list[dict]:
    members, guests = _attendance_counts(s)
    events = s.query(Event).order_by(Event.event_date.desc(), Event.start_time.desc()).all()
    return [
        serialize_event(e, now=now, attendance_count=members.get(e.id, 0), guest_count=guests.get(e.id, 0))
        for e in events
    ]


def active_events(s: "Session", now: datetime | None = None) -> list[dict]:
    events = s.query(Event).filter(Event.is_active.is_(True)).order_by(Event.event_date.asc(), Event.start_time.asc()).all()
    return [serialize_event(e, now=now) for e in events]


def toggle_event_active(s: "Session", event_id: int, actor: Member) -> Event:
    event = get_event(s, event_id)
    event.is_active = not event.is_active
    event.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="event.toggle_active",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"is_active": event.is_active},
    )
    return event


def toggle_guest_checkin(s: "Session", event_id: int, actor: Member) -> Event:
    event = get_event(s, event_id)
    event.allow_guest_checkin = not event.allow_guest_checkin
    event.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="event.toggle_guest_checkin",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"allow_guest_checkin": event.allow_guest_checkin},
    )
    return event


def event_attendance(s: "Session", event_id: int, now: datetime | None = None) -> dict:
    event = get_event(s, event_id)
    rows = (
        s.query(Attendance)
        .filter(Attendance.event_id == event.id)
        .order_by(Attendance.check_in_time.asc(), Attendance.id.asc())
        .all()
    )
    guests = (
        s.query(GuestAttendance)
        .filter(GuestAttendance.event_id == event.id)
        .order_by(GuestAttendance.check_in_time.asc(), GuestAttendance.id.asc())
        .all()
    )
    return {
        "event": serialize_event(event, now=now, attendance_count=len(rows), guest_count=len(guests)),
        "attendances": [serialize_attendance(a) for a in rows],
        "guests": [serialize_guest(g) for g in guests],
    }


# ---------- Volunteers ----------

def volunteer_tag_expiry(event: Event) -> datetime:
    """UTC instant the event ends; volunteer tags lapse then."""
    return event_window(event.event_date, event.start_time, event.end_time)[1] - CIVIL_UTC_OFFSET


def event_volunteers(s: "Session", event_id: int) -> list[dict]:
    event = get_event(s, event_id)
    rows = (
        s.query(EventVolunteer)
        .filter(EventVolunteer.event_id == event.id)
        .order_by(EventVolunteer.created_at.desc(), EventVolunteer.id.desc())
        .all()
    )
    return [serialize_volunteer(v) for v in rows]


def assign_volunteer(
    s: "Session", event_id: int, payload: dict, actor: Member, now: datetime | None = None
) -> tuple[EventVolunteer, bool]:
    """
    Register a member as check-in volunteer for an event and grant them a
    CHECK_IN_VOLUNTEER tag lasting until the event ends. Returns the row and
    whether it was created; repeating the call returns the existing row.
    """
    member_id = payload.get("memberId")
    if not isinstance(member_id, int) or isinstance(member_id, bool):
        raise ValidationError.from_issues([issue("memberId", "memberId is required")])
    event = get_event(s, event_id)
    member = s.get(Member, member_id)
    if not member or member.is_deleted:
        raise NotFoundError("Member not found")

    existing = (
        s.query(EventVolunteer)
        .filter(EventVolunteer.event_id == event.id, EventVolunteer.member_id == member.id)
        .one_or_none()
    )
    if existing is not None:
        return existing, False

    now = now or datetime.utcnow()
    expires_at = volunteer_tag_expiry(event)
    try:
        with atomic(s):
            volunteer = EventVolunteer(event_id=event.id, member_id=member.id, created_at=now)
            s.add(volunteer)
            s.flush()
            tag = get_or_create_system_tag(s, TAG_CHECK_IN_VOLUNTEER)
            current = find_active_assignment(s, member.id, tag.id)
            if current is None or not current.is_current(now):
                assign_tag(
                    s,
                    member=member,
                    tag=tag,
                    assigned_by=actor,
                    notes=f"Auto-assigned for event: {event.name}",
                    expires_at=expires_at,
                    now=now,
                )
            elif current.expires_at is not None and current.expires_at < expires_at:
                # Still held for an earlier event; stretch it to cover this one.
                current.expires_at = expires_at
            record_event(
                s,
                actor=actor,
                action="attendance.volunteer_assign",
                entity_type="EventVolunteer",
                entity_id=str(volunteer.id),
                metadata={"event_id": event.id, "member_id": member.id, "expires_at": iso(expires_at)},
            )
    except IntegrityError:
        raise ConflictError("Member is already a volunteer for this event")
    return volunteer, True


def remove_volunteer(
    s: "Session", event_id: int, member_id: int, actor: Member, now: datetime | None = None
) -> None:
    """
    Drop the volunteer row. The CHECK_IN_VOLUNTEER tag goes too unless the
    member still volunteers for another event that has not ended.
    """
    row = (
        s.query(EventVolunteer)
        .filter(EventVolunteer.event_id == event_id, EventVolunteer.member_id == member_id)
        .one_or_none()
    )
    if row is None:
        raise NotFoundError("Volunteer assignment not found")
    now = now or datetime.utcnow()

    others = (
        s.query(Event)
        .join(EventVolunteer, EventVolunteer.event_id == Event.id)
        .filter(EventVolunteer.member_id == member_id, EventVolunteer.id != row.id)
        .all()
    )
    keep_tag = any(volunteer_tag_expiry(e) > now for e in others)
    volunteer_id = row.id

    with atomic(s):
        s.delete(row)
        tag = s.query(Tag).filter(Tag.name == TAG_CHECK_IN_VOLUNTEER).one_or_none()
        tag_removed = False
        if tag is not None and not keep_tag and find_active_assignment(s, member_id, tag.id) is not None:
            remove_tag(
                s,
                member_id=member_id,
                tag_id=tag.id,
                removed_by=actor,
                notes="Removed from volunteer duty for event",
                now=now,
            )
            tag_removed = True
        record_event(
            s,
            actor=actor,
            action="attendance.volunteer_remove",
            entity_type="EventVolunteer",
            entity_id=str(volunteer_id),
            metadata={"event_id": event_id, "member_id": member_id, "tag_removed": tag_removed},
        )


# ---------- Check-in ----------

def can_operate_check_in(
    s: "Session", operator: Member, member: Member | None, event: Event, now: datetime | None = None
) -> bool:
    """
    Managers always; members for themselves; otherwise a registered volunteer
    of the event holding a current CHECK_IN_VOLUNTEER tag.
    """
    if operator.is_manager:
        return True
    if member is not None and member.id == operator.id:
        return True
    volunteer = (
        s.query(EventVolunteer.id)
        .filter(EventVolunteer.event_id == event.id, EventVolunteer.member_id == operator.id)
        .first()
    )
    if volunteer is None:
        return False
    return has_active_tag(s, operator.id, TAG_CHECK_IN_VOLUNTEER, now=now)


def _ensure_within_window(event: Event, now: datetime) -> None:
    local = civil_now(now).replace(second=0, microsecond=0)
    if local.date() != event.event_date:
        raise AuthorizationError("Check-in is only allowed on the event date")
    start, end = event_window(event.event_date, event.start_time, event.end_time)
    if local < start or local > end:
        raise AuthorizationError(f"Check-in is only allowed between {event.start_time} and {event.end_time}")


def _validate_check_in_payload(payload: dict) -> list[dict]:
    errors = []
    qr = (payload.get("qrCode") or "").strip() if isinstance(payload.get("qrCode"), str) else ""
    number = (payload.get("fellowshipNumber") or "").strip() if isinstance(payload.get("fellowshipNumber"), str) else ""
    if bool(qr) == bool(number):
        errors.append(issue("qrCode", "Provide exactly one of qrCode or fellowshipNumber"))
    event_id = payload.get("eventId")
    if not isinstance(event_id, int) or isinstance(event_id, bool):
        errors.append(issue("eventId", "eventId is required"))
    if payload.get("method") not in CHECKIN_METHODS:
        errors.append(issue("method", f"Must be one of: {', '.join(CHECKIN_METHODS)}"))
    return errors


def check_in(s: "Session", payload: dict, operator: Member, now: datetime | None = None) -> Attendance:
    """
    Record one member's attendance. Checks run in a fixed order (member,
    event, active flag, time window, duplicate) and nothing is written until
    all of them pass. The attendance row and the first-attendance tag
    removal commit together.
    """
    errors = _validate_check_in_payload(payload)
    if errors:
        raise ValidationError.from_issues(errors)
    now = now or datetime.utcnow()

    q = s.query(Member).filter(Member.is_deleted.is_(False))
    qr = payload.get("qrCode")
    if isinstance(qr, str) and qr.strip():
        q = q.filter(Member.qr_code == qr.strip())
    else:
        q = q.filter(Member.fellowship_number == payload["fellowshipNumber"].strip().upper())
    member = q.one_or_none()
    if member is None:
        raise NotFoundError("Member not found")

    event = get_event(s, payload["eventId"])
    if not can_operate_check_in(s, operator, member, event, now=now):
        raise AuthorizationError("Not authorized to perform check-in for this event")
    if not event.is_active:
        raise AuthorizationError("This event is not currently active for check-ins")
    _ensure_within_window(event, now)

    member_id, event_id = member.id, event.id
    already = (
        s.query(Attendance.id).filter(Attendance.member_id == member.id, Attendance.event_id == event.id).first()
    )
    if already:
        raise ConflictError("Member already checked in")

    try:
        with atomic(s):
            attendance = Attendance(
                member_id=member.id,
                event_id=event.id,
                method=payload["method"],
                check_in_time=now,
                recorded_by_member_id=operator.id,
            )
            s.add(attendance)
            s.flush()
            first_time = remove_first_attendance_tag(s, member, now=now)
            record_event(
                s,
                actor=operator,
                action="attendance.check_in",
                entity_type="Attendance",
                entity_id=str(attendance.id),
                metadata={
                    "member_id": member.id,
                    "event_id": event.id,
                    "method": attendance.method,
                    "first_attendance": first_time,
                },
            )
    except IntegrityError:
        logger.info("Concurrent duplicate check-in for member %s event %s", member_id, event_id)
        raise ConflictError("Member already checked in")
    return attendance


def guest_check_in(s: "Session", payload: dict, operator: Member | None, now: datetime | None = None) -> GuestAttendance:
    event_id = payload.get("eventId")
    if not isinstance(event_id, int) or isinstance(event_id, bool):
        raise ValidationError.from_issues([issue("eventId", "eventId is required")])
    event = get_event(s, event_id)
    if not event.allow_guest_checkin:
        raise AuthorizationError("Guest check-in is not enabled for this event")

    errors = []
    name = payload.get("guestName")
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        errors.append(issue("guestName", "Guest name is required"))
    elif len(name) > 100:
        errors.append(issue("guestName", "Guest name must be at most 100 characters"))
    phone = payload.get("guestPhone")
    if phone is not None and (not isinstance(phone, str) or len(phone.strip()) > 20):
        errors.append(issue("guestPhone", "Phone must be at most 20 characters"))
    purpose = payload.get("purpose")
    if purpose is not None and (not isinstance(purpose, str) or len(purpose.strip()) > 200):
        errors.append(issue("purpose", "Purpose must be at most 200 characters"))
    if errors:
        raise ValidationError.from_issues(errors)

    guest = GuestAttendance(
        event_id=event.id,
        guest_name=name,
        guest_phone=(phone or "").strip() or None,
        purpose=(purpose or "").strip() or None,
        check_in_time=now or datetime.utcnow(),
        recorded_by_member_id=operator.id if operator else None,
    )
    s.add(guest)
    s.flush()
    record_event(
        s,
        actor=operator,
        action="attendance.guest_check_in",
        entity_type="GuestAttendance",
        entity_id=str(guest.id),
        metadata={"event_id": event.id, "guest_name": name},
    )
    return guest


# ---------- Serialization ----------

def serialize_event(
    e: Event, *, now: datetime | None = None, attendance_count: int | None = None, guest_count: int | None = None
) -> dict:
    d = {
        "id": e.id,
        "name": e.name,
        "type": e.type,
        "date": e.event_date.isoformat(),
        "startTime": e.start_time,
        "endTime": e.end_time,
        "venue": e.venue,
        "isActive": e.is_active,
        "allowGuestCheckin": e.allow_guest_checkin,
        "status": event_status(e.event_date, e.start_time, e.end_time, now=now),
        "createdAt": iso(e.created_at),
    }
    if attendance_count is not None:
        d["attendanceCount"] = attendance_count
    if guest_count is not None:
        d["guestCount"] = guest_count
    return d


def serialize_attendance(a: Attendance) -> dict:
    return {
        "id": a.id,
        "memberId": a.member_id,
        "eventId": a.event_id,
        "method": a.method,
        "checkInTime": iso(a.check_in_time),
        "member": member_brief(a.member),
    }


def serialize_guest(g: GuestAttendance) -> dict:
    return {
        "id": g.id,
        "eventId": g.event_id,
        "guestName": g.guest_name,
        "guestPhone": g.guest_phone,
        "purpose": g.purpose,
        "checkInTime": iso(g.check_in_time),
    }


def serialize_volunteer(v: EventVolunteer) -> dict:
    return {
        "id": v.id,
        "eventId": v.event_id,
        "memberId": v.member_id,
        "assignedAt": iso(v.created_at),
        "member": member_brief(v.member),
    }
