from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from app.fellowship.audit import record_event
from app.fellowship.db import atomic
from app.fellowship.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError, issue
from app.fellowship.models import Course, Member, Region, Residence
from app.fellowship.modules.leadership.models import FamilyMember
from app.fellowship.modules.profile_edits.fields import EDITABLE_FIELDS, FIELD_NAMES, snapshot_member
from app.fellowship.modules.profile_edits.models import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    REQUEST_STATUSES,
    ProfileEditRequest,
)
from app.fellowship.notifications import (
    Notifier,
    edit_request_decision_message,
    edit_request_submitted_message,
    get_notifier,
)
from app.fellowship.utils import format_region_name, is_valid_email, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MAX_CHANGES = len(FIELD_NAMES)
REVIEW_DECISIONS = (STATUS_APPROVED, STATUS_REJECTED)


# ---------- Validation ----------

def validate_submit_payload(payload: dict) -> list[dict]:
    errors = []
    changes = payload.get("changes")
    if not isinstance(changes, list) or not changes:
        errors.append(issue("changes", "At least one change is required"))
    elif len(changes) > MAX_CHANGES:
        errors.append(issue("changes", f"At most {MAX_CHANGES} changes are allowed"))
    else:
        seen: set[str] = set()
        for i, c in enumerate(changes):
            if not isinstance(c, dict):
                errors.append(issue(f"changes.{i}", "Each change must be an object"))
                continue
            field = c.get("field")
            if field not in EDITABLE_FIELDS:
                errors.append(issue(f"changes.{i}.field", f"Must be one of: {', '.join(FIELD_NAMES)}"))
            elif field in seen:
                errors.append(issue(f"changes.{i}.field", f"Duplicate change for {field}"))
            else:
                seen.add(field)
            new_value = c.get("newValue")
            if not isinstance(new_value, str) or not new_value.strip():
                errors.append(issue(f"changes.{i}.newValue", "New value cannot be empty"))

    reason = payload.get("reason")
    if not isinstance(reason, str) or len(reason.strip()) < 10:
        errors.append(issue("reason", "Please explain the reason for the change (min 10 characters)"))
    elif len(reason.strip()) > 500:
        errors.append(issue("reason", "Reason must be at most 500 characters"))
    return errors


def validate_review_payload(payload: dict) -> list[dict]:
    errors = []
    if payload.get("status") not in REVIEW_DECISIONS:
        errors.append(issue("status", f"Must be one of: {', '.join(REVIEW_DECISIONS)}"))
    note = payload.get("reviewNote")
    if note is not None and (not isinstance(note, str) or len(note) > 500):
        errors.append(issue("reviewNote", "Review note must be at most 500 characters"))
    return errors


# ---------- Lookups ----------

def get_pending_request(s: "Session", member_id: int) -> ProfileEditRequest | None:
    return (
        s.query(ProfileEditRequest)
        .filter(ProfileEditRequest.member_id == member_id, ProfileEditRequest.status == STATUS_PENDING)
        .order_by(ProfileEditRequest.created_at.desc())
        .first()
    )


def headed_region(s: "Session", member_id: int) -> Region | None:
    return s.query(Region).filter(Region.regional_head_id == member_id).one_or_none()


def get_my_profile(s: "Session", member: Member) -> dict:
    family = (
        s.query(FamilyMember)
        .filter(FamilyMember.member_id == member.id, FamilyMember.is_active.is_(True))
        .order_by(FamilyMember.joined_at.desc())
        .first()
    )
    pending = get_pending_request(s, member.id)
    course = member.course
    return {
        "id": member.id,
        "fullName": member.full_name,
        "email": member.email,
        "phoneNumber": member.phone_number,
        "fellowshipNumber": member.fellowship_number,
        "role": member.role,
        "hostelName": member.hostel_name,
        "region": (
            {
                "id": member.region.id,
                "name": format_region_name(member.region.name),
                "regionalHeadId": member.region.regional_head_id,
            }
            if member.region
            else None
        ),
        "family": {"id": family.family.id, "name": family.family.name} if family else None,
        "residence": (
            {"id": member.residence.id, "name": member.residence.name, "type": member.residence.type}
            if member.residence
            else None
        ),
        "academic": (
            {
                "courseId": course.id,
                "courseName": course.name,
                "collegeId": course.college.id,
                "collegeName": course.college.name,
                "collegeCode": course.college.code,
                "durationYears": course.duration_years,
                "currentYear": member.initial_year_of_study,
                "currentSemester": member.initial_semester,
            }
            if course
            else None
        ),
        "pendingEditRequest": (
            {
                "id": pending.id,
                "status": pending.status,
                "changes": pending.changes,
                "reason": pending.reason,
                "createdAt": iso(pending.created_at),
            }
            if pending
            else None
        ),
    }


# ---------- Submit ----------

def diff_changes(s: "Session", member: Member, requested: list[dict]) -> list[dict]:
    """
    Typed diff of requested changes against the member's current values.
    No-op entries are dropped; ``oldValue`` comes from the string snapshot.
    """
    snapshot = snapshot_member(member)
    diffs = []
    errors = []
    for i, c in enumerate(requested):
        f = EDITABLE_FIELDS[c["field"]]
        try:
            new_value = f.parse(s, c["newValue"])
        except ValueError as e:
            errors.append(issue(f"changes.{i}.newValue", str(e)))
            continue
        if f.equals(f.read(member), new_value):
            continue
        diffs.append({"field": f.name, "oldValue": snapshot[f.name], "newValue": f.render(new_value)})
    if errors:
        raise ValidationError.from_issues(errors)
    return diffs


def submit_edit_request(
    s: "Session", member: Member, payload: dict, notifier: Notifier | None = None
) -> ProfileEditRequest:
    errors = validate_submit_payload(payload)
    if errors:
        raise ValidationError.from_issues(errors)

    if get_pending_request(s, member.id):
        raise ConflictError(
            "You already have a pending edit request. Please wait for it to be reviewed before submitting another."
        )

    diffs = diff_changes(s, member, payload["changes"])
    if not diffs:
        raise ValidationError("No actual changes detected. The new values are the same as the current values.")

    now = datetime.utcnow()
    try:
        with atomic(s):
            req = ProfileEditRequest(
                member_id=member.id,
                changes=diffs,
                reason=payload["reason"].strip(),
                status=STATUS_PENDING,
                created_at=now,
                updated_at=now,
            )
            s.add(req)
            s.flush()
            record_event(
                s,
                actor=member,
                action="edit_request.submit",
                entity_type="ProfileEditRequest",
                entity_id=str(req.id),
                metadata={"fields": [d["field"] for d in diffs]},
            )
    except IntegrityError:
        raise ConflictError(
            "You already have a pending edit request. Please wait for it to be reviewed before submitting another."
        )

    logger.info("Edit request %s submitted by %s (%s)", req.id, member.full_name, member.fellowship_number)
    _notify_regional_head(member, req, notifier)
    return req


def _notify_regional_head(member: Member, req: ProfileEditRequest, notifier: Notifier | None) -> None:
    head = member.region.regional_head if member.region else None
    if head is None:
        logger.info("Member %s has no regional head; edit request %s not announced", member.id, req.id)
        return
    subject, body = edit_request_submitted_message(
        head.full_name, member.full_name, member.fellowship_number, req.changes, req.reason
    )
    (notifier or get_notifier()).notify(email=head.email, subject=subject, body=body, kind="edit_request.submitted")


# ---------- Reviewer views ----------

def list_edit_requests(s: "Session", reviewer: Member, status: str | None) -> list[ProfileEditRequest]:
    status_filter = (status or STATUS_PENDING).strip().upper()
    if status_filter not in REQUEST_STATUSES + ("ALL",):
        raise ValidationError("Invalid status filter")

    q = (
        s.query(ProfileEditRequest)
        .join(Member, ProfileEditRequest.member_id == Member.id)
        .filter(Member.is_deleted.is_(False))
    )
    if not reviewer.is_manager:
        region = headed_region(s, reviewer.id)
        if region is None:
            raise AuthorizationError("Only Regional Heads and Fellowship Managers can review edit requests.")
        q = q.filter(Member.region_id == region.id)
    if status_filter != "ALL":
        q = q.filter(ProfileEditRequest.status == status_filter)
    return q.order_by(ProfileEditRequest.created_at.desc(), ProfileEditRequest.id.desc()).all()


def _can_review(s: "Session", reviewer: Member, subject: Member) -> bool:
    if reviewer.is_manager:
        return True
    region = headed_region(s, reviewer.id)
    return region is not None and subject.region_id == region.id


# ---------- Review ----------

def review_edit_request(
    s: "Session", request_id: int, reviewer: Member, payload: dict, notifier: Notifier | None = None
) -> ProfileEditRequest:
    """
    Approve or reject a pending request.

    Checks, in order: payload (400), existence (404), still pending (409),
    reviewer scope (403), self-review (403). Approval applies the member
    mutations and resolves the request in one transaction; rejection only
    touches the request.
    """
    errors = validate_review_payload(payload)
    if errors:
        raise ValidationError.from_issues(errors)
    decision = payload["status"]
    note = payload.get("reviewNote")

    req = s.get(ProfileEditRequest, request_id)
    if req is None:
        raise NotFoundError("Edit request not found")
    if req.status != STATUS_PENDING:
        raise ConflictError(
            f"This request has already been {req.status.lower()}.",
            details=[issue("status", req.status)],
        )
    member = req.member
    if not _can_review(s, reviewer, member):
        raise AuthorizationError("You are not authorized to review this request.")
    if req.member_id == reviewer.id:
        raise AuthorizationError("You cannot review your own edit request.")

    mutations = []
    if decision == STATUS_APPROVED:
        for c in req.changes or []:
            f = EDITABLE_FIELDS.get(c.get("field"))
            if f is None or f.apply is None:
                continue
            try:
                mutations.append((f, f.parse(s, c.get("newValue") or "")))
            except ValueError as e:
                raise ValidationError.from_issues([issue(c["field"], str(e))], "Requested value is no longer valid")
        if not mutations:
            raise ValidationError("No valid fields to update.")

    now = datetime.utcnow()
    with atomic(s):
        for f, value in mutations:
            f.apply(member, value)
        if mutations:
            member.updated_at = now
        req.status = decision
        req.reviewed_by_member_id = reviewer.id
        req.review_note = note
        req.reviewed_at = now
        req.updated_at = now
        record_event(
            s,
            actor=reviewer,
            action="edit_request.approve" if decision == STATUS_APPROVED else "edit_request.reject",
            entity_type="ProfileEditRequest",
            entity_id=str(req.id),
            reason=note,
            metadata={"member_id": member.id, "applied": [f.name for f, _ in mutations]},
        )

    logger.info("Edit request %s %s by reviewer %s", req.id, decision, reviewer.id)
    subject, body = edit_request_decision_message(member.full_name, decision, req.changes, note)
    (notifier or get_notifier()).notify(email=member.email, subject=subject, body=body, kind="edit_request.decision")
    return req


# ---------- Manager self-edit ----------

def _validate_direct_update(s: "Session", payload: dict) -> tuple[dict, list[dict]]:
    errors = []
    updates: dict = {}

    def text(key: str, attr: str, lo: int, hi: int) -> None:
        if key not in payload:
            return
        v = payload[key]
        if not isinstance(v, str) or not (lo <= len(v.strip()) <= hi):
            errors.append(issue(key, f"Must be between {lo} and {hi} characters"))
        else:
            updates[attr] = v.strip()

    def number(key: str, attr: str, lo: int, hi: int) -> None:
        if key not in payload:
            return
        v = payload[key]
        if not isinstance(v, int) or isinstance(v, bool) or not (lo <= v <= hi):
            errors.append(issue(key, f"Must be a whole number between {lo} and {hi}"))
        else:
            updates[attr] = v

    def reference(key: str, attr: str, model, label: str) -> None:
        if key not in payload:
            return
        v = payload[key]
        if not isinstance(v, int) or isinstance(v, bool):
            errors.append(issue(key, f"Invalid {label} id"))
        elif s.get(model, v) is None:
            errors.append(issue(key, f"{label} not found"))
        else:
            updates[attr] = v

    text("fullName", "full_name", 2, 100)
    text("phoneNumber", "phone_number", 5, 20)
    text("hostelName", "hostel_name", 0, 100)
    if "email" in payload:
        if not is_valid_email(payload["email"] if isinstance(payload["email"], str) else None):
            errors.append(issue("email", "Invalid email address"))
        else:
            updates["email"] = payload["email"].strip()
    number("initialYearOfStudy", "initial_year_of_study", 1, 10)
    number("initialSemester", "initial_semester", 1, 2)
    reference("courseId", "course_id", Course, "Course")
    reference("residenceId", "residence_id", Residence, "Residence")
    if "hostel_name" in updates and not updates["hostel_name"]:
        updates["hostel_name"] = None
    return updates, errors


def direct_update(s: "Session", member: Member, payload: dict) -> Member:
    """Fellowship Manager edits their own profile without review."""
    if not member.is_manager:
        raise AuthorizationError("Only the Fellowship Manager can use this endpoint.")
    updates, errors = _validate_direct_update(s, payload)
    if errors:
        raise ValidationError.from_issues(errors)
    if not updates:
        return member
    for attr, value in updates.items():
        setattr(member, attr, value)
    member.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=member,
        action="member.self_update",
        entity_type="Member",
        entity_id=str(member.id),
        metadata={"fields": sorted(updates)},
    )
    return member


# ---------- Serialization ----------

def serialize_request(req: ProfileEditRequest) -> dict:
    m = req.member
    return {
        "id": req.id,
        "memberId": req.member_id,
        "changes": req.changes,
        "reason": req.reason,
        "status": req.status,
        "reviewNote": req.review_note,
        "reviewedAt": iso(req.reviewed_at),
        "createdAt": iso(req.created_at),
        "updatedAt": iso(req.updated_at),
        "member": (
            {
                "id": m.id,
                "fullName": m.full_name,
                "email": m.email,
                "fellowshipNumber": m.fellowship_number,
                "region": {"id": m.region.id, "name": format_region_name(m.region.name)} if m.region else None,
            }
            if m
            else None
        ),
        "reviewer": {"id": req.reviewer.id, "fullName": req.reviewer.full_name} if req.reviewer else None,
    }
