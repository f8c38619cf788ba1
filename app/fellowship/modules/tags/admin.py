from __future__ import annotations

from datetime import datetime, time

from flask import Blueprint, jsonify, request

from app.fellowship.constants import ROLE_FELLOWSHIP_MANAGER
from app.fellowship.db import db_session
from app.fellowship.errors import NotFoundError, ValidationError, issue
from app.fellowship.models import Member
from app.fellowship.modules.tags.service import (
    assign_tag,
    bulk_assign,
    bulk_remove,
    create_tag,
    delete_tag,
    get_tag,
    list_tags,
    member_tag_history,
    members_with_tag,
    remove_tag,
    serialize_tag,
    set_registration_visibility,
)
from app.fellowship.rbac import current_member, require_role
from app.fellowship.utils import iso, parse_date

bp = Blueprint("tags", __name__)


# ---------- Tag definitions ----------
@bp.get("")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def tags_list():
    s = db_session()
    return jsonify(list_tags(s))


@bp.post("")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def tags_create():
    s = db_session()
    u = current_member()
    tag = create_tag(s, request.get_json(silent=True) or {}, u)
    s.commit()
    return jsonify(serialize_tag(tag, member_count=0)), 201


@bp.delete("/<int:tag_id>")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def tags_delete(tag_id: int):
    s = db_session()
    u = current_member()
    delete_tag(s, tag_id, u)
    s.commit()
    return jsonify({"message": "Tag deleted successfully"})


@bp.patch("/<int:tag_id>/registration-visibility")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def tags_registration_visibility(tag_id: int):
    s = db_session()
    u = current_member()
    payload = request.get_json(silent=True) or {}
    tag = set_registration_visibility(s, tag_id, payload.get("showOnRegistration"), u)
    s.commit()
    return jsonify(serialize_tag(tag))


@bp.get("/<int:tag_id>/members")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def tags_members(tag_id: int):
    s = db_session()
    return jsonify(members_with_tag(s, tag_id))


# ---------- Member assignments ----------
@bp.post("/members/<int:member_id>/tags")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def member_tag_assign(member_id: int):
    s = db_session()
    u = current_member()
    payload = request.get_json(silent=True) or {}

    errors = []
    tag_id = payload.get("tagId")
    if not isinstance(tag_id, int) or isinstance(tag_id, bool):
        errors.append(issue("tagId", "tagId is required"))
    notes = payload.get("notes")
    if notes is not None and (not isinstance(notes, str) or len(notes) > 500):
        errors.append(issue("notes", "Notes must be at most 500 characters"))
    expires_at = None
    if payload.get("expiresAt"):
        try:
            d = parse_date(str(payload["expiresAt"]))
        except ValueError:
            errors.append(issue("expiresAt", "Invalid date (YYYY-MM-DD)"))
        else:
            expires_at = datetime.combine(d, time.min)
    if errors:
        raise ValidationError.from_issues(errors, "Invalid input")

    member = s.get(Member, member_id)
    if not member or member.is_deleted:
        raise NotFoundError("Member not found")
    tag = get_tag(s, tag_id)

    mt = assign_tag(s, member=member, tag=tag, assigned_by=u, notes=notes, expires_at=expires_at)
    s.commit()
    return (
        jsonify(
            {
                "message": "Tag assigned successfully",
                "memberTag": {
                    "id": mt.id,
                    "tag": serialize_tag(tag),
                    "assignedAt": iso(mt.assigned_at),
                    "expiresAt": iso(mt.expires_at),
                    "notes": mt.notes,
                },
            }
        ),
        201,
    )


@bp.delete("/members/<int:member_id>/tags/<int:tag_id>")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def member_tag_remove(member_id: int, tag_id: int):
    s = db_session()
    u = current_member()
    payload = request.get_json(silent=True) or {}
    notes = payload.get("notes")
    if notes is not None and (not isinstance(notes, str) or len(notes) > 500):
        raise ValidationError.from_issues([issue("notes", "Notes must be at most 500 characters")], "Invalid input")
    remove_tag(s, member_id=member_id, tag_id=tag_id, removed_by=u, notes=notes or None)
    s.commit()
    return jsonify({"message": "Tag removed successfully"})


@bp.post("/members/bulk-assign")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def members_bulk_assign():
    s = db_session()
    u = current_member()
    result = bulk_assign(s, request.get_json(silent=True) or {}, u)
    s.commit()
    return jsonify(result), 201


@bp.post("/members/bulk-remove")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def members_bulk_remove():
    s = db_session()
    u = current_member()
    result = bulk_remove(s, request.get_json(silent=True) or {}, u)
    s.commit()
    return jsonify(result)


@bp.get("/members/<int:member_id>/history")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def member_tag_history_get(member_id: int):
    s = db_session()
    return jsonify(member_tag_history(s, member_id))
