from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fellowship.constants import ROLE_FELLOWSHIP_MANAGER
from app.fellowship.db import db_session
from app.fellowship.modules.attendance.service import (
    active_events,
    assign_volunteer,
    check_in,
    create_event,
    event_attendance,
    event_volunteers,
    get_event,
    guest_check_in,
    list_events,
    remove_volunteer,
    serialize_attendance,
    serialize_event,
    serialize_guest,
    serialize_volunteer,
    toggle_event_active,
    toggle_guest_checkin,
)
from app.fellowship.rbac import current_member, login_required, require_role

bp = Blueprint("attendance", __name__)


# ---------- Check-in ----------
@bp.post("/checkin")
@login_required
def checkin_post():
    s = db_session()
    u = current_member()
    attendance = check_in(s, request.get_json(silent=True) or {}, u)
    return jsonify(serialize_attendance(attendance)), 201


@bp.post("/checkin/guest")
@login_required
def checkin_guest_post():
    s = db_session()
    u = current_member()
    guest = guest_check_in(s, request.get_json(silent=True) or {}, u)
    s.commit()
    return jsonify(serialize_guest(guest)), 201


# ---------- Events ----------
@bp.get("/events")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def events_list():
    s = db_session()
    return jsonify(list_events(s))


@bp.post("/events")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def events_create():
    s = db_session()
    u = current_member()
    event = create_event(s, request.get_json(silent=True) or {}, u)
    s.commit()
    return jsonify(serialize_event(event)), 201


@bp.get("/events/active")
@login_required
def events_active():
    s = db_session()
    return jsonify(active_events(s))


@bp.get("/events/<int:event_id>")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def event_detail(event_id: int):
    s = db_session()
    return jsonify(serialize_event(get_event(s, event_id)))


@bp.get("/events/<int:event_id>/attendance")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def event_attendance_get(event_id: int):
    s = db_session()
    return jsonify(event_attendance(s, event_id))


@bp.patch("/events/<int:event_id>/toggle-active")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def event_toggle_active(event_id: int):
    s = db_session()
    u = current_member()
    event = toggle_event_active(s, event_id, u)
    s.commit()
    return jsonify(serialize_event(event))


@bp.patch("/events/<int:event_id>/toggle-guest-checkin")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def event_toggle_guest_checkin(event_id: int):
    s = db_session()
    u = current_member()
    event = toggle_guest_checkin(s, event_id, u)
    s.commit()
    return jsonify(serialize_event(event))


# ---------- Volunteers ----------
@bp.get("/events/<int:event_id>/volunteers")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def event_volunteers_list(event_id: int):
    s = db_session()
    return jsonify(event_volunteers(s, event_id))


@bp.post("/events/<int:event_id>/volunteers")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def event_volunteers_assign(event_id: int):
    s = db_session()
    u = current_member()
    volunteer, created = assign_volunteer(s, event_id, request.get_json(silent=True) or {}, u)
    return jsonify(serialize_volunteer(volunteer)), 201 if created else 200


@bp.delete("/events/<int:event_id>/volunteers/<int:member_id>")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def event_volunteers_remove(event_id: int, member_id: int):
    s = db_session()
    u = current_member()
    remove_volunteer(s, event_id, member_id, u)
    return jsonify({"message": "Volunteer removed successfully"})
