from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fellowship.constants import ROLE_FELLOWSHIP_MANAGER
from app.fellowship.db import db_session
from app.fellowship.modules.members.service import register_member, serialize_member, soft_delete_member
from app.fellowship.modules.profile_edits.service import (
    direct_update,
    get_my_profile,
    list_edit_requests,
    review_edit_request,
    serialize_request,
    submit_edit_request,
)
from app.fellowship.rbac import current_member, login_required, require_role

bp = Blueprint("members", __name__)


# ---------- Registry ----------
@bp.post("")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def members_register():
    s = db_session()
    u = current_member()
    member = register_member(s, request.get_json(silent=True) or {}, u)
    return jsonify(serialize_member(member)), 201


@bp.delete("/<int:member_id>")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def members_delete(member_id: int):
    s = db_session()
    u = current_member()
    soft_delete_member(s, member_id, u)
    return jsonify({"message": "Member deleted successfully"})


# ---------- Own profile ----------
@bp.get("/me")
@login_required
def me_get():
    s = db_session()
    return jsonify(get_my_profile(s, current_member()))


@bp.patch("/me")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def me_patch():
    s = db_session()
    u = current_member()
    direct_update(s, u, request.get_json(silent=True) or {})
    s.commit()
    return jsonify({"message": "Profile updated successfully."})


@bp.post("/me/edit-request")
@login_required
def edit_request_submit():
    s = db_session()
    u = current_member()
    req = submit_edit_request(s, u, request.get_json(silent=True) or {})
    return (
        jsonify(
            {
                "message": "Edit request submitted successfully. Your Regional Head will review it.",
                "requestId": req.id,
            }
        ),
        201,
    )


# ---------- Review ----------
@bp.get("/edit-requests")
@login_required
def edit_requests_list():
    s = db_session()
    u = current_member()
    rows = list_edit_requests(s, u, request.args.get("status"))
    return jsonify([serialize_request(r) for r in rows])


@bp.patch("/edit-requests/<int:request_id>")
@login_required
def edit_request_review(request_id: int):
    s = db_session()
    u = current_member()
    req = review_edit_request(s, request_id, u, request.get_json(silent=True) or {})
    return jsonify(
        {
            "message": f"Edit request {req.status.lower()} successfully.",
            "request": serialize_request(req),
        }
    )
