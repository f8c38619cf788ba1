from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fellowship.constants import ROLE_FELLOWSHIP_MANAGER
from app.fellowship.db import db_session
from app.fellowship.modules.leadership.service import (
    assign_regional_head,
    leadership_stats,
    org_structure,
    remove_regional_head,
    serialize_region_summary,
)
from app.fellowship.rbac import current_member, login_required, require_role

bp = Blueprint("leadership", __name__)


@bp.get("/structure")
@login_required
def structure_get():
    s = db_session()
    return jsonify(org_structure(s, current_member()))


@bp.get("/stats")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def stats_get():
    s = db_session()
    return jsonify(leadership_stats(s))


@bp.post("/regional-heads/assign")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def regional_head_assign():
    s = db_session()
    u = current_member()
    region = assign_regional_head(s, request.get_json(silent=True) or {}, u)
    return jsonify({"message": "Regional head assigned successfully", "region": serialize_region_summary(region)})


@bp.delete("/regional-heads/<int:region_id>/remove")
@require_role(ROLE_FELLOWSHIP_MANAGER)
def regional_head_remove(region_id: int):
    s = db_session()
    u = current_member()
    remove_regional_head(s, region_id, u)
    return jsonify({"message": "Regional head removed successfully"})
