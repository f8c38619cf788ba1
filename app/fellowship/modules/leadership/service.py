from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.fellowship.audit import record_event
from app.fellowship.constants import TAG_REGIONAL_HEAD
from app.fellowship.db import atomic
from app.fellowship.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError, issue
from app.fellowship.models import Member, Region
from app.fellowship.modules.leadership.models import FamilyGroup, FamilyMember, MinistryTeam, MinistryTeamMember
from app.fellowship.modules.tags.models import Tag
from app.fellowship.modules.tags.service import (
    assign_tag,
    find_active_assignment,
    get_or_create_system_tag,
    remove_tag,
)
from app.fellowship.utils import format_region_name

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _require_int(payload: dict, key: str, errors: list[dict]) -> int | None:
    v = payload.get(key)
    if not isinstance(v, int) or isinstance(v, bool):
        errors.append(issue(key, f"{key} is required"))
        return None
    return v


# ---------- Regional heads ----------

def assign_regional_head(s: "Session", payload: dict, actor: Member) -> Region:
    """
    Make a member the head of a region. The region pointer and the
    REGIONAL_HEAD tag are written in one transaction.
    """
    errors: list[dict] = []
    region_id = _require_int(payload, "regionId", errors)
    member_id = _require_int(payload, "memberId", errors)
    if errors:
        raise ValidationError.from_issues(errors)

    region = s.get(Region, region_id)
    if region is None:
        raise NotFoundError("Region not found")
    member = s.get(Member, member_id)
    if member is None:
        raise NotFoundError("Member not found")
    if member.is_deleted:
        raise ValidationError("Cannot assign deleted member as regional head")
    already = s.query(Region).filter(Region.regional_head_id == member.id).one_or_none()
    if already is not None:
        raise ValidationError(f"Member is already heading {format_region_name(already.name)} region")
    if region.regional_head_id is not None:
        raise ConflictError(f"{format_region_name(region.name)} region already has a regional head")

    now = datetime.utcnow()
    try:
        with atomic(s):
            tag = get_or_create_system_tag(s, TAG_REGIONAL_HEAD, created_by=actor)
            region.regional_head_id = member.id
            s.flush()
            existing = find_active_assignment(s, member.id, tag.id)
            if existing is not None and existing.is_current(now):
                logger.warning("Member %s already holds %s; keeping existing assignment", member.id, TAG_REGIONAL_HEAD)
            else:
                assign_tag(s, member=member, tag=tag, assigned_by=actor, notes=f"Regional Head of {region.name}", now=now)
            record_event(
                s,
                actor=actor,
                action="leadership.regional_head_assign",
                entity_type="Region",
                entity_id=str(region.id),
                metadata={"member_id": member.id, "region": region.name},
            )
    except IntegrityError:
        raise ConflictError("Region already has a regional head")

    logger.info("Member %s assigned as regional head of %s", member.id, region.name)
    return region


def remove_regional_head(s: "Session", region_id: int, actor: Member) -> Region:
    region = s.get(Region, region_id)
    if region is None or region.regional_head_id is None:
        raise NotFoundError("Regional head not found")
    head_id = region.regional_head_id

    with atomic(s):
        region.regional_head_id = None
        tag = s.query(Tag).filter(Tag.name == TAG_REGIONAL_HEAD).one_or_none()
        row = find_active_assignment(s, head_id, tag.id) if tag else None
        if row is not None:
            remove_tag(s, member_id=head_id, tag_id=tag.id, removed_by=actor)
        else:
            logger.warning(
                "Removing regional head %s of region %s: no active %s tag found", head_id, region.id, TAG_REGIONAL_HEAD
            )
            record_event(
                s,
                actor=actor,
                action="leadership.regional_head_tag_missing",
                entity_type="Region",
                entity_id=str(region.id),
                metadata={"member_id": head_id},
            )
        record_event(
            s,
            actor=actor,
            action="leadership.regional_head_remove",
            entity_type="Region",
            entity_id=str(region.id),
            metadata={"member_id": head_id, "region": region.name},
        )
    return region


# ---------- Read models ----------

def _serialize_region(s: "Session", region: Region) -> dict:
    families = (
        s.query(FamilyGroup)
        .filter(FamilyGroup.region_id == region.id, FamilyGroup.is_active.is_(True))
        .order_by(FamilyGroup.name.asc())
        .all()
    )
    family_counts = dict(
        s.query(FamilyMember.family_id, func.count(FamilyMember.id))
        .join(Member, FamilyMember.member_id == Member.id)
        .filter(FamilyMember.is_active.is_(True), Member.is_deleted.is_(False))
        .filter(FamilyMember.family_id.in_([f.id for f in families] or [-1]))
        .group_by(FamilyMember.family_id)
        .all()
    )
    member_count = (
        s.query(func.count(Member.id)).filter(Member.region_id == region.id, Member.is_deleted.is_(False)).scalar() or 0
    )
    head = region.regional_head
    return {
        "id": region.id,
        "name": format_region_name(region.name),
        "regionalHead": (
            {"id": head.id, "fullName": head.full_name, "email": head.email, "phoneNumber": head.phone_number}
            if head
            else None
        ),
        "families": [
            {
                "id": f.id,
                "name": f.name,
                "familyHead": {"id": f.family_head.id, "fullName": f.family_head.full_name} if f.family_head else None,
                "memberCount": family_counts.get(f.id, 0),
            }
            for f in families
        ],
        "memberCount": member_count,
    }


def _serialize_team(s: "Session", team: MinistryTeam) -> dict:
    count = (
        s.query(func.count(MinistryTeamMember.id))
        .join(Member, MinistryTeamMember.member_id == Member.id)
        .filter(
            MinistryTeamMember.team_id == team.id,
            MinistryTeamMember.is_active.is_(True),
            Member.is_deleted.is_(False),
        )
        .scalar()
        or 0
    )
    leader = team.leader
    return {
        "id": team.id,
        "name": team.name,
        "description": team.description,
        "leader": {"id": leader.id, "fullName": leader.full_name, "email": leader.email} if leader else None,
        "memberCount": count,
    }


def org_structure(s: "Session", caller: Member) -> dict:
    """
    Regions, families and ministry teams visible to the caller. A regional
    head only sees their own region and no teams; counts follow that scope.
    """
    if caller.is_manager:
        regions = s.query(Region).order_by(Region.name.asc()).all()
        teams = s.query(MinistryTeam).filter(MinistryTeam.is_active.is_(True)).order_by(MinistryTeam.name.asc()).all()
        members_q = s.query(func.count(Member.id)).filter(Member.is_deleted.is_(False))
    else:
        region = s.query(Region).filter(Region.regional_head_id == caller.id).one_or_none()
        if region is None:
            raise AuthorizationError("Only Regional Heads and Fellowship Managers can view the structure.")
        regions = [region]
        teams = []
        members_q = s.query(func.count(Member.id)).filter(Member.is_deleted.is_(False), Member.region_id == region.id)

    region_rows = [_serialize_region(s, r) for r in regions]
    return {
        "regions": region_rows,
        "ministryTeams": [_serialize_team(s, t) for t in teams],
        "stats": {
            "totalMembers": members_q.scalar() or 0,
            "totalRegions": len(region_rows),
            "totalFamilies": sum(len(r["families"]) for r in region_rows),
            "totalTeams": len(teams),
        },
    }


def leadership_stats(s: "Session") -> dict:
    return {
        "regionalHeads": s.query(func.count(Region.id)).filter(Region.regional_head_id.isnot(None)).scalar() or 0,
        "familyHeads": (
            s.query(func.count(FamilyGroup.id))
            .filter(FamilyGroup.family_head_id.isnot(None), FamilyGroup.is_active.is_(True))
            .scalar()
            or 0
        ),
        "teamLeaders": (
            s.query(func.count(MinistryTeam.id))
            .filter(MinistryTeam.leader_id.isnot(None), MinistryTeam.is_active.is_(True))
            .scalar()
            or 0
        ),
        "totalFamilies": s.query(func.count(FamilyGroup.id)).filter(FamilyGroup.is_active.is_(True)).scalar() or 0,
        "totalTeams": s.query(func.count(MinistryTeam.id)).filter(MinistryTeam.is_active.is_(True)).scalar() or 0,
    }


def serialize_region_summary(region: Region) -> dict:
    head = region.regional_head
    return {
        "id": region.id,
        "name": format_region_name(region.name),
        "regionalHead": {"id": head.id, "fullName": head.full_name, "email": head.email} if head else None,
    }
