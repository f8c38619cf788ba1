"""Tests for the tag store and tag admin routes."""
from datetime import datetime, timedelta

import pytest

from app.fellowship.constants import TAG_REGIONAL_HEAD
from app.fellowship.errors import ConflictError, NotFoundError
from app.fellowship.models import AuditEvent
from app.fellowship.modules.tags.models import MemberTag, Tag
from app.fellowship.modules.tags.service import (
    AUTO_EXPIRED_NOTE,
    assign_tag,
    get_active_tags,
    get_or_create_system_tag,
    has_active_tag,
    remove_tag,
)

NOW = datetime(2026, 3, 3, 12, 0)


def _custom_tag(s, name="Choir"):
    t = Tag(name=name, type="CUSTOM", color="#112233", is_system=False)
    s.add(t)
    s.flush()
    return t


def test_expired_assignment_reads_inactive_without_writing(db, make_member):
    m = make_member(db, "MEM001")
    tag = _custom_tag(db)
    row = MemberTag(member_id=m.id, tag_id=tag.id, is_active=True, expires_at=NOW - timedelta(days=1), assigned_at=NOW - timedelta(days=10))
    db.add(row)
    db.commit()

    assert has_active_tag(db, m.id, "Choir", now=NOW) is False
    assert get_active_tags(db, m.id, now=NOW) == []
    assert has_active_tag(db, m.id, "Choir", now=NOW - timedelta(days=2)) is True

    db.expire_all()
    assert db.get(MemberTag, row.id).is_active is True
    assert db.get(MemberTag, row.id).removed_at is None


def test_assign_conflicts_when_current(db, make_member, manager):
    m = make_member(db, "MEM001")
    tag = _custom_tag(db)
    assign_tag(db, member=m, tag=tag, assigned_by=manager, now=NOW)
    db.commit()

    with pytest.raises(ConflictError) as exc:
        assign_tag(db, member=m, tag=tag, assigned_by=manager, now=NOW + timedelta(hours=1))
    assert exc.value.message == "Member already has this tag"
    assert db.query(MemberTag).filter(MemberTag.member_id == m.id).count() == 1


def test_assign_replaces_stale_active_row(db, make_member, manager):
    m = make_member(db, "MEM001")
    tag = _custom_tag(db)
    old = assign_tag(db, member=m, tag=tag, assigned_by=manager, expires_at=NOW - timedelta(days=1), now=NOW - timedelta(days=5))
    db.commit()

    new = assign_tag(db, member=m, tag=tag, assigned_by=manager, notes="Renewed", now=NOW)
    db.commit()

    db.expire_all()
    old = db.get(MemberTag, old.id)
    assert old.is_active is False
    assert old.removed_at == NOW
    assert old.removed_by_member_id is None
    assert AUTO_EXPIRED_NOTE in old.notes
    assert db.get(MemberTag, new.id).is_active is True
    assert has_active_tag(db, m.id, "Choir", now=NOW) is True


def test_remove_tag_keeps_history(db, make_member, manager):
    m = make_member(db, "MEM001")
    tag = _custom_tag(db)
    row = assign_tag(db, member=m, tag=tag, assigned_by=manager, now=NOW)
    db.commit()

    remove_tag(db, member_id=m.id, tag_id=tag.id, removed_by=manager, notes="Left the choir", now=NOW)
    db.commit()

    db.expire_all()
    row = db.get(MemberTag, row.id)
    assert row.is_active is False
    assert row.removed_by_member_id == manager.id
    assert row.notes == "Left the choir"
    assert db.query(AuditEvent).filter(AuditEvent.action == "tag.remove").count() == 1

    with pytest.raises(NotFoundError):
        remove_tag(db, member_id=m.id, tag_id=tag.id, removed_by=manager, now=NOW)


def test_get_or_create_system_tag_is_idempotent(db):
    a = get_or_create_system_tag(db, TAG_REGIONAL_HEAD)
    b = get_or_create_system_tag(db, TAG_REGIONAL_HEAD)
    assert a.id == b.id
    assert a.is_system is True
    assert a.type == "SYSTEM"


def test_tag_crud_routes(client, manager, login):
    login("MGR001")

    r = client.post("/tags", json={"name": "Ushers", "description": "Sunday ushers"})
    assert r.status_code == 201
    tag_id = r.json["id"]
    assert r.json["color"] == "#6366f1"
    assert r.json["isSystem"] is False

    r = client.post("/tags", json={"name": "Ushers"})
    assert r.status_code == 409

    r = client.post("/tags", json={"name": "Bad", "color": "red"})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid input"

    r = client.patch(f"/tags/{tag_id}/registration-visibility", json={"showOnRegistration": True})
    assert r.status_code == 200
    assert r.json["showOnRegistration"] is True

    r = client.get("/tags")
    assert [t["name"] for t in r.json] == ["Ushers"]
    assert r.json[0]["memberCount"] == 0

    r = client.delete(f"/tags/{tag_id}")
    assert r.status_code == 200
    assert client.delete(f"/tags/{tag_id}").status_code == 404


def test_system_tag_cannot_be_deleted(client, db, manager, login):
    tag = get_or_create_system_tag(db, TAG_REGIONAL_HEAD)
    db.commit()
    login("MGR001")

    r = client.delete(f"/tags/{tag.id}")
    assert r.status_code == 403
    assert r.json["error"] == "Cannot delete system tags"


def test_assign_and_remove_routes(client, db, make_member, manager, login):
    m = make_member(db, "MEM001")
    tag = _custom_tag(db)
    db.commit()
    login("MGR001")

    r = client.post(f"/tags/members/{m.id}/tags", json={"tagId": tag.id, "expiresAt": "2099-01-01"})
    assert r.status_code == 201
    assert r.json["memberTag"]["expiresAt"] == "2099-01-01T00:00:00"

    r = client.post(f"/tags/members/{m.id}/tags", json={"tagId": tag.id})
    assert r.status_code == 409

    r = client.get(f"/tags/{tag.id}/members")
    assert [x["fellowshipNumber"] for x in r.json["members"]] == ["MEM001"]

    r = client.delete(f"/tags/members/{m.id}/tags/{tag.id}")
    assert r.status_code == 200

    r = client.get(f"/tags/members/{m.id}/history")
    assert len(r.json) == 1
    assert r.json[0]["isActive"] is False
    assert r.json[0]["removedBy"]["fellowshipNumber"] == "MGR001"

    r = client.delete(f"/tags/{tag.id}")
    assert r.status_code == 409


def test_bulk_assign_and_remove(client, db, make_member, manager, login):
    a = make_member(db, "MEM001")
    b = make_member(db, "MEM002")
    tag = _custom_tag(db)
    assign_tag(db, member=a, tag=tag, assigned_by=manager)
    db.commit()
    login("MGR001")

    r = client.post("/tags/members/bulk-assign", json={"memberIds": [a.id, b.id], "tagId": tag.id})
    assert r.status_code == 201
    assert r.json["count"] == 1
    assert r.json["skipped"] == 1

    r = client.post("/tags/members/bulk-assign", json={"memberIds": [a.id, b.id], "tagId": tag.id})
    assert r.status_code == 400
    assert r.json["error"] == "All selected members already have this tag"

    r = client.post("/tags/members/bulk-assign", json={"memberIds": [a.id, 9999], "tagId": tag.id})
    assert r.status_code == 404

    r = client.post("/tags/members/bulk-remove", json={"memberIds": [a.id, b.id], "tagId": tag.id})
    assert r.status_code == 200
    assert r.json["count"] == 2

    db.expire_all()
    assert db.query(MemberTag).filter(MemberTag.tag_id == tag.id, MemberTag.is_active.is_(True)).count() == 0


def test_non_string_fields_are_rejected(client, db, make_member, manager, login):
    m = make_member(db, "MEM001")
    tag = _custom_tag(db)
    assign_tag(db, member=m, tag=tag, assigned_by=manager)
    db.commit()
    login("MGR001")

    r = client.post("/tags", json={"name": 5})
    assert r.status_code == 400
    assert r.json["details"][0]["path"] == "name"

    r = client.delete(f"/tags/members/{m.id}/tags/{tag.id}", json={"notes": 5})
    assert r.status_code == 400
    assert r.json["details"] == [{"path": "notes", "message": "Notes must be at most 500 characters"}]

    db.expire_all()
    assert db.query(MemberTag).filter(MemberTag.member_id == m.id).one().is_active is True
