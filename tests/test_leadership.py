"""Tests for regional head assignment and the org structure views."""
import pytest

from app.fellowship.constants import TAG_REGIONAL_HEAD
from app.fellowship.errors import ConflictError, ValidationError
from app.fellowship.models import AuditEvent, Region
from app.fellowship.modules.leadership.models import FamilyGroup, FamilyMember, MinistryTeam
from app.fellowship.modules.leadership.service import assign_regional_head, remove_regional_head
from app.fellowship.modules.tags.models import MemberTag, Tag
from app.fellowship.modules.tags.service import has_active_tag


@pytest.fixture()
def regions(db, make_region):
    central = make_region(db, "Central")
    kikoni = make_region(db, "Kikoni")
    db.commit()
    return central, kikoni


def test_assign_regional_head(db, regions, make_member, manager):
    central, _ = regions
    m = make_member(db, "MEM001", region=central)
    db.commit()

    assign_regional_head(db, {"regionId": central.id, "memberId": m.id}, manager)

    db.expire_all()
    assert db.get(Region, central.id).regional_head_id == m.id
    assert has_active_tag(db, m.id, TAG_REGIONAL_HEAD) is True
    row = db.query(MemberTag).filter(MemberTag.member_id == m.id).one()
    assert row.notes == "Regional Head of Central"
    assert row.assigned_by_member_id == manager.id


def test_member_cannot_head_two_regions(db, regions, make_member, manager):
    central, kikoni = regions
    m = make_member(db, "MEM001", region=central)
    db.commit()
    assign_regional_head(db, {"regionId": central.id, "memberId": m.id}, manager)

    with pytest.raises(ValidationError) as exc:
        assign_regional_head(db, {"regionId": kikoni.id, "memberId": m.id}, manager)
    assert exc.value.message == "Member is already heading CENTRAL (HALLS OF RESIDENTS) region"

    db.expire_all()
    assert db.get(Region, kikoni.id).regional_head_id is None
    assert db.get(Region, central.id).regional_head_id == m.id
    assert db.query(MemberTag).filter(MemberTag.member_id == m.id).count() == 1


def test_region_with_head_conflicts(db, regions, make_member, manager):
    central, _ = regions
    a = make_member(db, "MEM001", region=central)
    b = make_member(db, "MEM002", region=central)
    db.commit()
    assign_regional_head(db, {"regionId": central.id, "memberId": a.id}, manager)

    with pytest.raises(ConflictError):
        assign_regional_head(db, {"regionId": central.id, "memberId": b.id}, manager)
    assert has_active_tag(db, b.id, TAG_REGIONAL_HEAD) is False


def test_deleted_member_cannot_be_head(db, regions, make_member, manager):
    central, _ = regions
    m = make_member(db, "MEM001", region=central, is_deleted=True)
    db.commit()

    with pytest.raises(ValidationError) as exc:
        assign_regional_head(db, {"regionId": central.id, "memberId": m.id}, manager)
    assert exc.value.message == "Cannot assign deleted member as regional head"


def test_assign_then_remove(client, db, regions, make_member, manager, login):
    central, _ = regions
    m = make_member(db, "MEM001", region=central)
    db.commit()
    login("MGR001")

    r = client.post("/leadership/regional-heads/assign", json={"regionId": central.id, "memberId": m.id})
    assert r.status_code == 200
    assert r.json["region"]["regionalHead"]["id"] == m.id

    r = client.delete(f"/leadership/regional-heads/{central.id}/remove")
    assert r.status_code == 200

    db.expire_all()
    assert db.get(Region, central.id).regional_head_id is None
    row = db.query(MemberTag).filter(MemberTag.member_id == m.id).one()
    assert row.is_active is False
    assert row.removed_by_member_id == manager.id

    r = client.delete(f"/leadership/regional-heads/{central.id}/remove")
    assert r.status_code == 404


def test_remove_without_tag_is_audited(db, regions, make_member, manager):
    central, _ = regions
    m = make_member(db, "MEM001", region=central)
    central.regional_head_id = m.id
    db.commit()

    remove_regional_head(db, central.id, manager)

    db.expire_all()
    assert db.get(Region, central.id).regional_head_id is None
    actions = {e.action for e in db.query(AuditEvent)}
    assert {"leadership.regional_head_tag_missing", "leadership.regional_head_remove"} <= actions
    assert db.query(Tag).filter(Tag.name == TAG_REGIONAL_HEAD).count() == 0


def test_structure_is_scoped_to_caller(client, db, regions, make_member, manager, login):
    central, kikoni = regions
    head = make_member(db, "HEAD01", region=kikoni)
    kikoni.regional_head_id = head.id
    plain = make_member(db, "MEM001", region=kikoni)
    family = FamilyGroup(name="Emmaus", region_id=kikoni.id, family_head_id=head.id)
    db.add(family)
    db.flush()
    db.add(FamilyMember(family_id=family.id, member_id=plain.id))
    db.add(MinistryTeam(name="Worship", leader_id=plain.id))
    db.commit()

    login("MGR001")
    r = client.get("/leadership/structure")
    assert r.status_code == 200
    assert [x["name"] for x in r.json["regions"]] == ["CENTRAL (HALLS OF RESIDENTS)", "KIKONI"]
    assert r.json["stats"]["totalTeams"] == 1
    assert r.json["stats"]["totalFamilies"] == 1

    r = client.get("/leadership/stats")
    assert r.json["regionalHeads"] == 1
    assert r.json["familyHeads"] == 1
    assert r.json["teamLeaders"] == 1

    client.post("/auth/logout")
    login("HEAD01")
    r = client.get("/leadership/structure")
    assert [x["name"] for x in r.json["regions"]] == ["KIKONI"]
    region = r.json["regions"][0]
    assert region["families"][0]["memberCount"] == 1
    assert region["memberCount"] == 2
    assert r.json["ministryTeams"] == []
    assert r.json["stats"]["totalMembers"] == 2

    client.post("/auth/logout")
    login("MEM001")
    assert client.get("/leadership/structure").status_code == 403
