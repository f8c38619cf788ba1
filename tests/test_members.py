"""Tests for member registration and soft delete."""
from datetime import date, datetime

import pytest

from app.fellowship.constants import TAG_PENDING_FIRST_ATTENDANCE
from app.fellowship.errors import ConflictError, NotFoundError, ValidationError
from app.fellowship.models import AuditEvent, Member, NotificationOutbox
from app.fellowship.modules.attendance.models import Event
from app.fellowship.modules.attendance.service import check_in
from app.fellowship.modules.members.service import (
    generate_fellowship_number,
    next_fellowship_number,
    register_member,
    soft_delete_member,
)
from app.fellowship.modules.tags.models import MemberTag
from app.fellowship.modules.tags.service import has_active_tag

NOW = datetime(2026, 3, 1, 9, 0)


@pytest.fixture()
def notifier(app):
    return app.extensions["notifier"]


@pytest.fixture()
def region(db, make_region):
    r = make_region(db, "Kikoni")
    db.commit()
    return r


def _payload(region, **overrides):
    payload = {
        "fullName": " Sarah Nakato ",
        "email": "sarah@example.com",
        "phoneNumber": "+256700123456",
        "regionId": region.id,
        "initialYearOfStudy": 1,
    }
    payload.update(overrides)
    return payload


@pytest.mark.parametrize(
    "last, expected",
    [
        (None, "AAA001"),
        ("AAA001", "AAA002"),
        ("AAA999", "AAB001"),
        ("AZZ999", "BAA001"),
        ("not-a-number", "AAA001"),
    ],
)
def test_next_fellowship_number(last, expected):
    assert next_fellowship_number(last) == expected


def test_generate_skips_irregular_numbers(db, make_member):
    assert generate_fellowship_number(db) == "AAA001"
    make_member(db, "ABC041")
    make_member(db, "zz-legacy-9")
    db.commit()
    assert generate_fellowship_number(db) == "ABC042"


def test_register_member_starts_pending_first_attendance(db, region, manager, notifier):
    m = register_member(db, _payload(region), manager, notifier=notifier, now=NOW)

    db.expire_all()
    m = db.get(Member, m.id)
    # follows the highest standard number, the manager's MGR001
    assert m.fellowship_number == "MGR002"
    assert m.full_name == "Sarah Nakato"
    assert m.region_id == region.id
    assert m.role == "MEMBER"
    assert len(m.qr_code) == 32
    assert m.is_deleted is False

    row = db.query(MemberTag).filter(MemberTag.member_id == m.id).one()
    assert row.is_active is True
    assert row.assigned_by_member_id == m.id
    assert row.tag.name == TAG_PENDING_FIRST_ATTENDANCE

    ev = db.query(AuditEvent).filter(AuditEvent.action == "member.register").one()
    assert ev.actor_member_id == manager.id
    outbox = db.query(NotificationOutbox).one()
    assert outbox.kind == "member.welcome"
    assert outbox.email == "sarah@example.com"
    assert "MGR002" in outbox.body_text


def test_first_check_in_clears_registration_tag(db, region, manager, notifier):
    m = register_member(db, _payload(region), manager, notifier=notifier, now=NOW)
    e = Event(
        name="Tuesday Fellowship",
        type="TUESDAY_FELLOWSHIP",
        event_date=date(2026, 3, 3),
        start_time="18:00",
        end_time="20:00",
        is_active=True,
    )
    db.add(e)
    db.commit()

    check_in(
        db,
        {"fellowshipNumber": m.fellowship_number, "eventId": e.id, "method": "MANUAL"},
        manager,
        now=datetime(2026, 3, 3, 16, 0),
    )
    assert has_active_tag(db, m.id, TAG_PENDING_FIRST_ATTENDANCE) is False


def test_register_validation(db, region, make_member, manager, notifier):
    with pytest.raises(ValidationError) as exc:
        register_member(
            db,
            {"fullName": "S", "email": 5, "phoneNumber": "+256700123456", "regionId": 9999, "initialSemester": 3},
            manager,
            notifier=notifier,
        )
    paths = {d["path"] for d in exc.value.details}
    assert paths == {"fullName", "email", "regionId", "initialSemester"}

    make_member(db, "MEM001", email="Sarah@Example.com")
    db.commit()
    with pytest.raises(ConflictError):
        register_member(db, _payload(region), manager, notifier=notifier)
    assert db.query(Member).count() == 2
    assert db.query(MemberTag).count() == 0


def test_soft_delete_member(db, make_member, manager):
    m = make_member(db, "MEM001")
    db.commit()

    soft_delete_member(db, m.id, manager, now=NOW)

    db.expire_all()
    m = db.get(Member, m.id)
    assert m.is_deleted is True
    assert m.deleted_at == NOW
    assert db.query(AuditEvent).filter(AuditEvent.action == "member.soft_delete").count() == 1

    with pytest.raises(NotFoundError):
        soft_delete_member(db, m.id, manager)
    with pytest.raises(ValidationError) as exc:
        soft_delete_member(db, manager.id, manager)
    assert exc.value.message == "You cannot delete your own account"


def test_regional_head_cannot_be_deleted(db, make_member, make_region, manager):
    head = make_member(db, "HEAD01")
    make_region(db, "Central", head=head)
    db.commit()

    with pytest.raises(ConflictError) as exc:
        soft_delete_member(db, head.id, manager)
    assert "CENTRAL (HALLS OF RESIDENTS)" in exc.value.message
    db.expire_all()
    assert db.get(Member, head.id).is_deleted is False


def test_register_and_delete_routes(client, db, region, make_member, manager, login):
    make_member(db, "MEM001")
    db.commit()

    login("MEM001")
    assert client.post("/members", json=_payload(region)).status_code == 403

    client.post("/auth/logout")
    login("MGR001")
    r = client.post("/members", json=_payload(region))
    assert r.status_code == 201
    number = r.json["fellowshipNumber"]
    member_id = r.json["id"]
    assert r.json["fullName"] == "Sarah Nakato"

    r = client.post("/members", json=_payload(region, email="other@example.com", fullName=5))
    assert r.status_code == 400
    assert r.json["details"][0]["path"] == "fullName"

    r = client.delete(f"/members/{member_id}")
    assert r.status_code == 200
    assert client.delete(f"/members/{member_id}").status_code == 404

    client.post("/auth/logout")
    r = client.post("/auth/login", json={"fellowshipNumber": number, "password": number})
    assert r.status_code == 401


def test_registered_member_can_sign_in(client, region, manager, login):
    login("MGR001")
    number = client.post("/members", json=_payload(region)).json["fellowshipNumber"]
    client.post("/auth/logout")

    r = login(number, password=number)
    assert r.json["role"] == "MEMBER"
