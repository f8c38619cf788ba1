"""Tests for profile edit requests."""
import pytest

from app.fellowship.errors import AuthorizationError, ConflictError, ValidationError
from app.fellowship.models import AuditEvent, College, Course, Member, NotificationOutbox
from app.fellowship.modules.profile_edits.models import ProfileEditRequest
from app.fellowship.modules.profile_edits.service import review_edit_request, submit_edit_request

REASON = "My name was misspelled at registration"


@pytest.fixture()
def notifier(app):
    return app.extensions["notifier"]


@pytest.fixture()
def people(db, make_member, make_region):
    region = make_region(db, "Kikoni")
    other = make_region(db, "Central")
    head = make_member(db, "HEAD01", full_name="Ruth Head", region=region)
    region.regional_head_id = head.id
    other_head = make_member(db, "HEAD02", full_name="Paul Head", region=other)
    other.regional_head_id = other_head.id
    member = make_member(db, "MEM001", full_name="Jon Okelo", region=region, initial_year_of_study=2)
    db.commit()
    return {"region": region, "head": head, "other_head": other_head, "member": member}


def _submit(db, member, notifier, changes=None):
    payload = {"changes": changes or [{"field": "fullName", "newValue": "John Okello"}], "reason": REASON}
    return submit_edit_request(db, member, payload, notifier=notifier)


def test_submit_records_diff_and_notifies_head(db, people, notifier):
    req = _submit(db, people["member"], notifier)

    assert req.status == "PENDING"
    assert req.changes == [{"field": "fullName", "oldValue": "Jon Okelo", "newValue": "John Okello"}]
    db.expire_all()
    outbox = db.query(NotificationOutbox).one()
    assert outbox.email == "head01@example.com"
    assert outbox.kind == "edit_request.submitted"
    assert "John Okello" in outbox.body_text


def test_second_pending_request_conflicts(db, people, notifier):
    first = _submit(db, people["member"], notifier)

    with pytest.raises(ConflictError):
        _submit(db, people["member"], notifier, changes=[{"field": "phoneNumber", "newValue": "+256711111111"}])

    rows = db.query(ProfileEditRequest).all()
    assert [r.id for r in rows] == [first.id]
    assert rows[0].changes[0]["field"] == "fullName"


def test_no_op_changes_are_rejected(db, people, notifier):
    member = people["member"]
    with pytest.raises(ValidationError) as exc:
        _submit(
            db,
            member,
            notifier,
            changes=[
                {"field": "fullName", "newValue": "  Jon Okelo "},
                {"field": "initialYearOfStudy", "newValue": "2"},
                {"field": "email", "newValue": "MEM001@EXAMPLE.COM"},
            ],
        )
    assert exc.value.message.startswith("No actual changes detected")
    assert db.query(ProfileEditRequest).count() == 0


def test_no_op_entries_are_dropped(db, people, notifier):
    req = _submit(
        db,
        people["member"],
        notifier,
        changes=[
            {"field": "initialYearOfStudy", "newValue": "2"},
            {"field": "initialSemester", "newValue": "1"},
        ],
    )
    assert req.changes == [{"field": "initialSemester", "oldValue": "", "newValue": "1"}]


def test_submit_validation(db, people, notifier):
    member = people["member"]
    with pytest.raises(ValidationError) as exc:
        submit_edit_request(
            db,
            member,
            {"changes": [{"field": "role", "newValue": "FELLOWSHIP_MANAGER"}], "reason": "short"},
            notifier=notifier,
        )
    paths = {d["path"] for d in exc.value.details}
    assert paths == {"changes.0.field", "reason"}

    with pytest.raises(ValidationError):
        _submit(db, member, notifier, changes=[{"field": "initialYearOfStudy", "newValue": "11"}])
    with pytest.raises(ValidationError):
        _submit(db, member, notifier, changes=[{"field": "courseId", "newValue": "999"}])


def test_approve_applies_changes(db, people, notifier):
    req = _submit(db, people["member"], notifier)

    review_edit_request(db, req.id, people["head"], {"status": "APPROVED", "reviewNote": "Looks right"}, notifier=notifier)

    db.expire_all()
    member = db.get(Member, people["member"].id)
    assert member.full_name == "John Okello"
    req = db.get(ProfileEditRequest, req.id)
    assert req.status == "APPROVED"
    assert req.reviewed_by_member_id == people["head"].id
    assert req.reviewed_at is not None
    assert db.query(AuditEvent).filter(AuditEvent.action == "edit_request.approve").count() == 1
    kinds = sorted(o.kind for o in db.query(NotificationOutbox))
    assert kinds == ["edit_request.decision", "edit_request.submitted"]


def test_approve_resolves_reference_fields(db, people, notifier):
    college = College(name="CoCIS", code="COCIS")
    db.add(college)
    db.flush()
    course = Course(name="Computer Science", college_id=college.id)
    db.add(course)
    db.commit()

    req = _submit(db, people["member"], notifier, changes=[{"field": "courseId", "newValue": str(course.id)}])
    review_edit_request(db, req.id, people["head"], {"status": "APPROVED"}, notifier=notifier)

    db.expire_all()
    assert db.get(Member, people["member"].id).course_id == course.id


def test_reject_leaves_member_unchanged(db, people, notifier):
    req = _submit(db, people["member"], notifier)

    review_edit_request(db, req.id, people["head"], {"status": "REJECTED", "reviewNote": "Use your ID name"}, notifier=notifier)

    db.expire_all()
    assert db.get(Member, people["member"].id).full_name == "Jon Okelo"
    req = db.get(ProfileEditRequest, req.id)
    assert req.status == "REJECTED"
    assert req.review_note == "Use your ID name"


def test_second_review_conflicts(db, people, notifier):
    req = _submit(db, people["member"], notifier)
    review_edit_request(db, req.id, people["head"], {"status": "REJECTED"}, notifier=notifier)
    db.expire_all()
    reviewed_at = db.get(ProfileEditRequest, req.id).reviewed_at

    with pytest.raises(ConflictError) as exc:
        review_edit_request(db, req.id, people["head"], {"status": "APPROVED"}, notifier=notifier)
    assert exc.value.message == "This request has already been rejected."

    db.expire_all()
    req = db.get(ProfileEditRequest, req.id)
    assert req.status == "REJECTED"
    assert req.reviewed_at == reviewed_at
    assert db.get(Member, people["member"].id).full_name == "Jon Okelo"


def test_review_after_approval_conflicts(db, people, notifier):
    req = _submit(db, people["member"], notifier)
    review_edit_request(db, req.id, people["head"], {"status": "APPROVED"}, notifier=notifier)
    db.expire_all()
    reviewed_at = db.get(ProfileEditRequest, req.id).reviewed_at

    with pytest.raises(ConflictError) as exc:
        review_edit_request(db, req.id, people["head"], {"status": "REJECTED", "reviewNote": "Too late"}, notifier=notifier)
    assert exc.value.message == "This request has already been approved."

    db.expire_all()
    req = db.get(ProfileEditRequest, req.id)
    assert req.status == "APPROVED"
    assert req.reviewed_at == reviewed_at
    assert req.review_note is None
    assert db.get(Member, people["member"].id).full_name == "John Okello"


def test_reviewer_scope(db, people, manager, notifier):
    req = _submit(db, people["member"], notifier)

    with pytest.raises(AuthorizationError) as exc:
        review_edit_request(db, req.id, people["other_head"], {"status": "APPROVED"}, notifier=notifier)
    assert exc.value.message == "You are not authorized to review this request."

    review_edit_request(db, req.id, manager, {"status": "APPROVED"}, notifier=notifier)
    db.expire_all()
    assert db.get(ProfileEditRequest, req.id).status == "APPROVED"


def test_self_review_forbidden(db, people, notifier):
    head = people["head"]
    req = _submit(db, head, notifier, changes=[{"field": "phoneNumber", "newValue": "+256799999999"}])

    with pytest.raises(AuthorizationError) as exc:
        review_edit_request(db, req.id, head, {"status": "APPROVED"}, notifier=notifier)
    assert exc.value.message == "You cannot review your own edit request."
    db.expire_all()
    assert db.get(ProfileEditRequest, req.id).status == "PENDING"


def test_edit_request_routes(client, db, people, login):
    login("MEM001")
    r = client.post(
        "/members/me/edit-request",
        json={"changes": [{"field": "hostelName", "newValue": "Nana Hostel"}], "reason": REASON},
    )
    assert r.status_code == 201
    request_id = r.json["requestId"]

    r = client.get("/members/me")
    assert r.json["pendingEditRequest"]["id"] == request_id

    r = client.get("/members/edit-requests")
    assert r.status_code == 403

    client.post("/auth/logout")
    login("HEAD02")
    assert client.get("/members/edit-requests").json == []

    client.post("/auth/logout")
    login("HEAD01")
    r = client.get("/members/edit-requests?status=pending")
    assert [x["id"] for x in r.json] == [request_id]
    assert r.json[0]["member"]["region"]["name"] == "KIKONI"

    r = client.get("/members/edit-requests?status=bogus")
    assert r.status_code == 400

    r = client.patch(f"/members/edit-requests/{request_id}", json={"status": "APPROVED"})
    assert r.status_code == 200
    assert r.json["message"] == "Edit request approved successfully."
    assert r.json["request"]["reviewer"]["fullName"] == "Ruth Head"

    db.expire_all()
    assert db.get(Member, people["member"].id).hostel_name == "Nana Hostel"


def test_manager_direct_update(client, db, people, manager, login):
    login("MEM001")
    assert client.patch("/members/me", json={"fullName": "Someone"}).status_code == 403

    client.post("/auth/logout")
    login("MGR001")
    r = client.patch("/members/me", json={"fullName": "Grace M. Manager", "initialSemester": 3})
    assert r.status_code == 400
    assert r.json["details"][0]["path"] == "initialSemester"

    r = client.patch("/members/me", json={"fullName": "Grace M. Manager", "hostelName": ""})
    assert r.status_code == 200
    db.expire_all()
    m = db.get(Member, manager.id)
    assert m.full_name == "Grace M. Manager"
    assert m.hostel_name is None
