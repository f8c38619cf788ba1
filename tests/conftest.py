import uuid

import pytest
from werkzeug.security import generate_password_hash

from app.fellowship import auth, create_app
from app.fellowship.constants import ROLE_FELLOWSHIP_MANAGER, ROLE_MEMBER
from app.fellowship.db import dispose_db
from app.fellowship.models import Base, Member, Region


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "1")
    auth._login_attempts.clear()

    flask_app = create_app()
    engine = flask_app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    yield flask_app
    dispose_db(flask_app)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db(app):
    s = app.extensions["sqlalchemy_sessionmaker"]()
    yield s
    s.close()


def _make_member(
    s,
    number,
    *,
    full_name=None,
    role=ROLE_MEMBER,
    region=None,
    email=None,
    password="pw",
    **fields,
):
    m = Member(
        fellowship_number=number,
        qr_code=uuid.uuid4().hex,
        full_name=full_name or f"Member {number}",
        email=email or f"{number.lower()}@example.com",
        phone_number="+256700000001",
        role=role,
        password_hash=generate_password_hash(password),
        region_id=region.id if region else None,
        **fields,
    )
    s.add(m)
    s.flush()
    return m


@pytest.fixture()
def make_member():
    return _make_member


@pytest.fixture()
def make_region():
    def _make(s, name, head=None):
        r = Region(name=name, regional_head_id=head.id if head else None)
        s.add(r)
        s.flush()
        return r

    return _make


@pytest.fixture()
def manager(db):
    m = _make_member(db, "MGR001", full_name="Grace Manager", role=ROLE_FELLOWSHIP_MANAGER)
    db.commit()
    return m


@pytest.fixture()
def login(client):
    def _login(fellowship_number, password="pw"):
        r = client.post("/auth/login", json={"fellowshipNumber": fellowship_number, "password": password})
        assert r.status_code == 200, r.json
        return r

    return _login
