import os
import sys
import uuid
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fellowship.constants import ROLE_FELLOWSHIP_MANAGER, SYSTEM_TAG_DEFAULTS
from app.fellowship.models import Base, Member, Region
from app.fellowship.modules.tags.service import get_or_create_system_tag
from scripts._db_utils import create_script_engine, resolve_database_url, script_session

DEFAULT_REGIONS = ("Central", "Kikoni", "Kikumi kikumi")


def create_schema(*, database_url: str | None = None) -> None:
    """Create all tables directly (development/sqlite only; production uses alembic)."""
    engine = create_script_engine(resolve_database_url(database_url))
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed system tags, default regions and the manager account in an
    idempotent way. Does NOT overwrite an existing manager's password.
    """
    number = (os.environ.get("MANAGER_FELLOWSHIP_NUMBER") or "AAA001").strip().upper()
    email = (os.environ.get("MANAGER_EMAIL") or "manager@fellowship.local").strip().lower()
    password = os.environ.get("MANAGER_PASSWORD") or "change-me"

    with script_session(resolve_database_url(database_url)) as s:
        for name in SYSTEM_TAG_DEFAULTS:
            get_or_create_system_tag(s, name)

        regions = {}
        for name in DEFAULT_REGIONS:
            r = s.query(Region).filter(Region.name == name).one_or_none()
            if not r:
                r = Region(name=name)
                s.add(r)
            regions[name] = r
        s.flush()

        manager = s.query(Member).filter(Member.fellowship_number == number).one_or_none()
        if not manager:
            manager = Member(
                fellowship_number=number,
                qr_code=uuid.uuid4().hex,
                full_name="Fellowship Manager",
                email=email,
                phone_number="+256700000000",
                role=ROLE_FELLOWSHIP_MANAGER,
                password_hash=generate_password_hash(password),
                region_id=regions[DEFAULT_REGIONS[0]].id,
            )
            s.add(manager)
        elif manager.role != ROLE_FELLOWSHIP_MANAGER:
            manager.role = ROLE_FELLOWSHIP_MANAGER

    print("Initialized database (seed_only).")
    print(f"Manager fellowship number: {number}")
    print("Manager password: (from MANAGER_PASSWORD)")


def main() -> None:
    if "--create-schema" in sys.argv[1:]:
        create_schema()
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
