"""
Editable profile fields.

Each logical field a member may ask to change is described once: how to read
its current typed value, how to parse a submitted string into that type, how
two values compare, and how an approved value is written back. Diffing and
approval both go through this table, so "1" and 1 can never disagree.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from app.fellowship.models import College, Course, Member, Residence
from app.fellowship.utils import is_valid_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def _same(a: Any, b: Any) -> bool:
    return a == b


def _same_casefold(a: Any, b: Any) -> bool:
    return (a or "").casefold() == (b or "").casefold()


@dataclass(frozen=True)
class EditableField:
    name: str
    read: Callable[[Member], Any]
    parse: Callable[["Session", str], Any]
    apply: Callable[[Member, Any], None] | None
    equals: Callable[[Any, Any], bool] = _same

    def render(self, value: Any) -> str:
        return "" if value is None else str(value)

    def snapshot(self, member: Member) -> str:
        return self.render(self.read(member))


# ---------- Parsers ----------

def _text(min_len: int, max_len: int, label: str) -> Callable[["Session", str], str]:
    def parse(_s: "Session", raw: str) -> str:
        value = raw.strip()
        if not (min_len <= len(value) <= max_len):
            raise ValueError(f"{label} must be between {min_len} and {max_len} characters")
        return value

    return parse


def _email(_s: "Session", raw: str) -> str:
    value = raw.strip()
    if not is_valid_email(value):
        raise ValueError("Invalid email address")
    return value


def _int_range(lo: int, hi: int, label: str) -> Callable[["Session", str], int]:
    def parse(_s: "Session", raw: str) -> int:
        try:
            value = int(raw.strip())
        except ValueError:
            raise ValueError(f"{label} must be a whole number")
        if not (lo <= value <= hi):
            raise ValueError(f"{label} must be between {lo} and {hi}")
        return value

    return parse


def _existing(model, label: str) -> Callable[["Session", str], int]:
    def parse(s: "Session", raw: str) -> int:
        try:
            value = int(raw.strip())
        except ValueError:
            raise ValueError(f"Invalid {label} id")
        if s.get(model, value) is None:
            raise ValueError(f"{label} not found")
        return value

    return parse


# ---------- Writers ----------

def _setter(attr: str) -> Callable[[Member, Any], None]:
    def apply(member: Member, value: Any) -> None:
        setattr(member, attr, value)

    return apply


def _read_college_id(m: Member) -> int | None:
    return m.course.college_id if m.course is not None else None


EDITABLE_FIELDS: dict[str, EditableField] = {
    f.name: f
    for f in (
        EditableField("phoneNumber", lambda m: m.phone_number, _text(5, 20, "Phone number"), _setter("phone_number")),
        EditableField("fullName", lambda m: m.full_name, _text(2, 100, "Full name"), _setter("full_name")),
        EditableField("email", lambda m: m.email, _email, _setter("email"), equals=_same_casefold),
        EditableField("courseId", lambda m: m.course_id, _existing(Course, "Course"), _setter("course_id")),
        # The course already determines the college; kept for the reviewer's context only.
        EditableField("collegeId", _read_college_id, _existing(College, "College"), None),
        EditableField(
            "initialYearOfStudy",
            lambda m: m.initial_year_of_study,
            _int_range(1, 10, "Year of study"),
            _setter("initial_year_of_study"),
        ),
        EditableField(
            "initialSemester",
            lambda m: m.initial_semester,
            _int_range(1, 2, "Semester"),
            _setter("initial_semester"),
        ),
        EditableField("residenceId", lambda m: m.residence_id, _existing(Residence, "Residence"), _setter("residence_id")),
        EditableField("hostelName", lambda m: m.hostel_name, _text(1, 100, "Hostel name"), _setter("hostel_name")),
    )
}

FIELD_NAMES = tuple(EDITABLE_FIELDS)


def snapshot_member(member: Member) -> dict[str, str]:
    """Flat string view of every editable field (empty string for unset)."""
    return {name: f.snapshot(member) for name, f in EDITABLE_FIELDS.items()}
