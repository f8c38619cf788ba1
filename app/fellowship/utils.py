from __future__ import annotations

import re
from datetime import date, datetime, time

from app.fellowship.constants import CIVIL_UTC_OFFSET

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def civil_now(now: datetime | None = None) -> datetime:
    """Naive wall-clock time in East Africa Time. ``now`` is naive UTC."""
    return (now or datetime.utcnow()) + CIVIL_UTC_OFFSET


def parse_hhmm(value: str) -> time:
    m = _HHMM_RE.match((value or "").strip())
    if not m:
        raise ValueError(f"Invalid time format (HH:MM): {value!r}")
    return time(int(m.group(1)), int(m.group(2)))


def is_valid_hhmm(value: str | None) -> bool:
    return isinstance(value, str) and bool(_HHMM_RE.match(value.strip()))


def is_valid_email(value: str | None) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value.strip()))


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD (a full ISO datetime is cut to its date part)."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def event_window(event_date: date, start_time: str, end_time: str) -> tuple[datetime, datetime]:
    return (
        datetime.combine(event_date, parse_hhmm(start_time)),
        datetime.combine(event_date, parse_hhmm(end_time)),
    )


def event_status(event_date: date, start_time: str, end_time: str, now: datetime | None = None) -> str:
    """UPCOMING, ONGOING or PAST relative to civil time, minute precision."""
    local = civil_now(now).replace(second=0, microsecond=0)
    start, end = event_window(event_date, start_time, end_time)
    if local < start:
        return "UPCOMING"
    if local <= end:
        return "ONGOING"
    return "PAST"


def format_region_name(name: str | None) -> str:
    """
    Display form of a region name: uppercase, and the central region is
    labelled as the halls of residence.
    """
    if not name:
        return ""
    upper = name.strip().upper()
    if upper == "CENTRAL":
        return "CENTRAL (HALLS OF RESIDENTS)"
    return upper


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def member_brief(m) -> dict | None:
    if m is None:
        return None
    return {
        "id": m.id,
        "fellowshipNumber": m.fellowship_number,
        "fullName": m.full_name,
        "email": m.email,
        "phoneNumber": m.phone_number,
    }


def parse_int_list(values, path: str) -> tuple[list[int], list[dict]]:
    """Coerce a JSON list of ids to ints, collecting issues instead of raising."""
    from app.fellowship.errors import issue

    if not isinstance(values, list) or not values:
        return [], [issue(path, "Must be a non-empty list")]
    out: list[int] = []
    issues: list[dict] = []
    for i, v in enumerate(values):
        try:
            out.append(int(v))
        except (TypeError, ValueError):
            issues.append(issue(f"{path}.{i}", "Must be an integer id"))
    return out, issues
