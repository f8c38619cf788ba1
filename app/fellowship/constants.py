"""
Central constants for the fellowship application.
"""
from __future__ import annotations

from datetime import timedelta

# Roles
ROLE_MEMBER = "MEMBER"
ROLE_FELLOWSHIP_MANAGER = "FELLOWSHIP_MANAGER"
VALID_ROLES = frozenset({ROLE_MEMBER, ROLE_FELLOWSHIP_MANAGER})

# Event times are civil East Africa Time (UTC+3), no DST
CIVIL_UTC_OFFSET = timedelta(hours=3)

# System tags managed by workflows
TAG_REGIONAL_HEAD = "REGIONAL_HEAD"
TAG_PENDING_FIRST_ATTENDANCE = "PENDING_FIRST_ATTENDANCE"
TAG_CHECK_IN_VOLUNTEER = "CHECK_IN_VOLUNTEER"

SYSTEM_TAG_DEFAULTS = {
    TAG_REGIONAL_HEAD: ("Regional Head", "#8b5cf6"),
    TAG_PENDING_FIRST_ATTENDANCE: ("Registered, has not attended yet", "#f59e0b"),
    TAG_CHECK_IN_VOLUNTEER: ("Can operate event check-in", "#10b981"),
}

DEFAULT_TAG_COLOR = "#6366f1"

TAG_TYPE_SYSTEM = "SYSTEM"
TAG_TYPE_CUSTOM = "CUSTOM"
