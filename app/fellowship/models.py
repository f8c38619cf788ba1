from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.fellowship.constants import ROLE_FELLOWSHIP_MANAGER, ROLE_MEMBER


class Base(DeclarativeBase):
    pass


class College(Base):
    __tablename__ = "colleges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True)

    courses: Mapped[list["Course"]] = relationship(back_populates="college")


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    college_id: Mapped[int] = mapped_column(ForeignKey("colleges.id", ondelete="RESTRICT"), nullable=False)
    duration_years: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    college: Mapped[College] = relationship(back_populates="courses")


class Residence(Base):
    __tablename__ = "residences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="HALL")  # HALL, HOSTEL, OTHER


class Region(Base):
    __tablename__ = "regions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    # At most one region per head; the circular FK is created after both tables exist.
    regional_head_id: Mapped[int | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL", use_alter=True, name="fk_regions_regional_head_id"),
        nullable=True,
        unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    regional_head: Mapped[Optional["Member"]] = relationship(
        "Member",
        foreign_keys=[regional_head_id],
        post_update=True,
    )


class Member(Base):
    __tablename__ = "members"
    __table_args__ = (
        Index("idx_members_region_id", "region_id"),
        Index("idx_members_is_deleted", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fellowship_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    qr_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)

    role: Mapped[str] = mapped_column(String(32), nullable=False, default=ROLE_MEMBER)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Academic
    course_id: Mapped[int | None] = mapped_column(ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    initial_year_of_study: Mapped[int | None] = mapped_column(Integer, nullable=True)
    initial_semester: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Residence
    residence_id: Mapped[int | None] = mapped_column(ForeignKey("residences.id", ondelete="SET NULL"), nullable=True)
    hostel_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    region_id: Mapped[int | None] = mapped_column(ForeignKey("regions.id", ondelete="SET NULL"), nullable=True)

    # Soft delete: rows stay referenced by attendance/tags/requests
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    course: Mapped[Course | None] = relationship()
    residence: Mapped[Residence | None] = relationship()
    region: Mapped[Region | None] = relationship(foreign_keys=[region_id])
    headed_region: Mapped[Region | None] = relationship(
        "Region",
        foreign_keys="Region.regional_head_id",
        uselist=False,
        viewonly=True,
    )

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_FELLOWSHIP_MANAGER


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module-specific tables can refer to it by id if needed.
    """

    __tablename__ = "audit_events"
    __table_args__ = (Index("idx_audit_events_entity", "entity_type", "entity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_member_id: Mapped[int | None] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)
    actor_fellowship_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "edit_request.approve"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "ProfileEditRequest"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


class NotificationOutbox(Base):
    """
    Outbound email queue. Rows are written after the business transaction
    commits and drained by scripts/send_notifications.py.
    """

    __tablename__ = "notification_outbox"
    __table_args__ = (
        Index("idx_notification_outbox_status", "status"),
        Index("idx_notification_outbox_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body_text: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "edit_request.submitted"

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")  # PENDING, PROCESSING, COMPLETED, FAILED
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.fellowship.modules.tags.models import MemberTag, Tag  # noqa: E402,F401
from app.fellowship.modules.attendance.models import (  # noqa: E402,F401
    Attendance,
    Event,
    EventVolunteer,
    GuestAttendance,
)
from app.fellowship.modules.profile_edits.models import ProfileEditRequest  # noqa: E402,F401
from app.fellowship.modules.leadership.models import (  # noqa: E402,F401
    FamilyGroup,
    FamilyMember,
    MinistryTeam,
    MinistryTeamMember,
)
