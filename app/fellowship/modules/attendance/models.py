from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fellowship.models import Base, Member


EVENT_TYPES = ("TUESDAY_FELLOWSHIP", "THURSDAY_PHANEROO")
CHECKIN_METHODS = ("QR", "FELLOWSHIP_NUMBER", "MANUAL")


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_event_date", "event_date"),
        Index("idx_events_is_active", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # TUESDAY_FELLOWSHIP, THURSDAY_PHANEROO

    # Civil date and HH:MM window in East Africa Time
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    venue: Mapped[str | None] = mapped_column(String(200), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_guest_checkin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    attendances: Mapped[list["Attendance"]] = relationship(back_populates="event", cascade="all, delete-orphan")
    guest_attendances: Mapped[list["GuestAttendance"]] = relationship(back_populates="event", cascade="all, delete-orphan")
    volunteers: Mapped[list["EventVolunteer"]] = relationship(back_populates="event", cascade="all, delete-orphan")


class Attendance(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("member_id", "event_id", name="uq_attendances_member_event"),
        Index("idx_attendances_event_id", "event_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="RESTRICT"), nullable=False)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)  # QR, FELLOWSHIP_NUMBER, MANUAL
    check_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    recorded_by_member_id: Mapped[int | None] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)

    event: Mapped[Event] = relationship(back_populates="attendances")
    member: Mapped[Member] = relationship(foreign_keys=[member_id])


class GuestAttendance(Base):
    """Walk-in guest; no member identity, so no uniqueness per event."""

    __tablename__ = "guest_attendances"
    __table_args__ = (Index("idx_guest_attendances_event_id", "event_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    guest_name: Mapped[str] = mapped_column(String(100), nullable=False)
    guest_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    purpose: Mapped[str | None] = mapped_column(String(200), nullable=True)
    check_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    recorded_by_member_id: Mapped[int | None] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)

    event: Mapped[Event] = relationship(back_populates="guest_attendances")


class EventVolunteer(Base):
    __tablename__ = "event_volunteers"
    __table_args__ = (UniqueConstraint("event_id", "member_id", name="uq_event_volunteers_event_member"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    event: Mapped[Event] = relationship(back_populates="volunteers")
    member: Mapped[Member] = relationship()
