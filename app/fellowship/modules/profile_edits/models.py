from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fellowship.models import Base, Member


STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
REQUEST_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


class ProfileEditRequest(Base):
    __tablename__ = "profile_edit_requests"
    __table_args__ = (
        Index("idx_profile_edit_requests_member_id", "member_id"),
        Index("idx_profile_edit_requests_status", "status"),
        Index("idx_profile_edit_requests_reviewed_by", "reviewed_by_member_id"),
        # One open request per member
        Index(
            "uq_profile_edit_requests_one_pending",
            "member_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)

    # Ordered [{"field", "oldValue", "newValue"}], captured at submission
    changes: Mapped[list] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    reviewed_by_member_id: Mapped[int | None] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    member: Mapped[Member] = relationship(foreign_keys=[member_id])
    reviewer: Mapped[Member | None] = relationship(foreign_keys=[reviewed_by_member_id])
