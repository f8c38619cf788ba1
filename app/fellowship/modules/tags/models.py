from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fellowship.constants import DEFAULT_TAG_COLOR, TAG_TYPE_CUSTOM
from app.fellowship.models import Base, Member


class Tag(Base):
    __tablename__ = "tags"
    __table_args__ = (Index("idx_tags_is_system", "is_system"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String(200), nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=TAG_TYPE_CUSTOM)  # SYSTEM, CUSTOM
    color: Mapped[str] = mapped_column(String(7), nullable=False, default=DEFAULT_TAG_COLOR)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    show_on_registration: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_member_id: Mapped[int | None] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)

    member_tags: Mapped[list["MemberTag"]] = relationship(back_populates="tag")


class MemberTag(Base):
    """
    One assignment of a tag to a member.

    Rows are never deleted: removal and expiry flip ``is_active`` and stamp the
    removal columns. Re-assignment inserts a fresh row, so the partial unique
    index only covers active rows.
    """

    __tablename__ = "member_tags"
    __table_args__ = (
        Index("idx_member_tags_member_id", "member_id"),
        Index("idx_member_tags_tag_id", "tag_id"),
        Index("idx_member_tags_expires_at", "expires_at"),
        Index(
            "uq_member_tags_active",
            "member_id",
            "tag_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    assigned_by_member_id: Mapped[int | None] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    removed_by_member_id: Mapped[int | None] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    tag: Mapped[Tag] = relationship(back_populates="member_tags")
    member: Mapped[Member] = relationship(foreign_keys=[member_id])
    assigned_by: Mapped[Member | None] = relationship(foreign_keys=[assigned_by_member_id])
    removed_by: Mapped[Member | None] = relationship(foreign_keys=[removed_by_member_id])

    def is_current(self, now: datetime) -> bool:
        """Active and not past its expiry."""
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > now
