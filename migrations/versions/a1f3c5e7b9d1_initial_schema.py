"""Initial fellowship schema.

Revision ID: a1f3c5e7b9d1
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "a1f3c5e7b9d1"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # ---------- Reference data ----------
    op.create_table(
        "colleges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "courses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("college_id", sa.Integer(), nullable=False),
        sa.Column("duration_years", sa.Integer(), nullable=False, server_default="3"),
        sa.ForeignKeyConstraint(["college_id"], ["colleges.id"], ondelete="RESTRICT"),
    )
    op.create_table(
        "residences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(32), nullable=False, server_default="HALL"),
        sa.UniqueConstraint("name"),
    )

    # regions.regional_head_id -> members.id is added once members exists
    op.create_table(
        "regions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("regional_head_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name"),
        sa.UniqueConstraint("regional_head_id"),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("fellowship_number", sa.String(32), nullable=False),
        sa.Column("qr_code", sa.String(64), nullable=False),
        sa.Column("full_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("role", sa.String(32), nullable=False, server_default="MEMBER"),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("course_id", sa.Integer(), nullable=True),
        sa.Column("initial_year_of_study", sa.Integer(), nullable=True),
        sa.Column("initial_semester", sa.Integer(), nullable=True),
        sa.Column("residence_id", sa.Integer(), nullable=True),
        sa.Column("hostel_name", sa.String(100), nullable=True),
        sa.Column("region_id", sa.Integer(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["residence_id"], ["residences.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("fellowship_number"),
        sa.UniqueConstraint("qr_code"),
    )
    op.create_index("idx_members_region_id", "members", ["region_id"])
    op.create_index("idx_members_is_deleted", "members", ["is_deleted"])

    with op.batch_alter_table("regions") as batch:
        batch.create_foreign_key(
            "fk_regions_regional_head_id", "members", ["regional_head_id"], ["id"], ondelete="SET NULL"
        )

    # ---------- Audit / outbox ----------
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_member_id", sa.Integer(), nullable=True),
        sa.Column("actor_fellowship_number", sa.String(32), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["actor_member_id"], ["members.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("body_text", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_notification_outbox_status", "notification_outbox", ["status"])
    op.create_index("idx_notification_outbox_created_at", "notification_outbox", ["created_at"])

    # ---------- Tags ----------
    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("description", sa.String(200), nullable=True),
        sa.Column("type", sa.String(16), nullable=False, server_default="CUSTOM"),
        sa.Column("color", sa.String(7), nullable=False, server_default="#6366f1"),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("show_on_registration", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_member_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["created_by_member_id"], ["members.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("idx_tags_is_system", "tags", ["is_system"])

    op.create_table(
        "member_tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("tag_id", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("assigned_by_member_id", sa.Integer(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.Column("removed_by_member_id", sa.Integer(), nullable=True),
        sa.Column("removed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tag_id"], ["tags.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_by_member_id"], ["members.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["removed_by_member_id"], ["members.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_member_tags_member_id", "member_tags", ["member_id"])
    op.create_index("idx_member_tags_tag_id", "member_tags", ["tag_id"])
    op.create_index("idx_member_tags_expires_at", "member_tags", ["expires_at"])
    op.create_index(
        "uq_member_tags_active",
        "member_tags",
        ["member_id", "tag_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    # ---------- Events / attendance ----------
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
        sa.Column("venue", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("allow_guest_checkin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_events_event_date", "events", ["event_date"])
    op.create_index("idx_events_is_active", "events", ["is_active"])

    op.create_table(
        "attendances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("check_in_time", sa.DateTime(), nullable=False),
        sa.Column("recorded_by_member_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recorded_by_member_id"], ["members.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("member_id", "event_id", name="uq_attendances_member_event"),
    )
    op.create_index("idx_attendances_event_id", "attendances", ["event_id"])

    op.create_table(
        "guest_attendances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("guest_name", sa.String(100), nullable=False),
        sa.Column("guest_phone", sa.String(20), nullable=True),
        sa.Column("purpose", sa.String(200), nullable=True),
        sa.Column("check_in_time", sa.DateTime(), nullable=False),
        sa.Column("recorded_by_member_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recorded_by_member_id"], ["members.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_guest_attendances_event_id", "guest_attendances", ["event_id"])

    op.create_table(
        "event_volunteers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("event_id", "member_id", name="uq_event_volunteers_event_member"),
    )

    # ---------- Profile edit requests ----------
    op.create_table(
        "profile_edit_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("changes", _json(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("reviewed_by_member_id", sa.Integer(), nullable=True),
        sa.Column("review_note", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reviewed_by_member_id"], ["members.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_profile_edit_requests_member_id", "profile_edit_requests", ["member_id"])
    op.create_index("idx_profile_edit_requests_status", "profile_edit_requests", ["status"])
    op.create_index("idx_profile_edit_requests_reviewed_by", "profile_edit_requests", ["reviewed_by_member_id"])
    op.create_index(
        "uq_profile_edit_requests_one_pending",
        "profile_edit_requests",
        ["member_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )

    # ---------- Leadership structures ----------
    op.create_table(
        "family_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=False),
        sa.Column("family_head_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["family_head_id"], ["members.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_family_groups_region_id", "family_groups", ["region_id"])
    op.create_index("idx_family_groups_family_head_id", "family_groups", ["family_head_id"])

    op.create_table(
        "family_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.Column("left_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["family_id"], ["family_groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_family_members_family_id", "family_members", ["family_id"])
    op.create_index("idx_family_members_member_id", "family_members", ["member_id"])

    op.create_table(
        "ministry_teams",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("leader_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["leader_id"], ["members.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "ministry_team_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["team_id"], ["ministry_teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_ministry_team_members_team_id", "ministry_team_members", ["team_id"])
    op.create_index("idx_ministry_team_members_member_id", "ministry_team_members", ["member_id"])


def downgrade() -> None:
    for table in (
        "ministry_team_members",
        "ministry_teams",
        "family_members",
        "family_groups",
        "profile_edit_requests",
        "event_volunteers",
        "guest_attendances",
        "attendances",
        "events",
        "member_tags",
        "tags",
        "notification_outbox",
        "audit_events",
    ):
        op.drop_table(table)
    with op.batch_alter_table("regions") as batch:
        batch.drop_constraint("fk_regions_regional_head_id", type_="foreignkey")
    op.drop_table("members")
    op.drop_table("regions")
    op.drop_table("residences")
    op.drop_table("courses")
    op.drop_table("colleges")
