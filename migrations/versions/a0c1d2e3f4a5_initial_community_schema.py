"""Initial community schema.

Revision ID: a0c1d2e3f4a5
Revises:
Create Date: 2026-09-28
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0c1d2e3f4a5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PEER_METRIC_COLUMNS = (
    "initiative",
    "communication",
    "cooperation",
    "kindness",
    "perseverance",
    "fitness",
    "playing_skills",
    "in_class_misconduct",
    "out_class_misconduct",
    "literary_science",
    "natural_science",
    "electronic_science",
    "confidence",
    "temper",
    "cheerfulness",
)


def _timestamps(*names: str) -> list[sa.Column]:
    return [sa.Column(n, sa.DateTime(), nullable=False) for n in names]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("student_code", sa.String(16), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="student"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("grade", sa.Integer(), nullable=True),
        sa.Column("class_name", sa.String(8), nullable=True),
        sa.Column("credibility_score", sa.Float(), nullable=False, server_default="50"),
        sa.Column("reputation_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("account_status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("avatar_url", sa.String(1024), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("hobbies", sa.JSON(), nullable=True),
        sa.Column("tendencies", sa.JSON(), nullable=True),
        sa.Column("peer_scores", sa.JSON(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("student_code"),
    )
    op.create_index("idx_users_grade_class", "users", ["grade", "class_name"])
    op.create_index("idx_users_role", "users", ["role"])

    op.create_table(
        "scopes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("grade_number", sa.Integer(), nullable=True),
        sa.Column("section_name", sa.String(16), nullable=True),
        sa.Column("access_code", sa.String(64), nullable=True),
        *_timestamps("created_at"),
        sa.UniqueConstraint("grade_number"),
        sa.UniqueConstraint("section_name"),
    )
    op.create_index("idx_scopes_type", "scopes", ["type"])

    op.create_table(
        "admin_student_ids",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("student_code", sa.String(16), nullable=False),
        sa.Column("grade", sa.Integer(), nullable=False),
        sa.Column("class_name", sa.String(8), nullable=False),
        sa.Column("is_assigned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("assigned_to_user_id", sa.Integer(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=True),
        sa.Column("created_by_admin_id", sa.Integer(), nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["assigned_to_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by_admin_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("student_code"),
    )

    op.create_table(
        "admin_succession",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("previous_admin_id", sa.Integer(), nullable=True),
        sa.Column("new_admin_id", sa.Integer(), nullable=True),
        sa.Column("handover_date", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["previous_admin_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["new_admin_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "password_reset_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("token"),
    )
    op.create_index("ix_password_reset_tokens_user_id", "password_reset_tokens", ["user_id"])

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("key"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_username", sa.String(64), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    op.create_table(
        "digital_keys",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("scope_id", sa.Integer(), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["scope_id"], ["scopes.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "scope_id", name="uq_digital_keys_user_scope"),
    )
    op.create_index("ix_digital_keys_user_id", "digital_keys", ["user_id"])
    op.create_index("ix_digital_keys_scope_id", "digital_keys", ["scope_id"])

    # ---- Feed ----
    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("scope_id", sa.Integer(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("media_storage_key", sa.String(512), nullable=True),
        sa.Column("media_type", sa.String(128), nullable=True),
        sa.Column("media_filename", sa.String(255), nullable=True),
        sa.Column("credibility_rating", sa.Float(), nullable=False, server_default="50"),
        sa.Column("likes_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comments_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["scope_id"], ["scopes.id"]),
    )
    op.create_index("ix_posts_author_id", "posts", ["author_id"])
    op.create_index("idx_posts_scope_created", "posts", ["scope_id", "created_at"])

    op.create_table(
        "post_comments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_post_comments_post_id", "post_comments", ["post_id"])
    op.create_index("ix_post_comments_author_id", "post_comments", ["author_id"])

    op.create_table(
        "post_reactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False, server_default="like"),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("post_id", "user_id", name="uq_post_reactions_post_user"),
    )
    op.create_index("ix_post_reactions_post_id", "post_reactions", ["post_id"])
    op.create_index("ix_post_reactions_user_id", "post_reactions", ["user_id"])

    op.create_table(
        "post_accuracy_ratings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("post_id", "user_id", name="uq_post_accuracy_post_user"),
    )
    op.create_index("ix_post_accuracy_ratings_post_id", "post_accuracy_ratings", ["post_id"])
    op.create_index("ix_post_accuracy_ratings_user_id", "post_accuracy_ratings", ["user_id"])

    # ---- Events ----
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("scope_id", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["scope_id"], ["scopes.id"]),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_events_scope_start", "events", ["scope_id", "start_time"])
    op.create_index("ix_events_created_by_id", "events", ["created_by_id"])

    op.create_table(
        "event_rsvps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_rsvps_event_user"),
    )
    op.create_index("ix_event_rsvps_event_id", "event_rsvps", ["event_id"])
    op.create_index("ix_event_rsvps_user_id", "event_rsvps", ["user_id"])

    op.create_table(
        "event_comments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_event_comments_event_id", "event_comments", ["event_id"])
    op.create_index("ix_event_comments_author_id", "event_comments", ["author_id"])

    op.create_table(
        "schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("scope_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("period_number", sa.Integer(), nullable=False),
        sa.Column("teacher_name", sa.String(128), nullable=True),
        sa.Column("subject", sa.String(128), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["scope_id"], ["scopes.id"]),
        sa.UniqueConstraint("scope_id", "day_of_week", "period_number", name="uq_schedules_slot"),
    )
    op.create_index("ix_schedules_scope_id", "schedules", ["scope_id"])

    # ---- Teachers ----
    op.create_table(
        "teachers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("teacher_code", sa.String(16), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("photo_url", sa.String(1024), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("academic_achievements", sa.JSON(), nullable=True),
        sa.Column("classroom_rules", sa.JSON(), nullable=True),
        sa.Column("is_claimed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id"),
        sa.UniqueConstraint("teacher_code"),
    )

    op.create_table(
        "teacher_reviews",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("teacher_id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("is_moderated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("moderated_by_id", sa.Integer(), nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["teacher_id"], ["teachers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["moderated_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("teacher_id", "student_id", name="uq_teacher_reviews_teacher_student"),
    )
    op.create_index("ix_teacher_reviews_teacher_id", "teacher_reviews", ["teacher_id"])
    op.create_index("ix_teacher_reviews_student_id", "teacher_reviews", ["student_id"])

    # ---- Profiles ----
    op.create_table(
        "peer_ratings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("rated_user_id", sa.Integer(), nullable=False),
        sa.Column("rater_user_id", sa.Integer(), nullable=False),
        *[sa.Column(name, sa.Integer(), nullable=False) for name in PEER_METRIC_COLUMNS],
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["rated_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rater_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("rated_user_id", "rater_user_id", name="uq_peer_ratings_pair"),
    )
    op.create_index("ix_peer_ratings_rated_user_id", "peer_ratings", ["rated_user_id"])
    op.create_index("ix_peer_ratings_rater_user_id", "peer_ratings", ["rater_user_id"])

    op.create_table(
        "profile_comments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("profile_user_id", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["profile_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_profile_comments_profile_user_id", "profile_comments", ["profile_user_id"])
    op.create_index("ix_profile_comments_author_id", "profile_comments", ["author_id"])

    op.create_table(
        "study_sources",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("scope_id", sa.Integer(), nullable=True),
        sa.Column("subject", sa.String(128), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("file_type", sa.String(128), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["scope_id"], ["scopes.id"]),
        sa.UniqueConstraint("storage_key"),
    )
    op.create_index("ix_study_sources_author_id", "study_sources", ["author_id"])
    op.create_index("idx_study_sources_scope_subject", "study_sources", ["scope_id", "subject"])


def downgrade() -> None:
    for table in (
        "study_sources",
        "profile_comments",
        "peer_ratings",
        "teacher_reviews",
        "teachers",
        "schedules",
        "event_comments",
        "event_rsvps",
        "events",
        "post_accuracy_ratings",
        "post_reactions",
        "post_comments",
        "posts",
        "digital_keys",
        "audit_events",
        "settings",
        "password_reset_tokens",
        "admin_succession",
        "admin_student_ids",
        "scopes",
        "users",
    ):
        op.drop_table(table)
