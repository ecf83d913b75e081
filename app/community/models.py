from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.community.constants import CREDIBILITY_DEFAULT, ROLE_ADMIN, ROLE_STUDENT, STATUS_ACTIVE


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_grade_class", "grade", "class_name"),
        Index("idx_users_role", "role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    student_code: Mapped[str | None] = mapped_column(String(16), nullable=True, unique=True)

    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_STUDENT)  # student, admin
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    grade: Mapped[int | None] = mapped_column(Integer, nullable=True)
    class_name: Mapped[str | None] = mapped_column(String(8), nullable=True)  # e.g. "A"

    credibility_score: Mapped[float] = mapped_column(Float, nullable=False, default=CREDIBILITY_DEFAULT)
    reputation_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    account_status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ACTIVE)

    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    hobbies: Mapped[list | None] = mapped_column(JSON, nullable=True)
    tendencies: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # chart metric -> 0..10
    peer_scores: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # peer metric -> mean 1..5

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class AdminStudentId(Base):
    """
    Admin-issued registration ticket: a student may register only with a matching,
    unassigned record. Grade/class come from here.
    """

    __tablename__ = "admin_student_ids"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    student_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    class_name: Mapped[str] = mapped_column(String(8), nullable=False)

    is_assigned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_to_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_by_admin_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class AdminSuccession(Base):
    __tablename__ = "admin_succession"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    previous_admin_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    new_admin_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    handover_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Setting(Base):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table generic; module tables refer to it by entity_type/entity_id.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_username: Mapped[str | None] = mapped_column(String(64), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "scope.unlock"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Post"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.community.modules.scopes.models import DigitalKey, Scope  # noqa: E402,F401
from app.community.modules.posts.models import Post, PostAccuracyRating, PostComment, PostReaction  # noqa: E402,F401
from app.community.modules.events.models import Event, EventComment, EventRsvp  # noqa: E402,F401
from app.community.modules.schedules.models import Schedule  # noqa: E402,F401
from app.community.modules.teachers.models import Teacher, TeacherReview  # noqa: E402,F401
from app.community.modules.profiles.models import PeerRating, ProfileComment  # noqa: E402,F401
from app.community.modules.study_sources.models import StudySource  # noqa: E402,F401
