from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.community.models import Base


class Scope(Base):
    __tablename__ = "scopes"
    __table_args__ = (
        Index("idx_scopes_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # global, grade, section
    grade_number: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)  # grade scopes only
    section_name: Mapped[str | None] = mapped_column(String(16), nullable=True, unique=True)  # e.g. "3-B"
    access_code: Mapped[str | None] = mapped_column(String(64), nullable=True)  # null for global
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def parent_grade(self) -> int | None:
        if self.section_name:
            return int(self.section_name.split("-", 1)[0])
        return self.grade_number


class DigitalKey(Base):
    __tablename__ = "digital_keys"
    __table_args__ = (
        UniqueConstraint("user_id", "scope_id", name="uq_digital_keys_user_scope"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    scope_id: Mapped[int] = mapped_column(ForeignKey("scopes.id", ondelete="CASCADE"), nullable=False, index=True)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
