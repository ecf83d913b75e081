from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.community.models import Base


class PeerRating(Base):
    __tablename__ = "peer_ratings"
    __table_args__ = (
        UniqueConstraint("rated_user_id", "rater_user_id", name="uq_peer_ratings_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rated_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rater_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Each metric 1..5
    initiative: Mapped[int] = mapped_column(Integer, nullable=False)
    communication: Mapped[int] = mapped_column(Integer, nullable=False)
    cooperation: Mapped[int] = mapped_column(Integer, nullable=False)
    kindness: Mapped[int] = mapped_column(Integer, nullable=False)
    perseverance: Mapped[int] = mapped_column(Integer, nullable=False)
    fitness: Mapped[int] = mapped_column(Integer, nullable=False)
    playing_skills: Mapped[int] = mapped_column(Integer, nullable=False)
    in_class_misconduct: Mapped[int] = mapped_column(Integer, nullable=False)
    out_class_misconduct: Mapped[int] = mapped_column(Integer, nullable=False)
    literary_science: Mapped[int] = mapped_column(Integer, nullable=False)
    natural_science: Mapped[int] = mapped_column(Integer, nullable=False)
    electronic_science: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    temper: Mapped[int] = mapped_column(Integer, nullable=False)
    cheerfulness: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class ProfileComment(Base):
    __tablename__ = "profile_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    profile_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)  # optional 1..5
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
