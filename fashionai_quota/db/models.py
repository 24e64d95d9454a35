"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations
(input_data is the one opaque JSONB payload).
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class UserCredits(Base):
    """
    ORM model for user_credits table.

    One row per user; reset in place each day, never deleted.
    """

    __tablename__ = "user_credits"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    credits_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    credits_total: Mapped[int] = mapped_column(Integer, nullable=False)
    plan_tier: Mapped[str] = mapped_column(String(20), nullable=False, default="free")

    last_reset: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_reset: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="ck_credits_remaining_non_negative"),
        CheckConstraint("credits_total > 0", name="ck_credits_total_positive"),
        CheckConstraint(
            "credits_remaining <= credits_total", name="ck_credits_remaining_within_total"
        ),
        CheckConstraint(
            "plan_tier IN ('free', 'pro', 'elite')", name="ck_user_credits_plan_tier"
        ),
        Index("idx_user_credits_next_reset", "next_reset"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UserCredits(user_id={self.user_id}, plan_tier={self.plan_tier}, "
            f"credits={self.credits_remaining}/{self.credits_total})>"
        )


class GenerationHistory(Base):
    """
    ORM model for generation_history table.

    Append-only log of generation attempts, used for analytics.
    """

    __tablename__ = "generation_history"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    generation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    input_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    result_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_used >= 0", name="ck_generation_credits_non_negative"),
        Index("idx_generation_history_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<GenerationHistory(id={self.id}, user_id={self.user_id}, "
            f"type={self.generation_type}, credits={self.credits_used})>"
        )
