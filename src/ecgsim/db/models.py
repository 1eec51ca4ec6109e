"""ORM models for the gamification tables.

``profiles`` is owned by the account subsystem; it is mapped here read-only
with extend_existing=True so the engine can read account age, display name
and practice context.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ecgsim.db.base import Base


# ---------------------------------------------------------------------------
# Profiles (external collaborator)
# ---------------------------------------------------------------------------


class Profile(Base):
    """Maps to the 'profiles' table of the account subsystem."""

    __tablename__ = "profiles"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    full_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    hospital_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class GamificationConfigRow(Base):
    """Singleton row (id='default') with the admin-tunable game parameters."""

    __tablename__ = "gamification_config"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[str] = mapped_column(String(32), primary_key=True, server_default="default")
    xp_per_ecg_base: Mapped[int] = mapped_column(Integer, nullable=False, server_default="10")
    xp_per_score_point: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.5")
    xp_difficulty_multipliers: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, server_default='{"easy": 0.8, "medium": 1.0, "hard": 1.3}'
    )
    xp_streak_bonus_per_day: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.5")
    xp_streak_bonus_max: Mapped[int] = mapped_column(Integer, nullable=False, server_default="15")
    xp_perfect_bonus: Mapped[int] = mapped_column(Integer, nullable=False, server_default="25")
    level_multiplier_per_level: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.002525")
    max_level: Mapped[int] = mapped_column(Integer, nullable=False, server_default="100")
    xp_per_level_base: Mapped[int] = mapped_column(Integer, nullable=False, server_default="100")
    xp_per_level_growth: Mapped[float] = mapped_column(Float, nullable=False, server_default="1.15")
    event_2x_bonus: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.125")
    event_3x_bonus: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.25")
    streak_grace_period_hours: Mapped[int] = mapped_column(Integer, nullable=False, server_default="36")
    inactivity_email_days: Mapped[list[int]] = mapped_column(JSONB, nullable=False, server_default="[7, 30, 60]")
    inactivity_event_duration_hours: Mapped[int] = mapped_column(Integer, nullable=False, server_default="24")
    ranking_top_n_visible: Mapped[int] = mapped_column(Integer, nullable=False, server_default="10")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)


# ---------------------------------------------------------------------------
# Per-user stats
# ---------------------------------------------------------------------------


class UserGamificationStatsRow(Base):
    """Denormalized gamification aggregate: single row per user.

    ``version`` is bumped on every write; updates compare-and-swap on it.
    """

    __tablename__ = "user_gamification_stats"
    __table_args__ = (
        CheckConstraint("total_xp >= 0", name="ugs_total_xp_non_negative"),
        CheckConstraint("longest_streak >= current_streak", name="ugs_longest_ge_current"),
        {"extend_existing": True},
    )

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_ecgs_completed: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    total_perfect_scores: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    perfect_streak: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    ecgs_today: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    ecgs_by_difficulty: Mapped[dict[str, int]] = mapped_column(JSONB, nullable=False, server_default="{}")
    perfect_by_difficulty: Mapped[dict[str, int]] = mapped_column(JSONB, nullable=False, server_default="{}")
    correct_by_category: Mapped[dict[str, int]] = mapped_column(JSONB, nullable=False, server_default="{}")
    correct_by_finding: Mapped[dict[str, int]] = mapped_column(JSONB, nullable=False, server_default="{}")
    ecgs_by_context: Mapped[dict[str, int]] = mapped_column(JSONB, nullable=False, server_default="{}")
    events_participated: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# XP events
# ---------------------------------------------------------------------------


class XPEventRow(Base):
    """Time-boxed additive XP multiplier, global or user-specific."""

    __tablename__ = "xp_events"
    __table_args__ = (
        CheckConstraint("start_at < end_at", name="xp_events_window_order"),
        CheckConstraint(
            "target_type = 'all' OR target_user_id IS NOT NULL",
            name="xp_events_user_specific_has_target",
        ),
        {"extend_existing": True},
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    multiplier_type: Mapped[str] = mapped_column(String(4), nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    target_type: Mapped[str] = mapped_column(String(16), nullable=False, server_default="all")
    target_user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


class UserXPEventRow(Base):
    """User ↔ event enrolment / participation: UNIQUE(user_id, event_id)."""

    __tablename__ = "user_xp_events"
    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="user_xp_events_user_id_event_id_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("xp_events.id", ondelete="CASCADE"), nullable=False
    )
    participated: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))

    event: Mapped[XPEventRow] = relationship("XPEventRow", lazy="joined")


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class AchievementRow(Base):
    """Achievement definitions: rule lives in ``unlock_conditions`` JSONB."""

    __tablename__ = "achievements"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, server_default="common")
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    unlock_conditions: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


class UserAchievementRow(Base):
    """Achievements earned by users: UNIQUE(user_id, achievement_id) prevents duplicates."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="user_achievements_user_id_achievement_id_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    achievement_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False
    )
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notified: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
