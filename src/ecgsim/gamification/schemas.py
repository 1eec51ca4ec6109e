"""Pydantic models for the gamification engine.

Everything the pure calculators consume or produce is defined here so the
orchestrator, the repository and the tests share one vocabulary.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator


class Difficulty(StrEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class MultiplierType(StrEnum):
    DOUBLE = "2x"
    TRIPLE = "3x"


class EventTargetType(StrEnum):
    ALL = "all"
    USER_SPECIFIC = "user_specific"


# --- Counters ---


class TagCounts(RootModel[dict[str, int]]):
    """Tag → count map where any missing tag reads as 0."""

    root: dict[str, int] = Field(default_factory=dict)

    def __getitem__(self, tag: str) -> int:
        return self.root.get(tag, 0)

    def __contains__(self, tag: object) -> bool:
        return tag in self.root

    def total(self, tags: Iterable[str]) -> int:
        """Sum of the counts for ``tags`` (unknown tags contribute 0)."""
        return sum(self[t] for t in tags)

    def incremented(self, tags: Iterable[str]) -> TagCounts:
        """Return a copy with each tag in ``tags`` bumped by one."""
        updated = dict(self.root)
        for tag in tags:
            updated[tag] = updated.get(tag, 0) + 1
        return TagCounts(updated)


# --- Config ---


class GamificationConfig(BaseModel):
    """Admin-tunable game parameters. Defaults match the seeded ``default`` row."""

    model_config = ConfigDict(frozen=True)

    id: str = "default"
    xp_per_ecg_base: int = Field(10, ge=0)
    xp_per_score_point: float = Field(0.5, ge=0)
    xp_difficulty_multipliers: dict[str, float] = Field(
        default_factory=lambda: {"easy": 0.8, "medium": 1.0, "hard": 1.3}
    )
    xp_streak_bonus_per_day: float = Field(0.5, ge=0)
    xp_streak_bonus_max: int = Field(15, ge=0)
    xp_perfect_bonus: int = Field(25, ge=0)
    level_multiplier_per_level: float = Field(0.002525, ge=0)
    max_level: int = Field(100, ge=1)
    xp_per_level_base: int = Field(100, gt=0)
    xp_per_level_growth: float = Field(1.15, gt=1)
    event_2x_bonus: float = Field(0.125, ge=0)
    event_3x_bonus: float = Field(0.25, ge=0)
    streak_grace_period_hours: int = Field(36, ge=0)
    inactivity_email_days: list[int] = Field(default_factory=lambda: [7, 30, 60])
    inactivity_event_duration_hours: int = Field(24, gt=0)
    ranking_top_n_visible: int = Field(10, ge=1)
    updated_at: datetime | None = None
    updated_by: str | None = None

    @field_validator("xp_difficulty_multipliers")
    @classmethod
    def _multipliers_positive(cls, value: dict[str, float]) -> dict[str, float]:
        for difficulty, multiplier in value.items():
            if multiplier <= 0:
                raise ValueError(f"difficulty multiplier for {difficulty!r} must be > 0")
        return value

    @field_validator("inactivity_email_days")
    @classmethod
    def _inactivity_days_increasing(cls, value: list[int]) -> list[int]:
        if any(d <= 0 for d in value):
            raise ValueError("inactivity_email_days must be positive")
        if any(b <= a for a, b in zip(value, value[1:])):
            raise ValueError("inactivity_email_days must be strictly increasing")
        return value

    def difficulty_multiplier(self, difficulty: str) -> float:
        """Multiplier for ``difficulty``; unknown difficulties are neutral (1.0)."""
        return self.xp_difficulty_multipliers.get(difficulty, 1.0)

    def event_bonus(self, multiplier_type: str | None) -> float:
        """Additive bonus for an active event type (0 when no event)."""
        if multiplier_type == MultiplierType.DOUBLE:
            return self.event_2x_bonus
        if multiplier_type == MultiplierType.TRIPLE:
            return self.event_3x_bonus
        return 0.0


# --- Stats ---


class UserStats(BaseModel):
    """Snapshot of a user's gamification aggregate."""

    user_id: uuid.UUID
    version: int = 0
    total_xp: int = Field(0, ge=0)
    current_level: int = Field(1, ge=1)
    current_streak: int = Field(0, ge=0)
    longest_streak: int = Field(0, ge=0)
    last_activity_date: date | None = None
    total_ecgs_completed: int = 0
    total_perfect_scores: int = 0
    perfect_streak: int = 0
    ecgs_today: int = 0
    ecgs_by_difficulty: TagCounts = Field(default_factory=TagCounts)
    perfect_by_difficulty: TagCounts = Field(default_factory=TagCounts)
    correct_by_category: TagCounts = Field(default_factory=TagCounts)
    correct_by_finding: TagCounts = Field(default_factory=TagCounts)
    ecgs_by_context: TagCounts = Field(default_factory=TagCounts)
    events_participated: int = 0

    @classmethod
    def initial(cls, user_id: uuid.UUID) -> UserStats:
        """Zero state for a user who never completed an attempt."""
        return cls(
            user_id=user_id,
            ecgs_by_difficulty=TagCounts({d.value: 0 for d in Difficulty}),
        )


class ProfileInfo(BaseModel):
    """What the engine needs from the account subsystem."""

    user_id: uuid.UUID
    created_at: datetime | None = None
    practice_context: str | None = None
    display_name: str | None = None


# --- Attempts ---


class AttemptOutcome(BaseModel):
    """One completed practice attempt, as scored by the ECG scoring subsystem."""

    ecg_id: str | None = None
    score: float
    difficulty: str
    is_perfect: bool = False
    categories: list[str] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)
    is_first_attempt: bool = True

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return min(100.0, max(0.0, value))


class AttemptContext(BaseModel):
    """The just-completed attempt as seen by achievement predicates."""

    score: float
    difficulty: str
    is_perfect: bool
    categories: list[str] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)
    attempt_time: datetime
    is_first_attempt: bool = True
    during_event: bool = False


# --- XP / level / streak results ---


class XPBreakdown(BaseModel):
    base: int
    score_bonus: int
    streak_bonus: int
    perfect_bonus: int
    difficulty_multiplier: float
    raw_xp: int
    level_multiplier: float
    event_bonus: float
    total_multiplier: float
    final_xp: int


class LevelUpResult(BaseModel):
    leveled_up: bool
    previous_level: int
    new_level: int


class LevelProgress(BaseModel):
    level: int
    current_xp: int
    required_xp: int
    percentage: int


class StreakUpdate(BaseModel):
    new_streak: int
    is_new_day: bool
    streak_extended: bool


class StreakStatus(BaseModel):
    is_active: bool
    current_streak: int
    should_reset: bool
    hours_until_reset: int | None = None
    is_within_grace_period: bool = False


class RecalculatedStreak(BaseModel):
    """Streak values rebuilt from the days a user practised."""

    current_streak: int = 0
    longest_streak: int = 0
    active_days: int = 0
    last_activity_date: date | None = None


# --- Events ---


class XPEvent(BaseModel):
    """Time-boxed additive XP multiplier."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str = ""
    multiplier_type: MultiplierType
    start_at: datetime
    end_at: datetime
    target_type: EventTargetType = EventTargetType.ALL
    target_user_id: uuid.UUID | None = None
    is_active: bool = True
    created_by: str | None = None

    @model_validator(mode="after")
    def _check_window_and_target(self) -> XPEvent:
        if self.start_at >= self.end_at:
            raise ValueError("start_at must be before end_at")
        if self.target_type == EventTargetType.USER_SPECIFIC and self.target_user_id is None:
            raise ValueError("user_specific events need target_user_id")
        return self

    def is_live(self, now: datetime) -> bool:
        """Active flag set and ``now`` inside the inclusive window."""
        return self.is_active and self.start_at <= now <= self.end_at


# --- Achievements ---


class Achievement(BaseModel):
    """Achievement rule definition. ``unlock_conditions`` is parsed by ``conditions``."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    slug: str
    name: str
    description: str = ""
    category: str = "general"
    rarity: str = "common"
    xp_reward: int = 0
    unlock_conditions: dict
    is_active: bool = True
    is_hidden: bool = False
    display_order: int = 0


class UnlockedAchievement(BaseModel):
    achievement: Achievement
    xp_reward: int


class AchievementProgress(BaseModel):
    achievement: Achievement
    earned: bool
    earned_at: datetime | None = None


# --- Orchestrator result ---


class AttemptResult(BaseModel):
    """Everything the UI needs after an attempt: XP, level, streak, unlocks."""

    xp_earned: int
    xp_breakdown: XPBreakdown
    achievement_xp: int = 0
    new_total_xp: int
    level_up: bool
    previous_level: int
    new_level: int
    streak_updated: bool
    previous_streak: int
    new_streak: int
    streak_milestone: int | None = None
    achievements_unlocked: list[UnlockedAchievement] = Field(default_factory=list)
    active_event: XPEvent | None = None
    stats: UserStats


class AchievementRecheckResult(BaseModel):
    """Unlocks found by a re-check outside any attempt, with their XP applied."""

    achievements_unlocked: list[UnlockedAchievement] = Field(default_factory=list)
    achievement_xp: int = 0
    level_up: bool = False
    previous_level: int
    new_level: int
    stats: UserStats


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: uuid.UUID
    display_name: str | None = None
    total_xp: int
    current_level: int
    current_streak: int = 0
    is_current_user: bool = False


class LeaderboardResult(BaseModel):
    top_users: list[LeaderboardEntry]
    user_rank: int | None = None
    user_percentile: int = 0
    is_in_top_n: bool = False
    total_users: int = 0
    top_n_visible: int = 10
