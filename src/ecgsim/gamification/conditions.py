"""Achievement unlock predicates.

``achievements.unlock_conditions`` is stored as JSON with a ``type`` tag. It is
parsed into exactly one of the condition models below (a closed discriminated
union); each model carries only the parameters it needs and answers
``is_met(ctx)``. Evaluation never does I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ecgsim.gamification.schemas import AttemptContext, Difficulty, UserStats
from ecgsim.gamification.tags import FINDING_GROUPS, ISCHEMIA_FINDINGS, KNOWN_CATEGORIES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationContext:
    """Inputs visible to predicates.

    ``stats`` is the merged aggregate after this attempt; ``previous_stats`` is
    the snapshot taken before anything was applied.
    """

    stats: UserStats
    now: datetime
    attempt: AttemptContext | None = None
    previous_stats: UserStats | None = None
    earned_count: int = 0


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    def is_met(self, ctx: EvaluationContext) -> bool:
        raise NotImplementedError


class _Threshold(_Condition):
    threshold: int = Field(ge=0)


# --- Cumulative counters ---


class TotalEcgsCondition(_Threshold):
    type: Literal["total_ecgs"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.total_ecgs_completed >= self.threshold


class PerfectScoresCondition(_Threshold):
    type: Literal["perfect_scores"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.total_perfect_scores >= self.threshold


class LevelCondition(_Threshold):
    type: Literal["level"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.current_level >= self.threshold


class StreakCondition(_Threshold):
    type: Literal["streak"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.current_streak >= self.threshold


class TotalXPCondition(_Threshold):
    type: Literal["total_xp"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.total_xp >= self.threshold


class PerfectStreakCondition(_Threshold):
    type: Literal["perfect_streak"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.perfect_streak >= self.threshold


class EventsParticipatedCondition(_Threshold):
    type: Literal["events_participated"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.events_participated >= self.threshold


class AchievementsUnlockedCondition(_Threshold):
    """Meta achievement: counts achievements earned before this evaluation pass."""

    type: Literal["achievements_unlocked"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.earned_count >= self.threshold


class DailyEcgsCondition(_Threshold):
    type: Literal["daily_ecgs"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        if ctx.stats.last_activity_date != ctx.now.date():
            return False
        return ctx.stats.ecgs_today >= self.threshold


# --- Tag counters ---


class CategoryCorrectCondition(_Threshold):
    type: Literal["category_correct"]
    category: str

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.correct_by_category[self.category] >= self.threshold


class FindingCorrectCondition(_Threshold):
    type: Literal["finding_correct"]
    finding: str

    def is_met(self, ctx: EvaluationContext) -> bool:
        if self.finding == "ischemia":
            count = ctx.stats.correct_by_finding.total(ISCHEMIA_FINDINGS)
        else:
            count = ctx.stats.correct_by_finding[self.finding]
        return count >= self.threshold


class FindingGroupCondition(_Threshold):
    type: Literal["finding_group"]
    group: str

    def is_met(self, ctx: EvaluationContext) -> bool:
        findings = FINDING_GROUPS.get(self.group, ())
        if not findings:
            return False
        return ctx.stats.correct_by_finding.total(findings) >= self.threshold


class DifficultyCorrectCondition(_Threshold):
    type: Literal["difficulty_correct"]
    difficulty: str

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.ecgs_by_difficulty[self.difficulty] >= self.threshold


class PerfectHardCondition(_Threshold):
    type: Literal["perfect_hard"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.perfect_by_difficulty[Difficulty.HARD] >= self.threshold


class HospitalTypeCondition(_Threshold):
    """Completions logged while the profile had the given practice context."""

    type: Literal["hospital_type"]
    hospital_type: str
    threshold: int = Field(1, ge=0)

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.stats.ecgs_by_context[self.hospital_type] >= self.threshold


# --- Coverage ---


class AllCategoriesCondition(_Condition):
    type: Literal["all_categories"]
    categories: tuple[str, ...] = KNOWN_CATEGORIES

    def is_met(self, ctx: EvaluationContext) -> bool:
        return all(ctx.stats.correct_by_category[c] >= 1 for c in self.categories)


class AllDifficultiesCondition(_Threshold):
    type: Literal["all_difficulties"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return all(ctx.stats.ecgs_by_difficulty[d.value] >= self.threshold for d in Difficulty)


# --- Current attempt ---


class FirstPerfectHardCondition(_Condition):
    type: Literal["first_perfect_hard"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        if ctx.attempt is None:
            return False
        return (
            ctx.attempt.is_perfect
            and ctx.attempt.difficulty == Difficulty.HARD
            and ctx.stats.total_perfect_scores == 1
        )


class WeekendEcgsCondition(_Condition):
    type: Literal["weekend_ecgs"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        if ctx.attempt is None:
            return False
        return ctx.attempt.attempt_time.weekday() >= 5


def _minutes(value: str) -> int:
    hours, _, minutes = value.partition(":")
    return int(hours) * 60 + int(minutes or 0)


class TimeOfDayCondition(_Condition):
    """Attempt clock time within [after, before); wraps past midnight when after >= before."""

    type: Literal["time_of_day"]
    after: str
    before: str

    @field_validator("after", "before")
    @classmethod
    def _hh_mm(cls, value: str) -> str:
        minutes = _minutes(value)
        if not 0 <= minutes < 24 * 60:
            raise ValueError(f"not a clock time: {value!r}")
        return value

    def is_met(self, ctx: EvaluationContext) -> bool:
        if ctx.attempt is None:
            return False
        t = ctx.attempt.attempt_time
        now_minutes = t.hour * 60 + t.minute
        start, end = _minutes(self.after), _minutes(self.before)
        if start < end:
            return start <= now_minutes < end
        # Overnight window, e.g. 22:00 -> 06:00
        return now_minutes >= start or now_minutes < end


class EventParticipationCondition(_Condition):
    type: Literal["event_participation"]

    def is_met(self, ctx: EvaluationContext) -> bool:
        return ctx.attempt is not None and ctx.attempt.during_event


class ComebackCondition(_Condition):
    """Returning after ``days`` or more without practice (judged on the pre-attempt snapshot)."""

    type: Literal["comeback"]
    days: int = Field(ge=1)

    def is_met(self, ctx: EvaluationContext) -> bool:
        if ctx.previous_stats is None or ctx.previous_stats.last_activity_date is None:
            return False
        days_since = (ctx.now.date() - ctx.previous_stats.last_activity_date).days
        return days_since >= self.days


UnlockCondition = Annotated[
    Union[
        TotalEcgsCondition,
        PerfectScoresCondition,
        LevelCondition,
        StreakCondition,
        TotalXPCondition,
        PerfectStreakCondition,
        EventsParticipatedCondition,
        AchievementsUnlockedCondition,
        DailyEcgsCondition,
        CategoryCorrectCondition,
        FindingCorrectCondition,
        FindingGroupCondition,
        DifficultyCorrectCondition,
        PerfectHardCondition,
        HospitalTypeCondition,
        AllCategoriesCondition,
        AllDifficultiesCondition,
        FirstPerfectHardCondition,
        WeekendEcgsCondition,
        TimeOfDayCondition,
        EventParticipationCondition,
        ComebackCondition,
    ],
    Field(discriminator="type"),
]

_condition_adapter: TypeAdapter[UnlockCondition] = TypeAdapter(UnlockCondition)


def parse_condition(raw: dict) -> UnlockCondition | None:
    """Parse stored unlock conditions; malformed or unknown rules yield None."""
    try:
        return _condition_adapter.validate_python(raw)
    except ValidationError:
        logger.warning("Unusable unlock_conditions: %r", raw, exc_info=True)
        return None
