"""User gamification stats: lazy initialization and the per-attempt merge."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta

from ecgsim.config import get_settings
from ecgsim.gamification.levels import level_from_xp
from ecgsim.gamification.repository import GamificationStore
from ecgsim.gamification.schemas import (
    AttemptOutcome,
    GamificationConfig,
    StreakStatus,
    StreakUpdate,
    UserStats,
)
from ecgsim.gamification.streaks import check_streak_status
from ecgsim.gamification.tags import recognized_categories, recognized_difficulty, recognized_findings


async def get_or_create_stats(store: GamificationStore, user_id: uuid.UUID) -> UserStats:
    """Get or lazily create the stats row for a user (all zeros, level 1)."""
    stats = await store.get_stats(user_id)
    if stats is None:
        stats = await store.create_stats(UserStats.initial(user_id))
    return stats


def apply_attempt(
    stats: UserStats,
    outcome: AttemptOutcome,
    streak: StreakUpdate,
    xp_earned: int,
    config: GamificationConfig,
    today: date,
    practice_context: str | None = None,
    first_event_participation: bool = False,
) -> UserStats:
    """Merge one attempt into ``stats`` and return the new snapshot.

    ``stats`` itself is left untouched; unknown difficulty/category/finding tags
    are simply not counted.
    """
    new_total_xp = stats.total_xp + xp_earned

    ecgs_by_difficulty = stats.ecgs_by_difficulty
    perfect_by_difficulty = stats.perfect_by_difficulty
    difficulty = recognized_difficulty(outcome.difficulty)
    if difficulty is not None:
        ecgs_by_difficulty = ecgs_by_difficulty.incremented([difficulty])
        if outcome.is_perfect:
            perfect_by_difficulty = perfect_by_difficulty.incremented([difficulty])

    ecgs_by_context = stats.ecgs_by_context
    if practice_context:
        ecgs_by_context = ecgs_by_context.incremented([practice_context])

    same_day = stats.last_activity_date == today

    return stats.model_copy(
        update={
            "total_xp": new_total_xp,
            "current_level": level_from_xp(new_total_xp, config),
            "current_streak": streak.new_streak,
            "longest_streak": max(stats.longest_streak, streak.new_streak),
            "last_activity_date": today,
            "total_ecgs_completed": stats.total_ecgs_completed + 1,
            "total_perfect_scores": stats.total_perfect_scores + (1 if outcome.is_perfect else 0),
            "perfect_streak": stats.perfect_streak + 1 if outcome.is_perfect else 0,
            "ecgs_today": stats.ecgs_today + 1 if same_day else 1,
            "ecgs_by_difficulty": ecgs_by_difficulty,
            "perfect_by_difficulty": perfect_by_difficulty,
            "correct_by_category": stats.correct_by_category.incremented(recognized_categories(outcome.categories)),
            "correct_by_finding": stats.correct_by_finding.incremented(recognized_findings(outcome.findings)),
            "ecgs_by_context": ecgs_by_context,
            "events_participated": stats.events_participated + (1 if first_event_participation else 0),
        }
    )


def apply_bonus_xp(stats: UserStats, bonus_xp: int, config: GamificationConfig) -> UserStats:
    """Add XP granted outside an attempt (achievement rewards) and re-derive the level."""
    if bonus_xp <= 0:
        return stats
    total_xp = stats.total_xp + bonus_xp
    return stats.model_copy(update={"total_xp": total_xp, "current_level": level_from_xp(total_xp, config)})


async def list_streaks_at_risk(
    store: GamificationStore,
    config: GamificationConfig,
    now: datetime,
    min_streak: int | None = None,
) -> list[tuple[UserStats, StreakStatus]]:
    """Users with a long streak who practiced yesterday but not yet today.

    Each entry carries the streak status at ``now``, for reminder notifications.
    """
    if min_streak is None:
        min_streak = get_settings().streak_at_risk_min_streak

    yesterday = now.date() - timedelta(days=1)
    at_risk = []
    for stats in await store.list_streaks_at_risk(min_streak, yesterday):
        status = check_streak_status(stats.last_activity_date, stats.current_streak, config, now)
        if status.is_active:
            at_risk.append((stats, status))
    return at_risk
