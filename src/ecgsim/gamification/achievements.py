"""Achievement evaluation.

``evaluate_achievement`` and ``find_new_unlocks`` are pure. ``check_achievements``
is the store-facing step used by the orchestrator: load definitions and the
user's earned set, evaluate the rest, insert unlock rows idempotently.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime

import structlog

from ecgsim.gamification.conditions import EvaluationContext, parse_condition
from ecgsim.gamification.repository import GamificationStore
from ecgsim.gamification.schemas import Achievement, AchievementProgress, UnlockedAchievement

logger = structlog.get_logger()


def evaluate_achievement(achievement: Achievement, ctx: EvaluationContext) -> bool:
    """Does ``achievement``'s rule hold for ``ctx``? Unusable rules never hold."""
    condition = parse_condition(achievement.unlock_conditions)
    if condition is None:
        return False
    return condition.is_met(ctx)


def find_new_unlocks(
    achievements: Iterable[Achievement],
    earned_ids: Iterable[uuid.UUID],
    ctx: EvaluationContext,
) -> list[UnlockedAchievement]:
    """Active, not-yet-earned achievements whose rule now holds, in catalogue order."""
    earned = set(earned_ids)
    ctx = replace(ctx, earned_count=len(earned))

    unlocked = []
    for achievement in achievements:
        if not achievement.is_active or achievement.id in earned:
            continue
        if evaluate_achievement(achievement, ctx):
            unlocked.append(UnlockedAchievement(achievement=achievement, xp_reward=achievement.xp_reward))
    return unlocked


async def check_achievements(
    store: GamificationStore,
    user_id: uuid.UUID,
    ctx: EvaluationContext,
) -> list[UnlockedAchievement]:
    """Evaluate and persist new unlocks. Returns only rows this call inserted.

    Safe to re-run: already-earned achievements are skipped, and the unique
    (user, achievement) constraint drops rows a concurrent attempt inserted
    first.
    """
    achievements = await store.list_active_achievements()
    earned = await store.list_earned_achievements(user_id)

    candidates = find_new_unlocks(achievements, earned.keys(), ctx)
    if not candidates:
        return []

    inserted = await store.insert_unlocks(user_id, [c.achievement.id for c in candidates], ctx.now)
    unlocked = [c for c in candidates if c.achievement.id in inserted]

    if len(unlocked) < len(candidates):
        logger.info(
            "achievement_unlock_race",
            user_id=str(user_id),
            skipped=[c.achievement.slug for c in candidates if c.achievement.id not in inserted],
        )
    return unlocked


def achievements_with_progress(
    achievements: Iterable[Achievement],
    earned: Mapping[uuid.UUID, datetime],
) -> list[AchievementProgress]:
    """Catalogue view for a user: hidden achievements only show once earned."""
    return [
        AchievementProgress(achievement=a, earned=a.id in earned, earned_at=earned.get(a.id))
        for a in achievements
        if a.id in earned or not a.is_hidden
    ]


async def get_achievements_with_progress(store: GamificationStore, user_id: uuid.UUID) -> list[AchievementProgress]:
    achievements = await store.list_active_achievements()
    earned = await store.list_earned_achievements(user_id)
    return achievements_with_progress(achievements, earned)


async def mark_achievements_notified(
    store: GamificationStore, user_id: uuid.UUID, achievement_ids: list[uuid.UUID]
) -> None:
    """Flag unlocks as shown to the user."""
    if not achievement_ids:
        return
    await store.mark_achievements_notified(user_id, achievement_ids)
