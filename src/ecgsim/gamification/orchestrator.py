"""Attempt-completion orchestrator.

Runs the whole per-attempt flow in one store transaction:

  load stats -> snapshot -> resolve event -> resolve streak -> XP -> merge
  -> save (compare-and-swap) -> achievements -> achievement XP -> save

The stats row is versioned. When another attempt for the same user commits
first, the compare-and-swap fails, the transaction rolls back and the whole
unit of work is retried from a fresh read. Everything before the saves is
deterministic, so a retry recomputes the same result.

`recheck_achievements` reuses the same transaction and retry loop for
unlocks awarded outside an attempt.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from functools import partial
from typing import TypeVar

import structlog

from ecgsim.config import get_settings
from ecgsim.exceptions import ConcurrentUpdateError
from ecgsim.gamification.achievements import check_achievements
from ecgsim.gamification.conditions import EvaluationContext
from ecgsim.gamification.config_service import get_config_provider
from ecgsim.gamification.events import get_active_event, record_event_participation
from ecgsim.gamification.levels import level_from_xp
from ecgsim.gamification.repository import GamificationStore
from ecgsim.gamification.schemas import (
    AchievementRecheckResult,
    AttemptContext,
    AttemptOutcome,
    AttemptResult,
    GamificationConfig,
    UserStats,
)
from ecgsim.gamification.stats_service import apply_attempt, apply_bonus_xp, get_or_create_stats
from ecgsim.gamification.streaks import calculate_new_streak, streak_milestone
from ecgsim.gamification.xp import calculate_xp

logger = structlog.get_logger()

T = TypeVar("T")


class _StaleStats(Exception):
    """The stats row changed since it was read; roll back and start over."""


async def _save(store: GamificationStore, stats: UserStats) -> UserStats:
    """Compare-and-swap ``stats`` against its version; returns the stored snapshot."""
    if not await store.save_stats(stats, expected_version=stats.version):
        raise _StaleStats
    return stats.model_copy(update={"version": stats.version + 1})


async def _process_attempt(
    store: GamificationStore,
    user_id: uuid.UUID,
    outcome: AttemptOutcome,
    config: GamificationConfig,
    now: datetime,
) -> AttemptResult:
    previous_stats = await get_or_create_stats(store, user_id)
    profile = await store.get_profile(user_id)

    active_event = await get_active_event(store, user_id, now)

    streak = calculate_new_streak(
        previous_stats.last_activity_date,
        previous_stats.current_streak,
        config,
        now,
        account_created_at=profile.created_at if profile else None,
    )

    # XP uses the streak *after* this attempt
    breakdown = calculate_xp(
        score=outcome.score,
        difficulty=outcome.difficulty,
        current_level=previous_stats.current_level,
        current_streak=streak.new_streak,
        is_perfect=outcome.is_perfect,
        active_event=active_event.multiplier_type if active_event else None,
        config=config,
    )

    first_participation = False
    if active_event is not None:
        first_participation = await record_event_participation(store, user_id, active_event.id)

    stats = apply_attempt(
        previous_stats,
        outcome,
        streak,
        breakdown.final_xp,
        config,
        today=now.date(),
        practice_context=profile.practice_context if profile else None,
        first_event_participation=first_participation,
    )
    stats = await _save(store, stats)

    ctx = EvaluationContext(
        stats=stats,
        now=now,
        attempt=AttemptContext(
            score=outcome.score,
            difficulty=outcome.difficulty,
            is_perfect=outcome.is_perfect,
            categories=outcome.categories,
            findings=outcome.findings,
            attempt_time=now,
            is_first_attempt=outcome.is_first_attempt,
            during_event=active_event is not None,
        ),
        previous_stats=previous_stats,
    )
    unlocked = await check_achievements(store, user_id, ctx)

    achievement_xp = sum(u.xp_reward for u in unlocked)
    if achievement_xp > 0:
        stats = await _save(store, apply_bonus_xp(stats, achievement_xp, config))

    previous_level = level_from_xp(previous_stats.total_xp, config)
    milestone = streak_milestone(previous_stats.current_streak, streak.new_streak) if streak.streak_extended else None

    return AttemptResult(
        xp_earned=breakdown.final_xp,
        xp_breakdown=breakdown,
        achievement_xp=achievement_xp,
        new_total_xp=stats.total_xp,
        level_up=stats.current_level > previous_level,
        previous_level=previous_level,
        new_level=stats.current_level,
        streak_updated=streak.streak_extended,
        previous_streak=previous_stats.current_streak,
        new_streak=streak.new_streak,
        streak_milestone=milestone,
        achievements_unlocked=unlocked,
        active_event=active_event,
        stats=stats,
    )


async def _recheck_achievements(
    store: GamificationStore,
    user_id: uuid.UUID,
    config: GamificationConfig,
    now: datetime,
) -> AchievementRecheckResult:
    stats = await get_or_create_stats(store, user_id)
    previous_level = level_from_xp(stats.total_xp, config)

    # No attempt: only aggregate predicates can hold
    unlocked = await check_achievements(store, user_id, EvaluationContext(stats=stats, now=now))

    achievement_xp = sum(u.xp_reward for u in unlocked)
    if achievement_xp > 0:
        stats = await _save(store, apply_bonus_xp(stats, achievement_xp, config))

    return AchievementRecheckResult(
        achievements_unlocked=unlocked,
        achievement_xp=achievement_xp,
        level_up=stats.current_level > previous_level,
        previous_level=previous_level,
        new_level=stats.current_level,
        stats=stats,
    )


async def _run_unit_of_work(
    store: GamificationStore,
    user_id: uuid.UUID,
    max_retries: int,
    work: Callable[[], Awaitable[T]],
) -> T:
    """Run ``work`` in a store transaction, retrying from scratch on a stale stats row."""
    for attempt in range(max_retries + 1):
        try:
            async with store.transaction():
                return await work()
        except _StaleStats:
            logger.warning("stats_concurrent_update", user_id=str(user_id), attempt=attempt + 1)

    raise ConcurrentUpdateError(
        "Stats changed concurrently, retries exhausted",
        {"user_id": str(user_id), "attempts": max_retries + 1},
    )


async def on_attempt_complete(
    store: GamificationStore,
    user_id: uuid.UUID,
    outcome: AttemptOutcome,
    config: GamificationConfig | None = None,
    redis: object = None,
    now: datetime | None = None,
    max_retries: int | None = None,
) -> AttemptResult:
    """Apply one completed attempt to the user's gamification state.

    Calendar days (streaks, daily counters) and the weekend and time-of-day
    achievements are judged in the timezone of ``now``. Callers should pass
    an aware datetime in the user's local zone; the UTC default shifts
    "Night Shift" style windows for users far from UTC.

    Args:
        store: Gamification store (one unit of work per call).
        user_id: The user who completed the attempt.
        outcome: Scored attempt.
        config: Game parameters. Loaded through the cached config provider when omitted.
        redis: Optional Redis client for the shared config cache.
        now: Attempt time, timezone-aware. Defaults to the current UTC time.
        max_retries: Retries after a concurrent stats update. Defaults to settings.

    Raises:
        StoreUnavailableError: The store failed; nothing was committed.
        ConcurrentUpdateError: The stats row kept changing; nothing was committed.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if max_retries is None:
        max_retries = get_settings().stats_update_max_retries
    if config is None:
        config = await get_config_provider().get(store, redis)

    result = await _run_unit_of_work(
        store, user_id, max_retries, partial(_process_attempt, store, user_id, outcome, config, now)
    )
    logger.info(
        "attempt_processed",
        user_id=str(user_id),
        ecg_id=outcome.ecg_id,
        xp_earned=result.xp_earned,
        achievement_xp=result.achievement_xp,
        level_up=result.level_up,
        new_level=result.new_level,
        new_streak=result.new_streak,
        unlocked=[u.achievement.slug for u in result.achievements_unlocked],
    )
    return result


async def recheck_achievements(
    store: GamificationStore,
    user_id: uuid.UUID,
    config: GamificationConfig | None = None,
    redis: object = None,
    now: datetime | None = None,
    max_retries: int | None = None,
) -> AchievementRecheckResult:
    """Award achievements the user already qualifies for, outside any attempt.

    Used by scheduled jobs after the catalogue changes. Attempt-only rules
    (perfect on hard, weekend, time of day, event participation) can't fire
    here. Reward XP is added and the level re-derived in the same transaction
    as the unlock rows.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if max_retries is None:
        max_retries = get_settings().stats_update_max_retries
    if config is None:
        config = await get_config_provider().get(store, redis)

    result = await _run_unit_of_work(
        store, user_id, max_retries, partial(_recheck_achievements, store, user_id, config, now)
    )
    if result.achievements_unlocked:
        logger.info(
            "achievements_rechecked",
            user_id=str(user_id),
            achievement_xp=result.achievement_xp,
            new_level=result.new_level,
            unlocked=[u.achievement.slug for u in result.achievements_unlocked],
        )
    return result
