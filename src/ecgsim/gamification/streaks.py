"""Daily practice streaks with a grace period.

Rules:
- first activity ever starts a streak of 1
- same calendar day: unchanged (re-entry is idempotent)
- next calendar day: +1
- later, but still before ``(last day + 1) 00:00 + grace_period_hours``: +1
- past the grace window: back to 1 (showing up starts a fresh streak)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

from ecgsim.gamification.schemas import GamificationConfig, RecalculatedStreak, StreakStatus, StreakUpdate

logger = logging.getLogger(__name__)

STREAK_MILESTONES: tuple[int, ...] = (3, 7, 14, 30, 60, 90, 180, 365)


def _grace_period_end(last_activity_date: date, now: datetime, config: GamificationConfig) -> datetime:
    """Midnight after the last active day, plus the grace period."""
    next_midnight = datetime.combine(last_activity_date + timedelta(days=1), time.min, tzinfo=now.tzinfo)
    return next_midnight + timedelta(hours=config.streak_grace_period_hours)


def check_streak_status(
    last_activity_date: date | None,
    current_streak: int,
    config: GamificationConfig,
    now: datetime,
) -> StreakStatus:
    """Would the streak survive if the user did nothing right now? Read-only."""
    if last_activity_date is None:
        return StreakStatus(is_active=False, current_streak=0, should_reset=False)

    days_diff = (now.date() - last_activity_date).days

    # Today or yesterday: streak is alive without any grace
    if days_diff <= 1:
        return StreakStatus(is_active=True, current_streak=current_streak, should_reset=False)

    grace_end = _grace_period_end(last_activity_date, now, config)
    if now < grace_end:
        hours_until_reset = max(0, math.floor((grace_end - now).total_seconds() / 3600))
        return StreakStatus(
            is_active=True,
            current_streak=current_streak,
            should_reset=False,
            hours_until_reset=hours_until_reset,
            is_within_grace_period=True,
        )

    return StreakStatus(is_active=False, current_streak=0, should_reset=True)


def calculate_new_streak(
    last_activity_date: date | None,
    current_streak: int,
    config: GamificationConfig,
    now: datetime,
    account_created_at: datetime | None = None,
) -> StreakUpdate:
    """Streak value after an activity at ``now``.

    ``account_created_at`` bounds the result: a streak can't be longer than
    the number of calendar days the account has existed.
    """
    today = now.date()

    if last_activity_date is None:
        new_streak = 1
    else:
        if (today - last_activity_date).days <= 0:
            return StreakUpdate(new_streak=current_streak, is_new_day=False, streak_extended=False)

        status = check_streak_status(last_activity_date, current_streak, config, now)
        new_streak = 1 if status.should_reset else current_streak + 1

    if account_created_at is not None:
        max_possible = max(1, (today - account_created_at.date()).days + 1)
        if new_streak > max_possible:
            logger.warning("Capping streak from %d to %d (account age)", new_streak, max_possible)
            new_streak = max_possible

    return StreakUpdate(new_streak=new_streak, is_new_day=True, streak_extended=True)


def streak_milestones_reached(streak: int) -> list[int]:
    """All milestone rungs at or below ``streak``."""
    return [m for m in STREAK_MILESTONES if streak >= m]


def streak_milestone(previous_streak: int, new_streak: int) -> int | None:
    """First milestone rung crossed going from ``previous_streak`` to ``new_streak``."""
    for milestone in STREAK_MILESTONES:
        if previous_streak < milestone <= new_streak:
            return milestone
    return None


def recalculate_streak(activity_days: Iterable[date], today: date) -> RecalculatedStreak:
    """Rebuild current and longest streak from practice days.

    Repairs stats rows whose streak drifted from the attempt history. Days are
    deduplicated; the current streak is the run ending on the last active day,
    and only counts while that day is today or yesterday. The grace window is
    not applied here.
    """
    days = sorted(set(activity_days))
    if not days:
        return RecalculatedStreak()

    longest = run = 1
    for previous, day in zip(days, days[1:]):
        run = run + 1 if (day - previous).days == 1 else 1
        longest = max(longest, run)

    current = 0
    if (today - days[-1]).days <= 1:
        # run still holds the length of the final consecutive block
        current = run

    return RecalculatedStreak(
        current_streak=current,
        longest_streak=longest,
        active_days=len(days),
        last_activity_date=days[-1],
    )
