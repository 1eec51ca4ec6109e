"""XP leaderboard.

Rank is competition style: 1 + number of users with strictly more XP, so tied
users share a rank. Only users with a stats row are ranked.
"""

from __future__ import annotations

import math
import uuid

from ecgsim.config import get_settings
from ecgsim.gamification.repository import GamificationStore
from ecgsim.gamification.schemas import GamificationConfig, LeaderboardEntry, LeaderboardResult, UserStats


def clamp_limit(limit: int) -> int:
    """Bound the requested page size to [1, leaderboard_max_limit]."""
    return max(1, min(limit, get_settings().leaderboard_max_limit))


def percentile(rank: int, total_users: int) -> int:
    """Share of ranked users at or below ``rank``, floored (rank 1 of N = 100)."""
    if total_users <= 0:
        return 0
    return math.floor((total_users - rank + 1) / total_users * 100)


def rank_entries(
    rows: list[tuple[UserStats, str | None]],
    current_user_id: uuid.UUID,
) -> list[LeaderboardEntry]:
    """Turn rows sorted by XP (descending) into ranked entries with shared ranks for ties."""
    entries: list[LeaderboardEntry] = []
    for position, (stats, display_name) in enumerate(rows, start=1):
        if entries and entries[-1].total_xp == stats.total_xp:
            rank = entries[-1].rank
        else:
            rank = position
        entries.append(
            LeaderboardEntry(
                rank=rank,
                user_id=stats.user_id,
                display_name=display_name,
                total_xp=stats.total_xp,
                current_level=stats.current_level,
                current_streak=stats.current_streak,
                is_current_user=stats.user_id == current_user_id,
            )
        )
    return entries


async def get_xp_leaderboard(
    store: GamificationStore,
    user_id: uuid.UUID,
    limit: int,
    config: GamificationConfig,
) -> LeaderboardResult:
    """Top users by XP plus where ``user_id`` stands.

    A user without stats has no rank and a percentile of 0.
    """
    limit = clamp_limit(limit)
    top = rank_entries(await store.top_users(limit), user_id)
    total_users = await store.count_users()

    user_rank: int | None = None
    user_stats = await store.get_stats(user_id)
    if user_stats is not None:
        user_rank = 1 + await store.count_users_above(user_stats.total_xp)

    return LeaderboardResult(
        top_users=top,
        user_rank=user_rank,
        user_percentile=percentile(user_rank, total_users) if user_rank is not None else 0,
        is_in_top_n=user_rank is not None and user_rank <= config.ranking_top_n_visible,
        total_users=total_users,
        top_n_visible=config.ranking_top_n_visible,
    )
