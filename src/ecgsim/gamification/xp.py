"""XP calculation for a single completed ECG attempt.

Formula (every intermediate is floored before it is combined; keep the order,
tests pin the rounding):

    score_bonus   = floor(score * xp_per_score_point)
    streak_bonus  = min(floor(streak * xp_streak_bonus_per_day), xp_streak_bonus_max)
    perfect_bonus = xp_perfect_bonus if perfect else 0
    raw_xp        = floor((base + score_bonus + streak_bonus + perfect_bonus) * difficulty_multiplier)
    level_mult    = 1 + (level - 1) * level_multiplier_per_level
    event_bonus   = event_2x_bonus | event_3x_bonus | 0      (additive)
    final_xp      = floor(raw_xp * (level_mult + event_bonus))
"""

from __future__ import annotations

import math

from ecgsim.gamification.schemas import GamificationConfig, XPBreakdown


def calculate_xp(
    score: float,
    difficulty: str,
    current_level: int,
    current_streak: int,
    is_perfect: bool,
    active_event: str | None,
    config: GamificationConfig,
) -> XPBreakdown:
    """Compute XP for one attempt. Pure; out-of-range inputs are clamped."""
    score = min(100.0, max(0.0, score))
    current_level = max(1, current_level)
    current_streak = max(0, current_streak)

    difficulty_multiplier = config.difficulty_multiplier(difficulty)

    base = config.xp_per_ecg_base
    score_bonus = math.floor(score * config.xp_per_score_point)
    streak_bonus = min(
        math.floor(current_streak * config.xp_streak_bonus_per_day),
        config.xp_streak_bonus_max,
    )
    perfect_bonus = config.xp_perfect_bonus if is_perfect else 0

    raw_xp = math.floor((base + score_bonus + streak_bonus + perfect_bonus) * difficulty_multiplier)

    # Level 1 = 1.0, level 100 = ~1.25 with the default config
    level_multiplier = 1 + (current_level - 1) * config.level_multiplier_per_level
    event_bonus = config.event_bonus(active_event)

    total_multiplier = level_multiplier + event_bonus
    final_xp = math.floor(raw_xp * total_multiplier)

    return XPBreakdown(
        base=base,
        score_bonus=score_bonus,
        streak_bonus=streak_bonus,
        perfect_bonus=perfect_bonus,
        difficulty_multiplier=difficulty_multiplier,
        raw_xp=raw_xp,
        level_multiplier=level_multiplier,
        event_bonus=event_bonus,
        total_multiplier=total_multiplier,
        final_xp=final_xp,
    )
