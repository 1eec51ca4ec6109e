"""Level curve: cumulative XP ↔ level.

Per-level cost grows exponentially:
  level 2 costs ``xp_per_level_base``,
  level L costs ``floor(xp_per_level_base * growth ** (L - 2))``.

With the default config (base 100, growth 1.15) level 2 costs 100 XP and each
further level roughly 15% more than the previous one.
"""

from __future__ import annotations

import math

from ecgsim.gamification.schemas import GamificationConfig, LevelProgress, LevelUpResult


def xp_required_for_level(level: int, config: GamificationConfig) -> int:
    """XP needed to go from ``level - 1`` to ``level``."""
    if level <= 1:
        return 0
    if level == 2:
        return config.xp_per_level_base
    return math.floor(config.xp_per_level_base * config.xp_per_level_growth ** (level - 2))


def total_xp_for_level(level: int, config: GamificationConfig) -> int:
    """Cumulative XP needed to reach ``level`` from level 1."""
    return sum(xp_required_for_level(lvl, config) for lvl in range(2, level + 1))


def level_from_xp(total_xp: int, config: GamificationConfig) -> int:
    """Highest level whose cumulative cost is covered by ``total_xp``, capped at max_level."""
    if total_xp <= 0:
        return 1

    level = 1
    xp_needed = 0
    while level < config.max_level:
        next_cost = xp_required_for_level(level + 1, config)
        if xp_needed + next_cost > total_xp:
            break
        xp_needed += next_cost
        level += 1

    return min(level, config.max_level)


def check_level_up(previous_total_xp: int, new_total_xp: int, config: GamificationConfig) -> LevelUpResult:
    """Compare levels before and after an XP change."""
    previous_level = level_from_xp(previous_total_xp, config)
    new_level = level_from_xp(new_total_xp, config)
    return LevelUpResult(
        leveled_up=new_level > previous_level,
        previous_level=previous_level,
        new_level=new_level,
    )


def xp_progress_to_next_level(total_xp: int, config: GamificationConfig) -> LevelProgress:
    """XP earned inside the current level and XP still required for the next one."""
    level = level_from_xp(total_xp, config)
    if level >= config.max_level:
        return LevelProgress(level=level, current_xp=0, required_xp=0, percentage=100)

    current_xp = total_xp - total_xp_for_level(level, config)
    required_xp = xp_required_for_level(level + 1, config)
    percentage = min(100, math.floor(current_xp / required_xp * 100))
    return LevelProgress(level=level, current_xp=current_xp, required_xp=required_xp, percentage=percentage)
