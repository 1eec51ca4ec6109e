"""Level curve tests: cost table, monotonicity, cap, progress."""

from __future__ import annotations

from ecgsim.gamification.levels import (
    check_level_up,
    level_from_xp,
    total_xp_for_level,
    xp_progress_to_next_level,
    xp_required_for_level,
)
from ecgsim.gamification.schemas import GamificationConfig


class TestCostTable:
    """Per-level XP cost."""

    def test_level_one_is_free(self, config):
        """Everyone starts at level 1 with 0 XP."""
        assert xp_required_for_level(1, config) == 0
        assert total_xp_for_level(1, config) == 0

    def test_level_two_costs_base(self, config):
        """Reaching level 2 costs the base amount."""
        assert xp_required_for_level(2, config) == 100
        assert total_xp_for_level(2, config) == 100

    def test_exponential_growth(self):
        """Each level costs growth times the previous one, floored."""
        config = GamificationConfig(xp_per_level_growth=1.5)
        assert [xp_required_for_level(lvl, config) for lvl in range(2, 6)] == [100, 150, 225, 337]
        assert total_xp_for_level(5, config) == 812

    def test_costs_never_shrink(self, config):
        """Per-level cost is non-decreasing."""
        costs = [xp_required_for_level(lvl, config) for lvl in range(2, config.max_level + 1)]
        assert costs == sorted(costs)


class TestLevelFromXP:
    """Greedy level lookup."""

    def test_zero_and_negative(self, config):
        """No XP means level 1."""
        assert level_from_xp(0, config) == 1
        assert level_from_xp(-50, config) == 1

    def test_boundaries(self, config):
        """99 XP is level 1, 100 XP is level 2."""
        assert level_from_xp(99, config) == 1
        assert level_from_xp(100, config) == 2

    def test_boundaries_exact_curve(self):
        """Exact thresholds on a curve without float noise."""
        config = GamificationConfig(xp_per_level_growth=1.5)
        assert level_from_xp(249, config) == 2
        assert level_from_xp(250, config) == 3
        assert level_from_xp(474, config) == 3
        assert level_from_xp(475, config) == 4

    def test_total_xp_for_level_round_trips(self, config):
        """The cumulative threshold maps back to its level."""
        for level in (2, 10, 37, 100):
            assert level_from_xp(total_xp_for_level(level, config), config) == level
            assert level_from_xp(total_xp_for_level(level, config) - 1, config) == level - 1

    def test_capped_at_max_level(self, config):
        """Huge totals stop at max level."""
        assert level_from_xp(10**12, config) == 100
        small = GamificationConfig(max_level=5)
        assert level_from_xp(10**9, small) == 5

    def test_monotonic(self, config):
        """More XP never means a lower level."""
        previous = 1
        for xp in range(0, 20_000, 37):
            level = level_from_xp(xp, config)
            assert level >= previous
            assert level <= config.max_level
            previous = level


class TestLevelUp:
    def test_detects_level_up(self, config):
        """Crossing a threshold reports the old and new level."""
        result = check_level_up(90, 120, config)
        assert result.leveled_up is True
        assert (result.previous_level, result.new_level) == (1, 2)

    def test_no_level_up(self, config):
        """Staying inside a level reports no level-up."""
        assert check_level_up(10, 60, config).leveled_up is False


class TestProgress:
    """Progress inside the current level."""

    def test_midway(self):
        """Progress is floored to a whole percentage."""
        config = GamificationConfig(xp_per_level_growth=1.5)
        progress = xp_progress_to_next_level(150, config)
        assert progress.level == 2
        assert progress.current_xp == 50
        assert progress.required_xp == 150
        assert progress.percentage == 33

    def test_fresh_user(self, config):
        """A new user has the whole first level ahead."""
        progress = xp_progress_to_next_level(0, config)
        assert (progress.level, progress.current_xp, progress.required_xp, progress.percentage) == (1, 0, 100, 0)

    def test_max_level(self):
        """At max level progress is reported as complete."""
        config = GamificationConfig(max_level=3)
        progress = xp_progress_to_next_level(10_000, config)
        assert (progress.level, progress.current_xp, progress.required_xp, progress.percentage) == (3, 0, 0, 100)
