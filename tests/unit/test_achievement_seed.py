"""Default achievement catalogue tests."""

from __future__ import annotations

import pytest

from ecgsim.gamification.conditions import parse_condition
from ecgsim.gamification.seed import ACHIEVEMENT_SEED_DATA, seed_achievements


class TestSeedData:
    def test_slugs_unique(self):
        """Slugs identify achievements for upserts."""
        slugs = [a["slug"] for a in ACHIEVEMENT_SEED_DATA]
        assert len(slugs) == len(set(slugs))

    def test_every_rule_parses(self):
        """Every shipped rule is well-formed."""
        for achievement in ACHIEVEMENT_SEED_DATA:
            assert parse_condition(achievement["unlock_conditions"]) is not None, achievement["slug"]

    def test_rewards_non_negative(self):
        """Rewards never take XP away."""
        assert all(a["xp_reward"] >= 0 for a in ACHIEVEMENT_SEED_DATA)


class TestSeedAchievements:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, store):
        """A second seed inserts nothing."""
        assert await seed_achievements(store) == len(ACHIEVEMENT_SEED_DATA)
        assert await seed_achievements(store) == 0
        assert len(store.achievements) == len(ACHIEVEMENT_SEED_DATA)
        assert store.commits == 2
