"""Leaderboard tests: competition ranking, percentile, top-N visibility, clamping."""

from __future__ import annotations

import uuid

import pytest

from ecgsim.gamification.leaderboard import clamp_limit, get_xp_leaderboard, percentile
from ecgsim.gamification.schemas import GamificationConfig, UserStats


def _add_user(store, total_xp: int, name: str | None = None) -> uuid.UUID:
    user_id = uuid.uuid4()
    store.stats[user_id] = UserStats(user_id=user_id, total_xp=total_xp)
    if name:
        store.add_profile(user_id, display_name=name)
    return user_id


class TestPercentile:
    def test_top_and_bottom(self):
        """Rank 1 is the 100th percentile."""
        assert percentile(1, 10) == 100
        assert percentile(10, 10) == 10

    def test_floors(self):
        """Percentile rounds down."""
        assert percentile(2, 3) == 66

    def test_empty_board(self):
        """An empty board reports 0."""
        assert percentile(1, 0) == 0


class TestClampLimit:
    def test_bounds(self):
        """Limits are clamped to the allowed range."""
        assert clamp_limit(0) == 1
        assert clamp_limit(-5) == 1
        assert clamp_limit(25) == 25
        assert clamp_limit(10_000) == 100

    def test_bound_from_settings(self, monkeypatch):
        """The upper bound comes from settings."""
        monkeypatch.setenv("ECGSIM_LEADERBOARD_MAX_LIMIT", "20")
        assert clamp_limit(50) == 20


class TestGetXPLeaderboard:
    """Store-backed leaderboard."""

    @pytest.mark.asyncio
    async def test_ranks_and_ties(self, store, config):
        """Tied users share a rank and the next rank is skipped."""
        alice = _add_user(store, 500, "Alice")
        bob = _add_user(store, 300, "Bob")
        carol = _add_user(store, 300, "Carol")
        _add_user(store, 100)

        result = await get_xp_leaderboard(store, carol, limit=10, config=config)

        assert [e.rank for e in result.top_users] == [1, 2, 2, 4]
        assert result.top_users[0].user_id == alice
        assert result.top_users[0].display_name == "Alice"
        assert {e.user_id for e in result.top_users[1:3]} == {bob, carol}
        assert [e.is_current_user for e in result.top_users].count(True) == 1
        assert result.user_rank == 2
        assert result.user_percentile == 75  # floor((4 - 2 + 1) / 4 * 100)
        assert result.total_users == 4
        assert result.is_in_top_n is True

    @pytest.mark.asyncio
    async def test_below_visible_cut(self, store):
        """Users below the visible cut still get a rank."""
        config = GamificationConfig(ranking_top_n_visible=2)
        for xp in (900, 800, 700):
            _add_user(store, xp)
        me = _add_user(store, 10)

        result = await get_xp_leaderboard(store, me, limit=2, config=config)

        assert len(result.top_users) == 2
        assert result.user_rank == 4
        assert result.user_percentile == 25
        assert result.is_in_top_n is False
        assert result.top_n_visible == 2

    @pytest.mark.asyncio
    async def test_user_without_stats(self, store, config, user_id):
        """Users without stats are unranked."""
        _add_user(store, 100)
        result = await get_xp_leaderboard(store, user_id, limit=10, config=config)
        assert result.user_rank is None
        assert result.user_percentile == 0
        assert result.is_in_top_n is False
        assert result.total_users == 1

    @pytest.mark.asyncio
    async def test_limit_clamped(self, store, config):
        """A zero limit still returns one entry."""
        me = _add_user(store, 50)
        result = await get_xp_leaderboard(store, me, limit=0, config=config)
        assert len(result.top_users) == 1
