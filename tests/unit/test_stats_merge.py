"""Stats merge tests: counters, perfect streak, tags, lazy init, streaks at risk."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

import pytest

from ecgsim.gamification.schemas import AttemptOutcome, StreakUpdate, TagCounts, UserStats
from ecgsim.gamification.stats_service import (
    apply_attempt,
    apply_bonus_xp,
    get_or_create_stats,
    list_streaks_at_risk,
)

TODAY = date(2026, 3, 11)
EXTENDED = StreakUpdate(new_streak=4, is_new_day=True, streak_extended=True)


def _outcome(**fields) -> AttemptOutcome:
    values = {"score": 90, "difficulty": "medium"}
    values.update(fields)
    return AttemptOutcome(**values)


def _stats(**fields) -> UserStats:
    return UserStats(user_id=uuid.UUID(int=7), **fields)


class TestApplyAttempt:
    """Pure merge of one attempt."""

    def test_totals_and_level(self, config):
        """Totals and level move with the attempt; the input is not mutated."""
        stats = _stats(total_xp=90, total_ecgs_completed=4, current_streak=3, longest_streak=3)
        merged = apply_attempt(stats, _outcome(), EXTENDED, 20, config, TODAY)
        assert merged.total_xp == 110
        assert merged.current_level == 2
        assert merged.total_ecgs_completed == 5
        assert merged.current_streak == 4
        assert merged.longest_streak == 4
        assert merged.last_activity_date == TODAY
        assert stats.total_xp == 90

    def test_longest_streak_never_drops(self, config):
        """A reset keeps the longest streak."""
        stats = _stats(current_streak=20, longest_streak=30)
        reset = StreakUpdate(new_streak=1, is_new_day=True, streak_extended=True)
        merged = apply_attempt(stats, _outcome(), reset, 10, config, TODAY)
        assert merged.current_streak == 1
        assert merged.longest_streak == 30

    def test_perfect_streak_counts_and_resets(self, config):
        """Perfect streak grows on perfect scores and resets otherwise."""
        stats = _stats(perfect_streak=4, total_perfect_scores=9)
        perfect = apply_attempt(stats, _outcome(score=100, is_perfect=True), EXTENDED, 10, config, TODAY)
        assert perfect.perfect_streak == 5
        assert perfect.total_perfect_scores == 10

        missed = apply_attempt(perfect, _outcome(score=99), EXTENDED, 10, config, TODAY)
        assert missed.perfect_streak == 0
        assert missed.total_perfect_scores == 10

    def test_tag_counters(self, config):
        """Known tags are counted once per attempt; unknown ones are dropped."""
        stats = _stats(correct_by_category=TagCounts({"ischemia": 2}))
        outcome = _outcome(
            difficulty="hard",
            is_perfect=True,
            categories=["ischemia", "ischemia", "mystery"],
            findings=["ste", "de_winter", "Bad Tag!"],
        )
        merged = apply_attempt(stats, outcome, EXTENDED, 10, config, TODAY)
        assert merged.ecgs_by_difficulty["hard"] == 1
        assert merged.perfect_by_difficulty["hard"] == 1
        assert merged.correct_by_category.root == {"ischemia": 3}
        assert merged.correct_by_finding.root == {"ste": 1, "de_winter": 1}

    def test_unknown_difficulty_not_counted(self, config):
        """Unknown difficulty still counts toward the total."""
        merged = apply_attempt(_stats(), _outcome(difficulty="expert"), EXTENDED, 10, config, TODAY)
        assert "expert" not in merged.ecgs_by_difficulty
        assert merged.total_ecgs_completed == 1

    def test_daily_counter(self, config):
        """Daily count grows within a day and restarts on a new one."""
        stats = _stats(ecgs_today=3, last_activity_date=TODAY)
        assert apply_attempt(stats, _outcome(), EXTENDED, 10, config, TODAY).ecgs_today == 4
        stale = _stats(ecgs_today=3, last_activity_date=date(2026, 3, 9))
        assert apply_attempt(stale, _outcome(), EXTENDED, 10, config, TODAY).ecgs_today == 1

    def test_practice_context_and_events(self, config):
        """Practice context and first event participation are counted."""
        merged = apply_attempt(
            _stats(events_participated=1),
            _outcome(),
            EXTENDED,
            10,
            config,
            TODAY,
            practice_context="emergency",
            first_event_participation=True,
        )
        assert merged.ecgs_by_context["emergency"] == 1
        assert merged.events_participated == 2


class TestApplyBonusXP:
    def test_adds_and_relevels(self, config):
        """Bonus XP re-derives the level."""
        stats = _stats(total_xp=95)
        assert apply_bonus_xp(stats, 10, config).current_level == 2

    def test_zero_is_noop(self, config):
        """No bonus returns the same snapshot."""
        stats = _stats(total_xp=95)
        assert apply_bonus_xp(stats, 0, config) is stats


class TestStore:
    """Store-facing helpers."""

    @pytest.mark.asyncio
    async def test_lazy_init(self, store, user_id):
        """Stats are created on first read and then reused."""
        stats = await get_or_create_stats(store, user_id)
        assert stats.total_xp == 0
        assert stats.current_level == 1
        assert stats.ecgs_by_difficulty.root == {"easy": 0, "medium": 0, "hard": 0}
        assert await get_or_create_stats(store, user_id) is stats

    @pytest.mark.asyncio
    async def test_streaks_at_risk(self, store, config):
        """Only long streaks last active yesterday are at risk."""
        now = datetime(2026, 3, 11, 20, 0, tzinfo=timezone.utc)
        at_risk = uuid.uuid4()
        store.stats[at_risk] = UserStats(user_id=at_risk, current_streak=12, last_activity_date=date(2026, 3, 10))
        short = uuid.uuid4()
        store.stats[short] = UserStats(user_id=short, current_streak=2, last_activity_date=date(2026, 3, 10))
        done_today = uuid.uuid4()
        store.stats[done_today] = UserStats(user_id=done_today, current_streak=12, last_activity_date=TODAY)

        result = await list_streaks_at_risk(store, config, now)

        assert [(s.user_id, status.current_streak) for s, status in result] == [(at_risk, 12)]
