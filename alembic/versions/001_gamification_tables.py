"""Gamification tables.

Creates gamification_config, user_gamification_stats, xp_events,
user_xp_events, achievements and user_achievements when missing. On
databases where the trainer already created them, adds the columns the
engine introduced (stats ``version`` for compare-and-swap, ``ecgs_today``,
``perfect_by_difficulty``, ``ecgs_by_context``) and the named unique
constraints its upserts target.

``profiles`` belongs to the account subsystem and is not touched.

Revision ID: 001_gamification_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _add_constraint(table: str, name: str, definition: str) -> None:
    # ADD CONSTRAINT has no IF NOT EXISTS
    op.execute(f"""
        DO $$
        BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = '{name}') THEN
                ALTER TABLE {table} ADD CONSTRAINT {name} {definition};
            END IF;
        END
        $$
    """)


def upgrade() -> None:
    # --- Config singleton ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_config (
            id VARCHAR(32) PRIMARY KEY DEFAULT 'default',
            xp_per_ecg_base INTEGER NOT NULL DEFAULT 10,
            xp_per_score_point DOUBLE PRECISION NOT NULL DEFAULT 0.5,
            xp_difficulty_multipliers JSONB NOT NULL DEFAULT '{"easy": 0.8, "medium": 1.0, "hard": 1.3}',
            xp_streak_bonus_per_day DOUBLE PRECISION NOT NULL DEFAULT 0.5,
            xp_streak_bonus_max INTEGER NOT NULL DEFAULT 15,
            xp_perfect_bonus INTEGER NOT NULL DEFAULT 25,
            level_multiplier_per_level DOUBLE PRECISION NOT NULL DEFAULT 0.002525,
            max_level INTEGER NOT NULL DEFAULT 100,
            xp_per_level_base INTEGER NOT NULL DEFAULT 100,
            xp_per_level_growth DOUBLE PRECISION NOT NULL DEFAULT 1.15,
            event_2x_bonus DOUBLE PRECISION NOT NULL DEFAULT 0.125,
            event_3x_bonus DOUBLE PRECISION NOT NULL DEFAULT 0.25,
            streak_grace_period_hours INTEGER NOT NULL DEFAULT 36,
            inactivity_email_days JSONB NOT NULL DEFAULT '[7, 30, 60]',
            inactivity_event_duration_hours INTEGER NOT NULL DEFAULT 24,
            ranking_top_n_visible INTEGER NOT NULL DEFAULT 10,
            updated_at TIMESTAMPTZ,
            updated_by VARCHAR(64)
        )
    """)

    # --- Per-user stats ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_gamification_stats (
            user_id UUID PRIMARY KEY,
            version INTEGER NOT NULL DEFAULT 0,
            total_xp BIGINT NOT NULL DEFAULT 0,
            current_level INTEGER NOT NULL DEFAULT 1,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            total_ecgs_completed INTEGER NOT NULL DEFAULT 0,
            total_perfect_scores INTEGER NOT NULL DEFAULT 0,
            perfect_streak INTEGER NOT NULL DEFAULT 0,
            ecgs_today INTEGER NOT NULL DEFAULT 0,
            ecgs_by_difficulty JSONB NOT NULL DEFAULT '{}',
            perfect_by_difficulty JSONB NOT NULL DEFAULT '{}',
            correct_by_category JSONB NOT NULL DEFAULT '{}',
            correct_by_finding JSONB NOT NULL DEFAULT '{}',
            ecgs_by_context JSONB NOT NULL DEFAULT '{}',
            events_participated INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        ALTER TABLE user_gamification_stats
            ADD COLUMN IF NOT EXISTS version INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS ecgs_today INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS perfect_by_difficulty JSONB NOT NULL DEFAULT '{}',
            ADD COLUMN IF NOT EXISTS ecgs_by_context JSONB NOT NULL DEFAULT '{}'
    """)
    _add_constraint("user_gamification_stats", "ugs_total_xp_non_negative", "CHECK (total_xp >= 0)")
    _add_constraint(
        "user_gamification_stats", "ugs_longest_ge_current", "CHECK (longest_streak >= current_streak)"
    )
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_ugs_total_xp
        ON user_gamification_stats(total_xp DESC)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_ugs_last_activity
        ON user_gamification_stats(last_activity_date)
    """)

    # --- XP events ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            multiplier_type VARCHAR(4) NOT NULL,
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            target_type VARCHAR(16) NOT NULL DEFAULT 'all',
            target_user_id UUID,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_by VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    _add_constraint("xp_events", "xp_events_window_order", "CHECK (start_at < end_at)")
    _add_constraint(
        "xp_events",
        "xp_events_user_specific_has_target",
        "CHECK (target_type = 'all' OR target_user_id IS NOT NULL)",
    )
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_events_target_user
        ON xp_events(target_user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_events_active_window
        ON xp_events(start_at, end_at)
        WHERE is_active = true
    """)

    # --- Event enrolment / participation ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_xp_events (
            id BIGSERIAL PRIMARY KEY,
            user_id UUID NOT NULL,
            event_id UUID NOT NULL REFERENCES xp_events(id) ON DELETE CASCADE,
            participated BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    _add_constraint("user_xp_events", "user_xp_events_user_id_event_id_key", "UNIQUE (user_id, event_id)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_xp_events_user
        ON user_xp_events(user_id)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            slug VARCHAR(64) NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            category VARCHAR(32) NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            xp_reward INTEGER NOT NULL DEFAULT 0,
            unlock_conditions JSONB NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            is_hidden BOOLEAN NOT NULL DEFAULT false,
            display_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    # Seeding upserts on slug
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS achievements_slug_key
        ON achievements(slug)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id UUID NOT NULL,
            achievement_id UUID NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
            earned_at TIMESTAMPTZ NOT NULL,
            notified BOOLEAN NOT NULL DEFAULT false
        )
    """)
    _add_constraint(
        "user_achievements",
        "user_achievements_user_id_achievement_id_key",
        "UNIQUE (user_id, achievement_id)",
    )
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_achievements_user
        ON user_achievements(user_id)
    """)


def downgrade() -> None:
    # Tables may predate this revision; only its additions are reverted
    for table, name in (
        ("user_achievements", "user_achievements_user_id_achievement_id_key"),
        ("user_xp_events", "user_xp_events_user_id_event_id_key"),
        ("xp_events", "xp_events_user_specific_has_target"),
        ("xp_events", "xp_events_window_order"),
        ("user_gamification_stats", "ugs_longest_ge_current"),
        ("user_gamification_stats", "ugs_total_xp_non_negative"),
    ):
        op.execute(f"ALTER TABLE IF EXISTS {table} DROP CONSTRAINT IF EXISTS {name}")
    op.execute("""
        ALTER TABLE IF EXISTS user_gamification_stats
            DROP COLUMN IF EXISTS version,
            DROP COLUMN IF EXISTS ecgs_today,
            DROP COLUMN IF EXISTS perfect_by_difficulty,
            DROP COLUMN IF EXISTS ecgs_by_context
    """)
