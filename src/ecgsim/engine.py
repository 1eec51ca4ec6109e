"""Process-level wiring: the entry points callers use, bound to PostgreSQL and Redis."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime

import structlog

from ecgsim.config import Settings, get_settings
from ecgsim.database import close_db, init_db, session_scope
from ecgsim.gamification.config_service import get_config_provider
from ecgsim.gamification.leaderboard import get_xp_leaderboard
from ecgsim.gamification.orchestrator import on_attempt_complete, recheck_achievements
from ecgsim.gamification.repository import SqlAlchemyGamificationStore
from ecgsim.gamification.schemas import (
    AchievementRecheckResult,
    AttemptOutcome,
    AttemptResult,
    LeaderboardResult,
)
from ecgsim.gamification.seed import seed_achievements
from ecgsim.logging import setup_logging
from ecgsim.redis_client import close_redis, get_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(settings: Settings | None = None, seed: bool = True) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = settings or get_settings()
    setup_logging(settings)
    await init_db(settings)
    await init_redis(settings)

    # Seed achievement definitions (idempotent)
    if seed:
        try:
            async with session_scope() as session:
                await seed_achievements(SqlAlchemyGamificationStore(session))
        except Exception:
            logger.warning("achievement_seed_failed", exc_info=True)

    try:
        yield
    finally:
        await close_db()
        await close_redis()


async def process_attempt(
    user_id: uuid.UUID,
    outcome: AttemptOutcome,
    now: datetime | None = None,
) -> AttemptResult:
    """'Attempt completed' entry point."""
    async with session_scope() as session:
        store = SqlAlchemyGamificationStore(session)
        return await on_attempt_complete(store, user_id, outcome, redis=get_redis(), now=now)


async def recheck_user_achievements(user_id: uuid.UUID, now: datetime | None = None) -> AchievementRecheckResult:
    """Scheduled achievement re-check for one user."""
    async with session_scope() as session:
        store = SqlAlchemyGamificationStore(session)
        return await recheck_achievements(store, user_id, redis=get_redis(), now=now)


async def leaderboard_for_user(user_id: uuid.UUID, limit: int = 10) -> LeaderboardResult:
    """'Leaderboard for user' entry point."""
    async with session_scope() as session:
        store = SqlAlchemyGamificationStore(session)
        config = await get_config_provider().get(store, get_redis())
        return await get_xp_leaderboard(store, user_id, limit, config)
