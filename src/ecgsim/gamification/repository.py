"""Store contract for the gamification engine and its PostgreSQL implementation.

The engine only talks to ``GamificationStore``. ``SqlAlchemyGamificationStore``
backs it with the async session; every SQLAlchemy/driver failure surfaces as
``StoreUnavailableError`` so callers can retry.
"""

from __future__ import annotations

import functools
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, ParamSpec, Protocol, TypeVar

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ecgsim.db.models import (
    AchievementRow,
    GamificationConfigRow,
    Profile,
    UserAchievementRow,
    UserGamificationStatsRow,
    UserXPEventRow,
    XPEventRow,
)
from ecgsim.exceptions import StoreUnavailableError
from ecgsim.gamification.schemas import (
    Achievement,
    EventTargetType,
    ProfileInfo,
    UserStats,
    XPEvent,
)

logger = structlog.get_logger()

P = ParamSpec("P")
R = TypeVar("R")

CONFIG_ROW_ID = "default"

_STATS_MUTABLE_FIELDS = (
    "total_xp",
    "current_level",
    "current_streak",
    "longest_streak",
    "last_activity_date",
    "total_ecgs_completed",
    "total_perfect_scores",
    "perfect_streak",
    "ecgs_today",
    "ecgs_by_difficulty",
    "perfect_by_difficulty",
    "correct_by_category",
    "correct_by_finding",
    "ecgs_by_context",
    "events_participated",
)


class GamificationStore(Protocol):
    """Everything the engine reads or writes."""

    def transaction(self) -> Any: ...

    # --- stats ---
    async def get_stats(self, user_id: uuid.UUID) -> UserStats | None: ...
    async def create_stats(self, stats: UserStats) -> UserStats: ...
    async def save_stats(self, stats: UserStats, expected_version: int) -> bool: ...
    async def get_profile(self, user_id: uuid.UUID) -> ProfileInfo | None: ...
    async def list_streaks_at_risk(self, min_streak: int, last_active_on: date) -> list[UserStats]: ...

    # --- config ---
    async def get_config_values(self) -> dict[str, Any] | None: ...
    async def save_config_values(self, values: dict[str, Any], updated_by: str, updated_at: datetime) -> None: ...

    # --- events ---
    async def list_live_events(self, user_id: uuid.UUID, now: datetime) -> list[XPEvent]: ...
    async def list_enrolled_events(self, user_id: uuid.UUID) -> list[XPEvent]: ...
    async def insert_event(self, event: XPEvent) -> XPEvent: ...
    async def deactivate_event(self, event_id: uuid.UUID) -> bool: ...
    async def list_events(self, include_inactive: bool = False, limit: int | None = None) -> list[XPEvent]: ...
    async def enroll_user(self, user_id: uuid.UUID, event_id: uuid.UUID) -> None: ...
    async def mark_participated(self, user_id: uuid.UUID, event_id: uuid.UUID) -> bool: ...

    # --- achievements ---
    async def list_active_achievements(self) -> list[Achievement]: ...
    async def list_earned_achievements(self, user_id: uuid.UUID) -> dict[uuid.UUID, datetime]: ...
    async def insert_unlocks(
        self, user_id: uuid.UUID, achievement_ids: list[uuid.UUID], earned_at: datetime
    ) -> set[uuid.UUID]: ...
    async def mark_achievements_notified(self, user_id: uuid.UUID, achievement_ids: list[uuid.UUID]) -> None: ...
    async def upsert_achievements(self, definitions: Iterable[dict[str, Any]]) -> int: ...

    # --- leaderboard ---
    async def count_users(self) -> int: ...
    async def count_users_above(self, total_xp: int) -> int: ...
    async def top_users(self, limit: int) -> list[tuple[UserStats, str | None]]: ...


def _store_call(fn: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Translate driver/ORM failures into a retryable StoreUnavailableError."""

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await fn(*args, **kwargs)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("gamification_store_error", operation=fn.__name__, error=str(exc))
            raise StoreUnavailableError(f"{fn.__name__} failed", {"error": str(exc)}) from exc

    return wrapper


def _stats_from_row(row: UserGamificationStatsRow) -> UserStats:
    return UserStats.model_validate(row, from_attributes=True)


def _event_from_row(row: XPEventRow) -> XPEvent:
    return XPEvent.model_validate(row, from_attributes=True)


class SqlAlchemyGamificationStore:
    """``GamificationStore`` over an ``AsyncSession`` (PostgreSQL dialect)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Commit on success, roll back on any error."""
        try:
            yield
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StoreUnavailableError("transaction failed", {"error": str(exc)}) from exc
        except BaseException:
            await self.session.rollback()
            raise

    # --- stats ---

    @_store_call
    async def get_stats(self, user_id: uuid.UUID) -> UserStats | None:
        result = await self.session.execute(
            select(UserGamificationStatsRow).where(UserGamificationStatsRow.user_id == user_id)
        )
        row = result.scalar_one_or_none()
        return _stats_from_row(row) if row is not None else None

    @_store_call
    async def create_stats(self, stats: UserStats) -> UserStats:
        values = stats.model_dump(include={"user_id", "version", *_STATS_MUTABLE_FIELDS})
        await self.session.execute(
            pg_insert(UserGamificationStatsRow).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
        )
        result = await self.session.execute(
            select(UserGamificationStatsRow)
            .where(UserGamificationStatsRow.user_id == stats.user_id)
            .execution_options(populate_existing=True)
        )
        return _stats_from_row(result.scalar_one())

    @_store_call
    async def save_stats(self, stats: UserStats, expected_version: int) -> bool:
        """Compare-and-swap on ``version``. False when someone else wrote first."""
        values = stats.model_dump(include=set(_STATS_MUTABLE_FIELDS))
        result = await self.session.execute(
            update(UserGamificationStatsRow)
            .where(
                UserGamificationStatsRow.user_id == stats.user_id,
                UserGamificationStatsRow.version == expected_version,
            )
            .values(**values, version=expected_version + 1, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @_store_call
    async def get_profile(self, user_id: uuid.UUID) -> ProfileInfo | None:
        result = await self.session.execute(select(Profile).where(Profile.id == user_id))
        profile = result.scalar_one_or_none()
        if profile is None:
            return None
        return ProfileInfo(
            user_id=profile.id,
            created_at=profile.created_at,
            practice_context=profile.hospital_type,
            display_name=profile.full_name,
        )

    @_store_call
    async def list_streaks_at_risk(self, min_streak: int, last_active_on: date) -> list[UserStats]:
        result = await self.session.execute(
            select(UserGamificationStatsRow).where(
                UserGamificationStatsRow.current_streak >= min_streak,
                UserGamificationStatsRow.last_activity_date == last_active_on,
            )
        )
        return [_stats_from_row(row) for row in result.scalars()]

    # --- config ---

    @_store_call
    async def get_config_values(self) -> dict[str, Any] | None:
        result = await self.session.execute(
            select(GamificationConfigRow).where(GamificationConfigRow.id == CONFIG_ROW_ID)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return {col.key: getattr(row, col.key) for col in GamificationConfigRow.__table__.columns}

    @_store_call
    async def save_config_values(self, values: dict[str, Any], updated_by: str, updated_at: datetime) -> None:
        payload = {**values, "id": CONFIG_ROW_ID, "updated_by": updated_by, "updated_at": updated_at}
        stmt = pg_insert(GamificationConfigRow).values(**payload)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={k: stmt.excluded[k] for k in payload if k != "id"},
        )
        await self.session.execute(stmt)

    # --- events ---

    @_store_call
    async def list_live_events(self, user_id: uuid.UUID, now: datetime) -> list[XPEvent]:
        """Active events inside their window that target this user or everyone."""
        result = await self.session.execute(
            select(XPEventRow).where(
                XPEventRow.is_active.is_(True),
                XPEventRow.start_at <= now,
                XPEventRow.end_at >= now,
                or_(
                    XPEventRow.target_user_id == user_id,
                    and_(
                        XPEventRow.target_type == EventTargetType.ALL.value,
                        XPEventRow.target_user_id.is_(None),
                    ),
                ),
            )
        )
        return [_event_from_row(row) for row in result.scalars()]

    @_store_call
    async def list_enrolled_events(self, user_id: uuid.UUID) -> list[XPEvent]:
        result = await self.session.execute(
            select(XPEventRow)
            .join(UserXPEventRow, UserXPEventRow.event_id == XPEventRow.id)
            .where(UserXPEventRow.user_id == user_id)
        )
        return [_event_from_row(row) for row in result.unique().scalars()]

    @_store_call
    async def insert_event(self, event: XPEvent) -> XPEvent:
        row = XPEventRow(
            id=event.id,
            name=event.name,
            description=event.description,
            multiplier_type=event.multiplier_type.value,
            start_at=event.start_at,
            end_at=event.end_at,
            target_type=event.target_type.value,
            target_user_id=event.target_user_id,
            is_active=event.is_active,
            created_by=event.created_by,
        )
        self.session.add(row)
        await self.session.flush()
        return _event_from_row(row)

    @_store_call
    async def deactivate_event(self, event_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            update(XPEventRow)
            .where(XPEventRow.id == event_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @_store_call
    async def list_events(self, include_inactive: bool = False, limit: int | None = None) -> list[XPEvent]:
        stmt = select(XPEventRow).order_by(XPEventRow.created_at.desc())
        if not include_inactive:
            stmt = stmt.where(XPEventRow.is_active.is_(True))
        if limit:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [_event_from_row(row) for row in result.scalars()]

    @_store_call
    async def enroll_user(self, user_id: uuid.UUID, event_id: uuid.UUID) -> None:
        await self.session.execute(
            pg_insert(UserXPEventRow)
            .values(user_id=user_id, event_id=event_id, participated=False)
            .on_conflict_do_nothing(constraint="user_xp_events_user_id_event_id_key")
        )

    @_store_call
    async def mark_participated(self, user_id: uuid.UUID, event_id: uuid.UUID) -> bool:
        """Flag participation. True only the first time for this (user, event)."""
        stmt = pg_insert(UserXPEventRow).values(user_id=user_id, event_id=event_id, participated=True)
        stmt = stmt.on_conflict_do_update(
            constraint="user_xp_events_user_id_event_id_key",
            set_={"participated": True},
            where=UserXPEventRow.participated.is_(False),
        ).returning(UserXPEventRow.id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    # --- achievements ---

    @_store_call
    async def list_active_achievements(self) -> list[Achievement]:
        result = await self.session.execute(
            select(AchievementRow)
            .where(AchievementRow.is_active.is_(True))
            .order_by(AchievementRow.display_order)
        )
        return [Achievement.model_validate(row) for row in result.scalars()]

    @_store_call
    async def list_earned_achievements(self, user_id: uuid.UUID) -> dict[uuid.UUID, datetime]:
        result = await self.session.execute(
            select(UserAchievementRow.achievement_id, UserAchievementRow.earned_at).where(
                UserAchievementRow.user_id == user_id
            )
        )
        return {row.achievement_id: row.earned_at for row in result}

    @_store_call
    async def insert_unlocks(
        self, user_id: uuid.UUID, achievement_ids: list[uuid.UUID], earned_at: datetime
    ) -> set[uuid.UUID]:
        """Insert unlock rows; returns the ids actually inserted (conflicts are skipped)."""
        if not achievement_ids:
            return set()
        stmt = (
            pg_insert(UserAchievementRow)
            .values([
                {"user_id": user_id, "achievement_id": aid, "earned_at": earned_at, "notified": False}
                for aid in achievement_ids
            ])
            .on_conflict_do_nothing(constraint="user_achievements_user_id_achievement_id_key")
            .returning(UserAchievementRow.achievement_id)
        )
        result = await self.session.execute(stmt)
        return set(result.scalars())

    @_store_call
    async def mark_achievements_notified(self, user_id: uuid.UUID, achievement_ids: list[uuid.UUID]) -> None:
        if not achievement_ids:
            return
        await self.session.execute(
            update(UserAchievementRow)
            .where(
                UserAchievementRow.user_id == user_id,
                UserAchievementRow.achievement_id.in_(achievement_ids),
            )
            .values(notified=True)
            .execution_options(synchronize_session=False)
        )

    @_store_call
    async def upsert_achievements(self, definitions: Iterable[dict[str, Any]]) -> int:
        """Insert achievement definitions that don't exist yet (matched on slug)."""
        inserted = 0
        for definition in definitions:
            result = await self.session.execute(
                pg_insert(AchievementRow)
                .values(**definition)
                .on_conflict_do_nothing(index_elements=["slug"])
                .returning(AchievementRow.id)
            )
            if result.scalar_one_or_none() is not None:
                inserted += 1
        return inserted

    # --- leaderboard ---

    @_store_call
    async def count_users(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(UserGamificationStatsRow))
        return int(result.scalar_one())

    @_store_call
    async def count_users_above(self, total_xp: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(UserGamificationStatsRow)
            .where(UserGamificationStatsRow.total_xp > total_xp)
        )
        return int(result.scalar_one())

    @_store_call
    async def top_users(self, limit: int) -> list[tuple[UserStats, str | None]]:
        result = await self.session.execute(
            select(UserGamificationStatsRow, Profile.full_name)
            .outerjoin(Profile, Profile.id == UserGamificationStatsRow.user_id)
            .order_by(UserGamificationStatsRow.total_xp.desc(), UserGamificationStatsRow.user_id)
            .limit(limit)
        )
        return [(_stats_from_row(row), name) for row, name in result.all()]
