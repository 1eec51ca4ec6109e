"""XP events: resolution of the single event that applies to an attempt, and
event administration (global events, personal re-engagement events).

Precedence, first match wins:
  1. active user-specific event targeting the user
  2. active global event
  3. event the user was enrolled into through ``user_xp_events``
Within a tier 3x beats 2x. Bonuses never stack across events.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone

import structlog
from pydantic import ValidationError

from ecgsim.exceptions import EventValidationError
from ecgsim.gamification.repository import GamificationStore
from ecgsim.gamification.schemas import EventTargetType, GamificationConfig, MultiplierType, XPEvent

logger = structlog.get_logger()

_MULTIPLIER_RANK = {MultiplierType.DOUBLE: 2, MultiplierType.TRIPLE: 3}


def _targets_user(user_id: uuid.UUID) -> Callable[[XPEvent], bool]:
    return lambda event: event.target_user_id == user_id


def _is_global(event: XPEvent) -> bool:
    return event.target_type == EventTargetType.ALL and event.target_user_id is None


def _best(events: Iterable[XPEvent]) -> XPEvent | None:
    """Highest multiplier; ties go to the most recently started event."""
    ranked = sorted(events, key=lambda e: (_MULTIPLIER_RANK[e.multiplier_type], e.start_at), reverse=True)
    return ranked[0] if ranked else None


def resolve_active_event(
    user_id: uuid.UUID,
    candidates: Iterable[XPEvent],
    enrolled: Iterable[XPEvent],
    now: datetime,
) -> XPEvent | None:
    """Pick the one event applying to ``user_id`` at ``now`` (None if nothing is live)."""
    live = [e for e in candidates if e.is_live(now)]
    tiers: list[Iterable[XPEvent]] = [
        filter(_targets_user(user_id), live),
        filter(_is_global, live),
        (e for e in enrolled if e.is_live(now)),
    ]
    for tier in tiers:
        event = _best(tier)
        if event is not None:
            return event
    return None


async def get_active_event(store: GamificationStore, user_id: uuid.UUID, now: datetime) -> XPEvent | None:
    """Load candidate events for ``user_id`` and resolve the one that applies."""
    candidates = await store.list_live_events(user_id, now)
    enrolled = await store.list_enrolled_events(user_id)
    return resolve_active_event(user_id, candidates, enrolled, now)


async def list_active_global_events(store: GamificationStore, now: datetime) -> list[XPEvent]:
    """Live global events, newest first (for the event banner)."""
    events = await store.list_events(include_inactive=False)
    live = [e for e in events if _is_global(e) and e.is_live(now)]
    return sorted(live, key=lambda e: e.start_at, reverse=True)


async def list_events(
    store: GamificationStore, include_inactive: bool = False, limit: int | None = None
) -> list[XPEvent]:
    return await store.list_events(include_inactive=include_inactive, limit=limit)


def _build_event(**fields: object) -> XPEvent:
    try:
        return XPEvent(id=uuid.uuid4(), **fields)
    except ValidationError as exc:
        raise EventValidationError("Invalid XP event", {"errors": exc.errors()}) from exc


async def create_global_event(
    store: GamificationStore,
    name: str,
    description: str,
    multiplier_type: str,
    start_at: datetime,
    end_at: datetime,
    created_by: str,
) -> XPEvent:
    """Admin-created event applying to every user."""
    if not name:
        raise EventValidationError("Event name is required")
    event = _build_event(
        name=name,
        description=description,
        multiplier_type=multiplier_type,
        start_at=start_at,
        end_at=end_at,
        target_type=EventTargetType.ALL,
        target_user_id=None,
        is_active=True,
        created_by=created_by,
    )
    event = await store.insert_event(event)
    logger.info("xp_event_created", event_id=str(event.id), multiplier=event.multiplier_type.value, scope="all")
    return event


async def create_personal_event(
    store: GamificationStore,
    user_id: uuid.UUID,
    name: str,
    multiplier_type: str,
    duration_hours: int,
    created_by: str | None = None,
    now: datetime | None = None,
) -> XPEvent:
    """Event for a single user starting now, e.g. to win back an inactive user."""
    if now is None:
        now = datetime.now(timezone.utc)
    event = _build_event(
        name=name,
        description=f"Evento especial de {multiplier_type} XP",
        multiplier_type=multiplier_type,
        start_at=now,
        end_at=now + timedelta(hours=duration_hours),
        target_type=EventTargetType.USER_SPECIFIC,
        target_user_id=user_id,
        is_active=True,
        created_by=created_by,
    )
    event = await store.insert_event(event)
    logger.info(
        "xp_event_created", event_id=str(event.id), multiplier=event.multiplier_type.value, user_id=str(user_id)
    )
    return event


async def deactivate_event(store: GamificationStore, event_id: uuid.UUID) -> bool:
    """Stop an event from matching. Rows are never deleted."""
    deactivated = await store.deactivate_event(event_id)
    if deactivated:
        logger.info("xp_event_deactivated", event_id=str(event_id))
    return deactivated


async def enroll_user(store: GamificationStore, user_id: uuid.UUID, event_id: uuid.UUID) -> None:
    """Opt a user into an event without making the event user-specific."""
    await store.enroll_user(user_id, event_id)


async def record_event_participation(store: GamificationStore, user_id: uuid.UUID, event_id: uuid.UUID) -> bool:
    """Mark that the user practiced during the event. True the first time only."""
    return await store.mark_participated(user_id, event_id)


# --- Inactivity re-engagement ---


def inactivity_tier(last_activity_date: date | None, today: date, config: GamificationConfig) -> int | None:
    """Largest ``inactivity_email_days`` threshold the user's absence has reached."""
    if last_activity_date is None:
        return None
    days_inactive = (today - last_activity_date).days
    reached = [d for d in config.inactivity_email_days if days_inactive >= d]
    return max(reached) if reached else None


async def grant_reengagement_event(
    store: GamificationStore,
    user_id: uuid.UUID,
    last_activity_date: date | None,
    config: GamificationConfig,
    now: datetime | None = None,
) -> XPEvent | None:
    """Give an inactive user a personal XP event.

    2x at the first inactivity threshold, 3x from the second one on. Users who
    already have a live personal event, or who are not inactive enough, get
    nothing.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    tier = inactivity_tier(last_activity_date, now.date(), config)
    if tier is None:
        return None

    live = await store.list_live_events(user_id, now)
    if any(e.target_user_id == user_id and e.is_live(now) for e in live):
        return None

    first_tier = config.inactivity_email_days[0]
    multiplier = MultiplierType.DOUBLE if tier == first_tier else MultiplierType.TRIPLE
    return await create_personal_event(
        store,
        user_id,
        name=f"Volte a praticar: {multiplier.value} XP",
        multiplier_type=multiplier.value,
        duration_hours=config.inactivity_event_duration_hours,
        created_by=None,
        now=now,
    )
