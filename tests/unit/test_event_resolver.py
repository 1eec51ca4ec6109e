"""XP event tests: precedence, tie-break, window bounds, admin and re-engagement."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from ecgsim.exceptions import EventValidationError
from ecgsim.gamification.events import (
    create_global_event,
    create_personal_event,
    deactivate_event,
    enroll_user,
    get_active_event,
    grant_reengagement_event,
    inactivity_tier,
    list_active_global_events,
    record_event_participation,
    resolve_active_event,
)
from ecgsim.gamification.schemas import EventTargetType, MultiplierType, XPEvent

NOW = datetime(2026, 3, 11, 14, 0, tzinfo=timezone.utc)


def _event(
    multiplier: str = "2x",
    user_id: uuid.UUID | None = None,
    start: datetime = NOW - timedelta(hours=1),
    end: datetime = NOW + timedelta(hours=1),
    is_active: bool = True,
    name: str = "event",
) -> XPEvent:
    return XPEvent(
        id=uuid.uuid4(),
        name=name,
        multiplier_type=multiplier,
        start_at=start,
        end_at=end,
        target_type=EventTargetType.USER_SPECIFIC if user_id else EventTargetType.ALL,
        target_user_id=user_id,
        is_active=is_active,
    )


class TestResolveActiveEvent:
    """Single prioritized resolver."""

    def test_nothing_live(self, user_id):
        """No events, no bonus."""
        assert resolve_active_event(user_id, [], [], NOW) is None

    def test_user_specific_beats_global(self, user_id):
        """A personal 2x outranks a global 3x."""
        personal = _event("2x", user_id=user_id)
        global_3x = _event("3x")
        assert resolve_active_event(user_id, [global_3x, personal], [], NOW) == personal

    def test_global_beats_enrolled(self, user_id):
        """A global event outranks an enrolment."""
        global_2x = _event("2x")
        enrolled = _event("3x", name="enrolled")
        assert resolve_active_event(user_id, [global_2x], [enrolled], NOW) == global_2x

    def test_enrolled_used_as_fallback(self, user_id):
        """Enrolled events apply when nothing else is live."""
        enrolled = _event("3x")
        assert resolve_active_event(user_id, [], [enrolled], NOW) == enrolled

    def test_3x_beats_2x_within_tier(self, user_id):
        """Within a tier the bigger multiplier wins."""
        double = _event("2x", start=NOW - timedelta(minutes=5))
        triple = _event("3x", start=NOW - timedelta(hours=3))
        assert resolve_active_event(user_id, [double, triple], [], NOW) == triple

    def test_same_multiplier_latest_start_wins(self, user_id):
        """Ties go to the event that started last."""
        older = _event("2x", start=NOW - timedelta(hours=3))
        newer = _event("2x", start=NOW - timedelta(minutes=5))
        assert resolve_active_event(user_id, [older, newer], [], NOW) == newer

    def test_window_bounds_inclusive(self, user_id):
        """Both window ends count as live."""
        starts_now = _event("2x", start=NOW, end=NOW + timedelta(hours=1))
        ends_now = _event("2x", start=NOW - timedelta(hours=1), end=NOW)
        assert resolve_active_event(user_id, [starts_now], [], NOW) == starts_now
        assert resolve_active_event(user_id, [ends_now], [], NOW) == ends_now
        assert resolve_active_event(user_id, [ends_now], [], NOW + timedelta(seconds=1)) is None

    def test_other_users_event_ignored(self, user_id):
        """Someone else's personal event doesn't apply."""
        someone_else = _event("3x", user_id=uuid.uuid4())
        assert resolve_active_event(user_id, [someone_else], [], NOW) is None

    def test_inactive_ignored(self, user_id):
        """Deactivated events never apply."""
        assert resolve_active_event(user_id, [_event("3x", is_active=False)], [], NOW) is None


class TestEventValidation:
    def test_window_must_be_ordered(self):
        """An event must end after it starts."""
        with pytest.raises(ValueError):
            _event(start=NOW, end=NOW)

    def test_user_specific_needs_user(self):
        """Personal events need a target user."""
        with pytest.raises(ValueError):
            XPEvent(
                id=uuid.uuid4(),
                name="x",
                multiplier_type=MultiplierType.DOUBLE,
                start_at=NOW,
                end_at=NOW + timedelta(hours=1),
                target_type=EventTargetType.USER_SPECIFIC,
            )

    @pytest.mark.asyncio
    async def test_create_global_rejects_unknown_multiplier(self, store):
        """Only 2x and 3x exist; nothing is stored."""
        with pytest.raises(EventValidationError):
            await create_global_event(store, "Mega", "", "5x", NOW, NOW + timedelta(hours=2), "admin@example.com")
        assert store.events == {}

    @pytest.mark.asyncio
    async def test_create_global_requires_name(self, store):
        """Events need a name."""
        with pytest.raises(EventValidationError):
            await create_global_event(store, "", "", "2x", NOW, NOW + timedelta(hours=2), "admin@example.com")


class TestEventAdministration:
    """Store-backed event operations."""

    @pytest.mark.asyncio
    async def test_global_event_applies_to_everyone(self, store, user_id):
        """A global event is live for any user."""
        event = await create_global_event(
            store, "Weekend", "Double XP", "2x", NOW - timedelta(hours=1), NOW + timedelta(days=2), "admin"
        )
        assert (await get_active_event(store, user_id, NOW)).id == event.id
        assert (await get_active_event(store, uuid.uuid4(), NOW)).id == event.id
        assert [e.id for e in await list_active_global_events(store, NOW)] == [event.id]

    @pytest.mark.asyncio
    async def test_deactivated_event_stops_matching(self, store, user_id):
        """Deactivation is immediate; unknown ids report False."""
        event = await create_global_event(store, "Flash", "", "3x", NOW, NOW + timedelta(hours=1), "admin")
        assert await deactivate_event(store, event.id) is True
        assert await get_active_event(store, user_id, NOW) is None
        assert await deactivate_event(store, uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_personal_event_window(self, store, user_id):
        """Personal events start now and last the given hours."""
        event = await create_personal_event(store, user_id, "Welcome back", "3x", duration_hours=24, now=NOW)
        assert event.start_at == NOW
        assert event.end_at == NOW + timedelta(hours=24)
        assert event.target_user_id == user_id
        assert await get_active_event(store, uuid.uuid4(), NOW) is None

    @pytest.mark.asyncio
    async def test_enrollment_and_participation(self, store, user_id):
        """Enrolment makes an event live; participation is recorded once."""
        enrolled = store.add_event(_event("2x", user_id=uuid.uuid4()))
        await enroll_user(store, user_id, enrolled.id)
        assert (await get_active_event(store, user_id, NOW)).id == enrolled.id

        assert await record_event_participation(store, user_id, enrolled.id) is True
        assert await record_event_participation(store, user_id, enrolled.id) is False


class TestInactivity:
    """Re-engagement events for users who stopped practicing."""

    def test_tiers(self, config):
        """The highest inactivity threshold reached is reported."""
        today = date(2026, 3, 11)
        assert inactivity_tier(None, today, config) is None
        assert inactivity_tier(today - timedelta(days=6), today, config) is None
        assert inactivity_tier(today - timedelta(days=7), today, config) == 7
        assert inactivity_tier(today - timedelta(days=45), today, config) == 30
        assert inactivity_tier(today - timedelta(days=400), today, config) == 60

    @pytest.mark.asyncio
    async def test_first_tier_gets_2x(self, store, user_id, config):
        """The first threshold grants a 2x event."""
        event = await grant_reengagement_event(store, user_id, date(2026, 3, 1), config, now=NOW)
        assert event is not None
        assert event.multiplier_type == MultiplierType.DOUBLE
        assert event.end_at - event.start_at == timedelta(hours=config.inactivity_event_duration_hours)

    @pytest.mark.asyncio
    async def test_later_tiers_get_3x(self, store, user_id, config):
        """Longer absences grant 3x."""
        event = await grant_reengagement_event(store, user_id, date(2026, 1, 1), config, now=NOW)
        assert event.multiplier_type == MultiplierType.TRIPLE

    @pytest.mark.asyncio
    async def test_active_user_gets_nothing(self, store, user_id, config):
        """Recently active users get no event."""
        assert await grant_reengagement_event(store, user_id, date(2026, 3, 10), config, now=NOW) is None
        assert store.events == {}

    @pytest.mark.asyncio
    async def test_not_granted_twice(self, store, user_id, config):
        """A live personal event blocks another grant."""
        assert await grant_reengagement_event(store, user_id, date(2026, 3, 1), config, now=NOW) is not None
        assert await grant_reengagement_event(store, user_id, date(2026, 3, 1), config, now=NOW) is None
        assert len(store.events) == 1
