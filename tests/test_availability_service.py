# tests/test_availability_service.py
from __future__ import annotations

import importlib
from datetime import datetime, time, timedelta, timezone

import pytest

from common.errors import UnauthorizedError
from common.models import Actor
from db.models import AvailabilityRule, BookingStatus, UserRole
from factories import MONDAY, add_booking, add_rule, create_user

# Module under test
_svc = importlib.import_module("services.availability_service")

pytestmark = pytest.mark.asyncio


def _rule(day=1, start=time(9), end=time(17), tz="UTC", buffer=0) -> AvailabilityRule:
    return AvailabilityRule(day_of_week=day, start_time=start, end_time=end, timezone=tz, buffer_minutes=buffer)


async def test_get_slots_subtracts_buffered_booking(seeded):
    slots = await _svc.get_slots(seeded.tutor.id, MONDAY)
    assert [(s.start_time, s.end_time) for s in slots] == [
        (time(9), time(9, 45)),
        (time(11, 15), time(17)),
    ]


async def test_get_slots_for_tutor_without_rules(db_session):
    tutor = await create_user(db_session, UserRole.TUTOR)
    assert await _svc.get_slots(tutor.id, MONDAY) == []


async def test_cancelled_booking_frees_time(db_session, seeded):
    await add_booking(
        db_session,
        seeded.tutor.id,
        seeded.student.id,
        datetime(2030, 1, 7, 14, 0, tzinfo=timezone.utc),
        status=BookingStatus.CANCELLED,
    )
    slots = await _svc.get_slots(seeded.tutor.id, MONDAY)
    assert slots[-1].start_time == time(11, 15) and slots[-1].end_time == time(17)


async def test_booking_crossing_midnight_blocks_next_morning(db_session):
    tutor = await create_user(db_session, UserRole.TUTOR)
    student = await create_user(db_session, UserRole.STUDENT)
    await add_rule(db_session, tutor.id, day=1, start=time(0, 0), end=time(3, 0))
    await add_booking(
        db_session, tutor.id, student.id, datetime(2030, 1, 6, 23, 30, tzinfo=timezone.utc), minutes=90
    )
    slots = await _svc.get_slots(tutor.id, MONDAY)
    assert [(s.start_time, s.end_time) for s in slots] == [(time(1, 0), time(3, 0))]


async def test_get_start_times_uses_duration_and_step(seeded):
    starts = await _svc.get_start_times(seeded.tutor.id, MONDAY, duration_min=60, step_min=60)
    assert starts[0] == datetime(2030, 1, 7, 11, 15, tzinfo=timezone.utc)
    assert starts[-1] == datetime(2030, 1, 7, 15, 15, tzinfo=timezone.utc)
    assert len(starts) == 5


async def test_get_available_dates_only_lists_rule_days(seeded):
    dates = await _svc.get_available_dates(seeded.tutor.id, MONDAY, days=14)
    assert dates == [MONDAY, MONDAY + timedelta(days=7)]


async def test_get_available_dates_skips_fully_booked_day(db_session):
    tutor = await create_user(db_session, UserRole.TUTOR)
    student = await create_user(db_session, UserRole.STUDENT)
    await add_rule(db_session, tutor.id, day=1, start=time(9), end=time(10))
    await add_booking(db_session, tutor.id, student.id, datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc))
    dates = await _svc.get_available_dates(tutor.id, MONDAY, days=8)
    assert dates == [MONDAY + timedelta(days=7)]


async def test_replace_rules_is_a_full_replacement(seeded):
    actor = Actor(seeded.tutor.id, UserRole.TUTOR)
    out = await _svc.replace_rules(
        seeded.tutor.id,
        [_rule(day=2, start=time(13), end=time(15)), _rule(day=2, start=time(8), end=time(10))],
        actor,
    )
    assert [(r.day_of_week, r.start_time) for r in out] == [(2, time(8)), (2, time(13))]

    listed = await _svc.list_rules(seeded.tutor.id)
    assert len(listed) == 2
    assert await _svc.get_slots(seeded.tutor.id, MONDAY) == []


async def test_replace_rules_only_by_the_tutor(seeded):
    with pytest.raises(UnauthorizedError):
        await _svc.replace_rules(seeded.tutor.id, [_rule()], seeded.student_actor)
    other_tutor = Actor(seeded.outsider.id, UserRole.TUTOR)
    with pytest.raises(UnauthorizedError):
        await _svc.replace_rules(seeded.tutor.id, [_rule()], other_tutor)
    assert len(await _svc.list_rules(seeded.tutor.id)) == 1


@pytest.mark.parametrize(
    "bad",
    [
        dict(day=7),
        dict(start=time(17), end=time(9)),
        dict(buffer=121),
        dict(tz="Mars/Olympus_Mons"),
    ],
)
async def test_replace_rules_rejects_invalid_rules(seeded, bad):
    with pytest.raises(ValueError):
        await _svc.replace_rules(seeded.tutor.id, [_rule(**bad)], seeded.tutor_actor)
    assert len(await _svc.list_rules(seeded.tutor.id)) == 1


async def test_bookings_under_a_rule_in_another_zone_are_subtracted(db_session):
    tutor = await create_user(db_session, UserRole.TUTOR)
    student = await create_user(db_session, UserRole.STUDENT)
    # Monday 06:00 in Kiritimati is Sunday 16:00 UTC; Monday in Los Angeles runs 17:00-01:00 UTC
    await add_rule(db_session, tutor.id, day=1, start=time(6), end=time(7), tz="Pacific/Kiritimati")
    await add_rule(db_session, tutor.id, day=1, start=time(9), end=time(17), tz="America/Los_Angeles")
    busy = datetime(2030, 1, 7, 20, 0, tzinfo=timezone.utc)
    await add_booking(db_session, tutor.id, student.id, busy)

    slots = await _svc.get_slots(tutor.id, MONDAY)
    assert not any(s.contains(busy) for s in slots)
    assert any(s.contains(busy + timedelta(hours=1)) for s in slots)
    assert any(s.contains(busy - timedelta(hours=1)) for s in slots)


async def test_buffer_of_booking_after_midnight_trims_evening_slot(db_session):
    tutor = await create_user(db_session, UserRole.TUTOR)
    student = await create_user(db_session, UserRole.STUDENT)
    await add_rule(db_session, tutor.id, day=1, start=time(20), end=time(23, 59), buffer=30)
    await add_booking(db_session, tutor.id, student.id, datetime(2030, 1, 8, 0, 0, tzinfo=timezone.utc))

    slots = await _svc.get_slots(tutor.id, MONDAY)
    assert [(s.start_time, s.end_time) for s in slots] == [(time(20), time(23, 30))]


async def test_get_available_dates_sees_bookings_past_the_last_day(db_session):
    tutor = await create_user(db_session, UserRole.TUTOR)
    student = await create_user(db_session, UserRole.STUDENT)
    await add_rule(db_session, tutor.id, day=1, start=time(23), end=time(23, 59), buffer=60)
    await add_booking(db_session, tutor.id, student.id, datetime(2030, 1, 8, 0, 0, tzinfo=timezone.utc))

    assert await _svc.get_available_dates(tutor.id, MONDAY, days=1) == []
