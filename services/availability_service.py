"""
Availability service: recurring weekly rules -> offerable slots
----------------------------------------------------------------

Exports:
  - resolve_slots(rules, bookings, day, ...)     # pure, no I/O
  - available_start_times(slots, ...)            # pure, no I/O
  - booking_window(rules, days)                  # pure, no I/O
  - session_fits(db, tutor_id, start, end, ...)  # on the caller's session
  - get_slots(tutor_id, day, ...)
  - get_start_times(tutor_id, day, ...)
  - get_available_dates(tutor_id, start, days)
  - list_rules(tutor_id)
  - replace_rules(tutor_id, rules, actor)

Rules use Sunday=0..Saturday=6 and are read in their own timezone. Slots are
expressed in the tutor's timezone (the timezone of the tutor's first rule).
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, time, datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from common.errors import UnauthorizedError
from common.logging_config import get_logger
from common.utils import day_of_week
from common.config_loader import scheduling_setting
from db.session import Session
from db import repository as repo
from db.models import ACTIVE_BOOKING_STATUSES, AvailabilityRule, UserRole

_log = get_logger("availability")

MAX_BUFFER_MINUTES = 120


# --------------- Interval utils ---------------
@dataclass
class Interval:
    start: datetime
    end: datetime


def _overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and b.start < a.end


def _union(intervals: List[Interval]) -> List[Interval]:
    merged: List[Interval] = []
    for iv in sorted(intervals, key=lambda x: x.start):
        if merged and iv.start <= merged[-1].end:
            merged[-1] = Interval(merged[-1].start, max(merged[-1].end, iv.end))
        else:
            merged.append(Interval(iv.start, iv.end))
    return merged


def _subtract(base: Interval, blocks: List[Interval]) -> List[Interval]:
    free = [base]
    for b in sorted(blocks, key=lambda x: x.start):
        next_free: List[Interval] = []
        for f in free:
            if not _overlaps(f, b):
                next_free.append(f)
            else:
                if f.start < b.start:
                    next_free.append(Interval(f.start, b.start))
                if b.end < f.end:
                    next_free.append(Interval(b.end, f.end))
        free = next_free
    return [i for i in free if i.end > i.start]


# --------------- Slot ---------------
@dataclass(frozen=True)
class Slot:
    """A computed, unpersisted bookable interval in the tutor's timezone."""

    start: datetime
    end: datetime
    timezone: str

    @property
    def date(self) -> date:
        return self.start.date()

    @property
    def start_time(self) -> time:
        return self.start.time()

    @property
    def end_time(self) -> time:
        return self.end.time()

    def contains(self, start: datetime, end: Optional[datetime] = None) -> bool:
        """True when [start, end) lies inside the slot (end defaults to start)."""
        end = end or start
        if end == start:
            return self.start <= start < self.end
        return self.start <= start and end <= self.end


def _rule_interval(rule, day: date) -> Interval:
    z = ZoneInfo(rule.timezone)
    start_local = datetime.combine(day, rule.start_time, tzinfo=z)
    end_local = datetime.combine(day, rule.end_time, tzinfo=z)
    return Interval(start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc))


def _booking_block(booking, buffer: timedelta) -> Interval:
    start = booking.scheduled_at.astimezone(timezone.utc)
    end = start + timedelta(minutes=booking.duration_minutes or 0)
    return Interval(start - buffer, end + buffer)


def _day_rules(rules: Sequence, day: date) -> Tuple[list, timedelta]:
    """Rules that apply on `day` and the buffer of that day (largest of theirs)."""
    dow = day_of_week(day)
    matching = [r for r in rules if r.day_of_week == dow]
    if not matching:
        return [], timedelta(0)
    return matching, timedelta(minutes=max(r.buffer_minutes or 0 for r in matching))


def booking_window(rules: Sequence, days: Iterable[date]) -> Optional[Interval]:
    """UTC span in which a booking can affect the slots of `days`.

    Covers every matching rule interval, whatever its timezone, widened by the
    day's buffer on both ends. None when no rule applies on any of the days.
    """
    windows: List[Interval] = []
    for d in days:
        matching, buffer = _day_rules(rules, d)
        ivs = [_rule_interval(r, d) for r in matching if r.start_time < r.end_time]
        if ivs:
            windows.append(
                Interval(min(i.start for i in ivs) - buffer, max(i.end for i in ivs) + buffer)
            )
    if not windows:
        return None
    return Interval(min(w.start for w in windows), max(w.end for w in windows))


def resolve_slots(
    rules: Sequence,
    bookings: Iterable,
    day: date,
    *,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> List[Slot]:
    """Offerable slots on `day`: matching rule intervals (unioned) minus buffered bookings.

    Only bookings whose status is PENDING or CONFIRMED block. The buffer for
    the day is the largest buffer_minutes among the matching rules.
    """
    matching, buffer = _day_rules(rules, day)
    if not matching:
        return []

    tz_name = matching[0].timezone
    tz = ZoneInfo(tz_name)

    base = _union([_rule_interval(r, day) for r in matching if r.start_time < r.end_time])
    blocks = [
        _booking_block(b, buffer)
        for b in bookings
        if b.status in ACTIVE_BOOKING_STATUSES and b.id != exclude_booking_id
    ]

    free: List[Interval] = []
    for iv in base:
        free.extend(_subtract(iv, blocks))

    return [
        Slot(start=iv.start.astimezone(tz), end=iv.end.astimezone(tz), timezone=tz_name)
        for iv in sorted(free, key=lambda x: x.start)
    ]


def available_start_times(
    slots: Sequence[Slot],
    duration_min: int,
    step_min: int = 60,
    not_before: Optional[datetime] = None,
) -> List[datetime]:
    """Session start times inside the slots: t is offered when t + duration fits the slot."""
    if duration_min <= 0 or step_min <= 0:
        return []
    duration = timedelta(minutes=duration_min)
    step = timedelta(minutes=step_min)
    out: List[datetime] = []
    for s in slots:
        cur = s.start
        while cur + duration <= s.end:
            if not_before is None or cur >= not_before:
                out.append(cur)
            cur = cur + step
    return out


# --------------- Public API ---------------
async def _load_bookings(db, tutor_id: uuid.UUID, rules: Sequence, days: Iterable[date]) -> list:
    window = booking_window(rules, days)
    if window is None:
        return []
    return await repo.get_bookings(db, tutor_id, window.start, window.end)


async def session_fits(
    db,
    tutor_id: uuid.UUID,
    start: datetime,
    end: datetime,
    *,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> bool:
    """True when [start, end) lies inside one of the tutor's slots.

    Runs on the caller's session. Each rule timezone can put `start` on a
    different local date, so every such date is checked.
    """
    rules = await repo.get_availability_rules(db, tutor_id)
    if not rules:
        return False
    days = sorted({start.astimezone(ZoneInfo(tz)).date() for tz in {r.timezone for r in rules}})
    bookings = await _load_bookings(db, tutor_id, rules, days)
    for d in days:
        slots = resolve_slots(rules, bookings, d, exclude_booking_id=exclude_booking_id)
        if any(s.contains(start, end) for s in slots):
            return True
    return False


async def get_slots(
    tutor_id: uuid.UUID,
    day: date,
    *,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> List[Slot]:
    async with Session() as db:
        rules = await repo.get_availability_rules(db, tutor_id)
        bookings = await _load_bookings(db, tutor_id, rules, [day])
    return resolve_slots(rules, bookings, day, exclude_booking_id=exclude_booking_id)


async def get_start_times(
    tutor_id: uuid.UUID,
    day: date,
    *,
    duration_min: Optional[int] = None,
    step_min: Optional[int] = None,
    not_before: Optional[datetime] = None,
) -> List[datetime]:
    slots = await get_slots(tutor_id, day)
    return available_start_times(
        slots,
        duration_min or scheduling_setting("default_duration_min"),
        step_min or scheduling_setting("start_time_step_min"),
        not_before=not_before,
    )


async def get_available_dates(tutor_id: uuid.UUID, start: date, days: Optional[int] = None) -> List[date]:
    """Dates in [start, start + days) with at least one slot."""
    days = days or scheduling_setting("available_dates_days")
    if days <= 0:
        return []
    dates = [start + timedelta(days=i) for i in range(days)]
    async with Session() as db:
        rules = await repo.get_availability_rules(db, tutor_id)
        bookings = await _load_bookings(db, tutor_id, rules, dates)
    return [d for d in dates if resolve_slots(rules, bookings, d)]


async def list_rules(tutor_id: uuid.UUID) -> List[AvailabilityRule]:
    async with Session() as db:
        return await repo.get_availability_rules(db, tutor_id)


def _validate_rule(rule: AvailabilityRule) -> None:
    if not isinstance(rule.day_of_week, int) or not 0 <= rule.day_of_week <= 6:
        raise ValueError("day_of_week must be an integer in 0..6 (0=Sunday)")
    if rule.start_time >= rule.end_time:
        raise ValueError("start_time must be before end_time")
    buffer = rule.buffer_minutes or 0
    if not 0 <= buffer <= MAX_BUFFER_MINUTES:
        raise ValueError(f"buffer_minutes must be in 0..{MAX_BUFFER_MINUTES}")
    try:
        ZoneInfo(rule.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {rule.timezone!r}") from e


async def replace_rules(tutor_id: uuid.UUID, rules: List[AvailabilityRule], actor) -> List[AvailabilityRule]:
    """Replace every availability rule of the tutor. Only the tutor may do this."""
    if actor.user_id != tutor_id or actor.role != UserRole.TUTOR:
        raise UnauthorizedError("Only the tutor can change their own availability")
    for r in rules:
        _validate_rule(r)

    async with Session() as db:
        await repo.replace_availability_rules(db, tutor_id, rules)
        await db.commit()
        out = await repo.get_availability_rules(db, tutor_id)
    _log.info("Replaced availability for tutor=%s rules=%d", tutor_id, len(out))
    return out
