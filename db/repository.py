# db/repository.py
"""
Persistence boundary for the scheduling services.

Every function takes the caller's AsyncSession so a service can group several
calls into one transaction. The two race-prone writes are atomic here:
  - insert_reschedule_request relies on the partial unique index
    (one PENDING request per booking) and turns a violation into ConflictError
  - update_reschedule_request_status is a compare-and-set on the current status
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from common.errors import ConflictError
from db.models import (
    AvailabilityRule,
    Booking,
    BookingStatus,
    RescheduleRequest,
    RescheduleStatus,
    User,
    UserRole,
)
from db.utils import utcnow


# ---------- users ----------
async def get_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    return await db.get(User, user_id)


# ---------- availability rules ----------
async def get_availability_rules(db: AsyncSession, tutor_id: uuid.UUID) -> List[AvailabilityRule]:
    rows = await db.execute(
        select(AvailabilityRule)
        .where(AvailabilityRule.tutor_id == tutor_id)
        .order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
    )
    return list(rows.scalars().all())


async def replace_availability_rules(
    db: AsyncSession, tutor_id: uuid.UUID, rules: Iterable[AvailabilityRule]
) -> None:
    """Delete every rule of the tutor and add the new ones. Caller commits."""
    await db.execute(delete(AvailabilityRule).where(AvailabilityRule.tutor_id == tutor_id))
    for r in rules:
        r.tutor_id = tutor_id
        db.add(r)
    await db.flush()


# ---------- bookings ----------
async def get_booking(db: AsyncSession, booking_id: uuid.UUID) -> Optional[Booking]:
    return await db.get(Booking, booking_id, populate_existing=True)


async def get_bookings_between(
    db: AsyncSession,
    tutor_id: uuid.UUID,
    start: datetime,
    end: datetime,
    statuses: Sequence[BookingStatus] = (BookingStatus.PENDING, BookingStatus.CONFIRMED),
) -> List[Booking]:
    """Bookings of the tutor whose scheduled_at falls in [start, end)."""
    rows = await db.execute(
        select(Booking)
        .where(
            Booking.tutor_id == tutor_id,
            Booking.status.in_(list(statuses)),
            Booking.scheduled_at >= start,
            Booking.scheduled_at < end,
        )
        .order_by(Booking.scheduled_at)
    )
    return list(rows.scalars().all())


async def get_bookings(db: AsyncSession, tutor_id: uuid.UUID, start: datetime, end: datetime) -> List[Booking]:
    """Active bookings of the tutor whose session overlaps [start, end).

    scheduled_at is the only indexed bound, so the lower edge is pulled back by
    the tutor's longest active booking; callers clip by interval overlap.
    """
    active = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
    longest = await db.scalar(
        select(func.max(Booking.duration_minutes)).where(
            Booking.tutor_id == tutor_id,
            Booking.status.in_(active),
        )
    )
    return await get_bookings_between(db, tutor_id, start - timedelta(minutes=longest or 0), end, active)


async def update_booking_scheduled_at(db: AsyncSession, booking_id: uuid.UUID, new_time: datetime) -> None:
    await db.execute(update(Booking).where(Booking.id == booking_id).values(scheduled_at=new_time))


async def update_booking_status(db: AsyncSession, booking_id: uuid.UUID, status: BookingStatus) -> None:
    await db.execute(update(Booking).where(Booking.id == booking_id).values(status=status))


# ---------- reschedule requests ----------
async def get_reschedule_request(db: AsyncSession, request_id: uuid.UUID) -> Optional[RescheduleRequest]:
    return await db.get(
        RescheduleRequest,
        request_id,
        options=[selectinload(RescheduleRequest.requested_by)],
        populate_existing=True,
    )


async def get_pending_request(db: AsyncSession, booking_id: uuid.UUID) -> Optional[RescheduleRequest]:
    return await db.scalar(
        select(RescheduleRequest).where(
            RescheduleRequest.booking_id == booking_id,
            RescheduleRequest.status == RescheduleStatus.PENDING,
        )
    )


async def insert_reschedule_request(
    db: AsyncSession,
    *,
    booking_id: uuid.UUID,
    proposed_time: datetime,
    requested_by_id: uuid.UUID,
    requested_by_role: UserRole,
    created_at: Optional[datetime] = None,
) -> RescheduleRequest:
    """Insert and commit a PENDING request; ConflictError if one is already pending."""
    req = RescheduleRequest(
        booking_id=booking_id,
        proposed_time=proposed_time,
        status=RescheduleStatus.PENDING,
        requested_by_id=requested_by_id,
        requested_by_role=requested_by_role,
        created_at=created_at or utcnow(),
    )
    db.add(req)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(f"Booking {booking_id} already has a pending reschedule request") from e
    await db.refresh(req)
    return req


async def update_reschedule_request_status(
    db: AsyncSession,
    request_id: uuid.UUID,
    expected_current_status: RescheduleStatus,
    new_status: RescheduleStatus,
) -> bool:
    """Conditional transition. False means the row was no longer in the expected state."""
    result = await db.execute(
        update(RescheduleRequest)
        .where(
            RescheduleRequest.id == request_id,
            RescheduleRequest.status == expected_current_status,
        )
        .values(status=new_status, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def cancel_pending_requests(db: AsyncSession, booking_id: uuid.UUID) -> int:
    result = await db.execute(
        update(RescheduleRequest)
        .where(
            RescheduleRequest.booking_id == booking_id,
            RescheduleRequest.status == RescheduleStatus.PENDING,
        )
        .values(status=RescheduleStatus.CANCELLED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def list_reschedule_requests(db: AsyncSession, booking_id: uuid.UUID) -> List[RescheduleRequest]:
    rows = await db.execute(
        select(RescheduleRequest)
        .where(RescheduleRequest.booking_id == booking_id)
        .options(selectinload(RescheduleRequest.requested_by))
        .order_by(RescheduleRequest.created_at.desc(), RescheduleRequest.id)
        .execution_options(populate_existing=True)
    )
    return list(rows.scalars().all())


async def list_reschedule_requests_for_user(db: AsyncSession, user_id: uuid.UUID) -> List[RescheduleRequest]:
    """Requests the user made or that concern one of their bookings, with booking and student loaded."""
    rows = await db.execute(
        select(RescheduleRequest)
        .join(Booking, Booking.id == RescheduleRequest.booking_id)
        .where(
            or_(
                RescheduleRequest.requested_by_id == user_id,
                Booking.student_id == user_id,
                Booking.tutor_id == user_id,
            )
        )
        .options(
            selectinload(RescheduleRequest.requested_by),
            selectinload(RescheduleRequest.booking).selectinload(Booking.student),
        )
        .order_by(RescheduleRequest.created_at.desc(), RescheduleRequest.id)
        .execution_options(populate_existing=True)
    )
    return list(rows.scalars().all())
