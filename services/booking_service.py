"""
Booking status changes (async)

A tutor may confirm or cancel their own bookings; a student may only cancel
their own. Cancelling a booking also cancels its pending reschedule request.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict

from common.errors import NotFoundError, UnauthorizedError
from common.logging_config import get_logger
from common.models import Actor
from db.session import Session
from db import repository as repo
from db.models import Booking, BookingStatus, UserRole

_log = get_logger("bookings")

_ALLOWED = {
    UserRole.TUTOR: (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    UserRole.STUDENT: (BookingStatus.CANCELLED,),
}


def _booking_dict(b: Booking) -> Dict[str, Any]:
    return {
        "id": str(b.id),
        "class_id": str(b.class_id),
        "tutor_id": str(b.tutor_id),
        "student_id": str(b.student_id),
        "scheduled_at": b.scheduled_at.isoformat(),
        "duration_minutes": b.duration_minutes,
        "status": b.status.value,
    }


async def get_booking(booking_id: uuid.UUID) -> Dict[str, Any]:
    async with Session() as db:
        b = await repo.get_booking(db, booking_id)
        if b is None:
            raise NotFoundError("Booking not found")
        return _booking_dict(b)


async def update_booking_status(booking_id: uuid.UUID, status: BookingStatus, actor: Actor) -> Dict[str, Any]:
    allowed = _ALLOWED.get(actor.role, ())
    if status not in allowed:
        raise ValueError(
            f"{actor.role.value.title()}s can only set status to {' or '.join(s.value for s in allowed)}"
        )

    async with Session() as db:
        b = await repo.get_booking(db, booking_id)
        if b is None:
            raise NotFoundError("Booking not found")
        owner_id = b.tutor_id if actor.role == UserRole.TUTOR else b.student_id
        if owner_id != actor.user_id:
            raise UnauthorizedError("You do not have permission to update this booking")

        await repo.update_booking_status(db, b.id, status)
        cancelled = 0
        if status == BookingStatus.CANCELLED:
            cancelled = await repo.cancel_pending_requests(db, b.id)
        await db.commit()

        b = await repo.get_booking(db, b.id)
        _log.info(
            "Booking %s -> %s by %s (pending reschedules cancelled: %d)",
            b.id, status.value, actor.role.value, cancelled,
        )
        return _booking_dict(b)
