"""
Reschedule negotiation (async)
------------------------------
Functions:
  - propose(booking_id, proposed_time, actor, now=None)
  - accept(request_id, actor, booking_id=None)
  - decline(request_id, actor, booking_id=None)
  - cancel(request_id, actor, booking_id=None)
  - list_requests(booking_id, actor=None)
  - list_requests_for_user(user_id)

Notes:
  - A request goes PENDING -> ACCEPTED | DECLINED | CANCELLED exactly once.
  - Only the participant who did not propose may accept/decline; only the
    proposer may cancel.
  - Terminal transitions are compare-and-set on status; losing a race raises
    InvalidStateError instead of overwriting.
  - Timestamps in responses are ISO 8601 strings for JSON-friendliness.
  - accept re-checks the proposed time against the current calendar.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from common.errors import (
    InvalidStateError,
    InvalidTimeError,
    NotFoundError,
    SlotUnavailableError,
    UnauthorizedError,
    ConflictError,
)
from common.logging_config import get_logger
from common.models import Actor, participant_role
from common.utils import _dt_utc, utcnow
from db.session import Session
from db import repository as repo
from db.models import ACTIVE_BOOKING_STATUSES, Booking, RescheduleRequest, RescheduleStatus, User
from services.availability_service import session_fits

_log = get_logger("reschedule")

_VERB = {
    RescheduleStatus.ACCEPTED: "accept",
    RescheduleStatus.DECLINED: "decline",
    RescheduleStatus.CANCELLED: "cancel",
}


# ---------- helpers ----------
def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if isinstance(dt, datetime) else None


def _person(u: User) -> Dict[str, Any]:
    return {
        "id": str(u.id),
        "name": f"{u.first_name} {u.last_name}".strip(),
        "email": u.email,
    }


def _request_dict(r: RescheduleRequest, *, with_booking: bool = False) -> Dict[str, Any]:
    """Response shape; requested_by must be loaded, and booking/student too when with_booking."""
    out = {
        "id": str(r.id),
        "booking_id": str(r.booking_id),
        "proposed_time": _iso(r.proposed_time),
        "status": r.status.value,
        "requested_by": {**_person(r.requested_by), "role": r.requested_by_role.value},
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
    }
    if with_booking:
        b = r.booking
        out["booking"] = {
            "id": str(b.id),
            "class_id": str(b.class_id),
            "tutor_id": str(b.tutor_id),
            "scheduled_at": _iso(b.scheduled_at),
            "duration_minutes": b.duration_minutes,
            "status": b.status.value,
            "student": _person(b.student),
        }
    return out


async def _fits(db, booking: Booking, start: datetime) -> bool:
    end = start + timedelta(minutes=booking.duration_minutes or 0)
    return await session_fits(db, booking.tutor_id, start, end, exclude_booking_id=booking.id)


async def _load_request(db, request_id: uuid.UUID, booking_id: Optional[uuid.UUID]) -> RescheduleRequest:
    req = await repo.get_reschedule_request(db, request_id)
    if req is None or (booking_id is not None and req.booking_id != booking_id):
        raise NotFoundError("Reschedule request not found")
    return req


async def _respond(
    request_id: uuid.UUID,
    actor: Actor,
    new_status: RescheduleStatus,
    *,
    booking_id: Optional[uuid.UUID] = None,
) -> Dict[str, Any]:
    """Shared body of accept/decline/cancel."""
    async with Session() as db:
        req = await _load_request(db, request_id, booking_id)
        if req.status != RescheduleStatus.PENDING:
            raise InvalidStateError(f"Request already {req.status.value}")

        booking = await repo.get_booking(db, req.booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")

        side = participant_role(booking, actor.user_id)
        if side is None:
            raise UnauthorizedError("Not a participant of this booking")
        is_requester = side == req.requested_by_role
        if new_status == RescheduleStatus.CANCELLED and not is_requester:
            raise UnauthorizedError("Only the participant who proposed can cancel")
        if new_status != RescheduleStatus.CANCELLED and is_requester:
            raise UnauthorizedError(f"Only the other participant can {_VERB[new_status]}")

        # the calendar may have filled up since the proposal was made
        if new_status == RescheduleStatus.ACCEPTED and not await _fits(db, booking, req.proposed_time):
            _log.info("Rejected accept request=%s: %s no longer available", req.id, req.proposed_time)
            raise SlotUnavailableError("Proposed time is no longer available")

        won = await repo.update_reschedule_request_status(
            db, req.id, RescheduleStatus.PENDING, new_status
        )
        if not won:
            await db.rollback()
            _log.info("Lost transition race request=%s target=%s", req.id, new_status.value)
            raise InvalidStateError("Request was handled concurrently")

        if new_status == RescheduleStatus.ACCEPTED:
            await repo.update_booking_scheduled_at(db, booking.id, req.proposed_time)
        await db.commit()

        req = await repo.get_reschedule_request(db, req.id)
        _log.info(
            "Reschedule %s request=%s booking=%s by=%s",
            new_status.value, req.id, req.booking_id, side.value,
        )
        return _request_dict(req)


# ---------- public API ----------
async def propose(
    booking_id: uuid.UUID,
    proposed_time: datetime,
    actor: Actor,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Open a PENDING request to move the booking to proposed_time."""
    proposed_time = _dt_utc(proposed_time)
    now = _dt_utc(now) if now is not None else utcnow()

    async with Session() as db:
        booking = await repo.get_booking(db, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")

        side = participant_role(booking, actor.user_id)
        if side is None:
            raise UnauthorizedError("Not a participant of this booking")

        if booking.status not in ACTIVE_BOOKING_STATUSES:
            raise InvalidStateError(f"Booking is {booking.status.value}")

        if proposed_time <= now:
            raise InvalidTimeError("Proposed time must be in the future")

        if await repo.get_pending_request(db, booking.id) is not None:
            raise ConflictError("A reschedule request is already pending for this booking")

        if not await _fits(db, booking, proposed_time):
            _log.info("Rejected proposal booking=%s: %s outside availability", booking.id, proposed_time)
            raise SlotUnavailableError("Proposed time is outside the tutor's availability")

        req = await repo.insert_reschedule_request(
            db,
            booking_id=booking.id,
            proposed_time=proposed_time,
            requested_by_id=actor.user_id,
            requested_by_role=side,
            created_at=now,
        )
        req = await repo.get_reschedule_request(db, req.id)
        _log.info("Reschedule proposed request=%s booking=%s by=%s", req.id, booking.id, side.value)
        return _request_dict(req)


async def accept(request_id: uuid.UUID, actor: Actor, *, booking_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
    return await _respond(request_id, actor, RescheduleStatus.ACCEPTED, booking_id=booking_id)


async def decline(request_id: uuid.UUID, actor: Actor, *, booking_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
    return await _respond(request_id, actor, RescheduleStatus.DECLINED, booking_id=booking_id)


async def cancel(request_id: uuid.UUID, actor: Actor, *, booking_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
    return await _respond(request_id, actor, RescheduleStatus.CANCELLED, booking_id=booking_id)


async def list_requests(booking_id: uuid.UUID, actor: Optional[Actor] = None) -> List[Dict[str, Any]]:
    """All requests of a booking, newest first. With an actor, they must be a participant."""
    async with Session() as db:
        booking = await repo.get_booking(db, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if actor is not None and participant_role(booking, actor.user_id) is None:
            raise UnauthorizedError("Not a participant of this booking")
        rows = await repo.list_reschedule_requests(db, booking_id)
        return [_request_dict(r) for r in rows]


async def list_requests_for_user(user_id: uuid.UUID) -> List[Dict[str, Any]]:
    async with Session() as db:
        rows = await repo.list_reschedule_requests_for_user(db, user_id)
        return [_request_dict(r, with_booking=True) for r in rows]
