from __future__ import annotations

import uuid
import os
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from dotenv import load_dotenv

# --- Load env before importing models/engine ---
for name in (".env.local", "env.local", ".env"):
    if os.path.exists(name):
        load_dotenv(name, override=False)

# --- Project imports ---
from api.deps import get_current_actor
from api.schemas import (
    AvailabilityReplace,
    AvailabilityRuleOut,
    BookingOut,
    BookingStatusPatch,
    RescheduleCreate,
    RescheduleOut,
    SlotOut,
)
from common.errors import (
    ConflictError,
    InvalidStateError,
    InvalidTimeError,
    NotFoundError,
    SchedulingError,
    SlotUnavailableError,
    UnauthorizedError,
)
from common.logging_config import configure_logging, get_logger
from common.models import Actor
from common.utils import utcnow
from db.models import AvailabilityRule, init_db, engine
from services import availability_service, booking_service, reschedule_service

configure_logging()
_log = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await engine.dispose()


app = FastAPI(
    lifespan=lifespan,
    title="Classroom Scheduling API",
    version="0.1.0",
)


# ---------------------------
# Error mapping
# ---------------------------
_STATUS_BY_ERROR = {
    UnauthorizedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    InvalidStateError: 409,
    SlotUnavailableError: 422,
    InvalidTimeError: 422,
}


@app.exception_handler(SchedulingError)
async def _scheduling_error(request: Request, exc: SchedulingError):
    code = _STATUS_BY_ERROR.get(type(exc), 400)
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(OperationalError)
async def _storage_error(request: Request, exc: OperationalError):
    _log.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


# ---------------------------
# Helpers
# ---------------------------
def _parse_uuid(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(400, f"{field} must be a UUID")


def _rule_out(r: AvailabilityRule) -> AvailabilityRuleOut:
    return AvailabilityRuleOut(
        id=str(r.id),
        tutor_id=str(r.tutor_id),
        day_of_week=r.day_of_week,
        start_time=r.start_time,
        end_time=r.end_time,
        timezone=r.timezone,
        buffer_minutes=r.buffer_minutes,
    )


# ---------------------------
# Availability
# ---------------------------
@app.get("/tutors/{tutor_id}/availability", response_model=List[AvailabilityRuleOut])
async def list_availability(tutor_id: str):
    rules = await availability_service.list_rules(_parse_uuid(tutor_id, "tutor_id"))
    return [_rule_out(r) for r in rules]


@app.put("/tutors/{tutor_id}/availability", response_model=List[AvailabilityRuleOut])
async def replace_availability(
    tutor_id: str,
    body: AvailabilityReplace,
    actor: Actor = Depends(get_current_actor),
):
    """Full replacement of the tutor's weekly rules."""
    rules = [AvailabilityRule(**r.model_dump()) for r in body.rules]
    try:
        saved = await availability_service.replace_rules(_parse_uuid(tutor_id, "tutor_id"), rules, actor)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return [_rule_out(r) for r in saved]


@app.get("/tutors/{tutor_id}/slots", response_model=List[SlotOut])
async def slots(tutor_id: str, date: date = Query(..., description="Calendar date in the tutor's timezone")):
    out = await availability_service.get_slots(_parse_uuid(tutor_id, "tutor_id"), date)
    return [
        SlotOut(
            date=s.date,
            start_time=s.start_time,
            end_time=s.end_time,
            timezone=s.timezone,
            start=s.start,
            end=s.end,
        )
        for s in out
    ]


@app.get("/tutors/{tutor_id}/start-times")
async def start_times(
    tutor_id: str,
    date: date = Query(...),
    duration_min: Optional[int] = Query(default=None, gt=0),
):
    starts = await availability_service.get_start_times(
        _parse_uuid(tutor_id, "tutor_id"),
        date,
        duration_min=duration_min,
        not_before=utcnow(),
    )
    return {"start_times": [s.isoformat() for s in starts]}


@app.get("/tutors/{tutor_id}/available-dates")
async def available_dates(
    tutor_id: str,
    start: Optional[date] = None,
    days: Optional[int] = Query(default=None, gt=0, le=366),
):
    start = start or utcnow().date()
    out = await availability_service.get_available_dates(_parse_uuid(tutor_id, "tutor_id"), start, days)
    return {"dates": [d.isoformat() for d in out]}


# ---------------------------
# Reschedule negotiation
# ---------------------------
@app.post("/bookings/{booking_id}/reschedule", response_model=RescheduleOut, status_code=201)
async def propose_reschedule(
    booking_id: str,
    body: RescheduleCreate,
    actor: Actor = Depends(get_current_actor),
):
    return await reschedule_service.propose(_parse_uuid(booking_id, "booking_id"), body.proposed_time, actor)


@app.get("/bookings/{booking_id}/reschedule", response_model=List[RescheduleOut])
async def list_booking_reschedules(booking_id: str, actor: Actor = Depends(get_current_actor)):
    return await reschedule_service.list_requests(_parse_uuid(booking_id, "booking_id"), actor)


@app.post("/bookings/{booking_id}/reschedule/{request_id}/accept", response_model=RescheduleOut)
async def accept_reschedule(booking_id: str, request_id: str, actor: Actor = Depends(get_current_actor)):
    return await reschedule_service.accept(
        _parse_uuid(request_id, "request_id"), actor, booking_id=_parse_uuid(booking_id, "booking_id")
    )


@app.post("/bookings/{booking_id}/reschedule/{request_id}/decline", response_model=RescheduleOut)
async def decline_reschedule(booking_id: str, request_id: str, actor: Actor = Depends(get_current_actor)):
    return await reschedule_service.decline(
        _parse_uuid(request_id, "request_id"), actor, booking_id=_parse_uuid(booking_id, "booking_id")
    )


@app.post("/bookings/{booking_id}/reschedule/{request_id}/cancel", response_model=RescheduleOut)
async def cancel_reschedule(booking_id: str, request_id: str, actor: Actor = Depends(get_current_actor)):
    return await reschedule_service.cancel(
        _parse_uuid(request_id, "request_id"), actor, booking_id=_parse_uuid(booking_id, "booking_id")
    )


@app.get("/reschedule-requests", response_model=List[RescheduleOut])
async def my_reschedules(actor: Actor = Depends(get_current_actor)):
    return await reschedule_service.list_requests_for_user(actor.user_id)


# ---------------------------
# Bookings
# ---------------------------
@app.patch("/bookings/{booking_id}/status", response_model=BookingOut)
async def patch_booking_status(
    booking_id: str,
    body: BookingStatusPatch,
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await booking_service.update_booking_status(
            _parse_uuid(booking_id, "booking_id"), body.status, actor
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
