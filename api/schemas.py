from __future__ import annotations
from datetime import date, time, datetime
from typing import List, Optional, Literal

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import BaseModel, Field, field_validator, model_validator

from db.models import BookingStatus


class AvailabilityRuleIn(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0=Sun ... 6=Sat")
    start_time: time
    end_time: time
    timezone: str = Field(..., min_length=1)
    buffer_minutes: int = Field(default=0, ge=0, le=120)

    @field_validator("timezone")
    @classmethod
    def _known_tz(cls, v: str):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {v!r}")
        return v

    @model_validator(mode="after")
    def _ordered(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class AvailabilityReplace(BaseModel):
    rules: List[AvailabilityRuleIn] = Field(default_factory=list)


class AvailabilityRuleOut(BaseModel):
    id: str
    tutor_id: str
    day_of_week: int
    start_time: time
    end_time: time
    timezone: str
    buffer_minutes: int


class SlotOut(BaseModel):
    date: date
    start_time: time
    end_time: time
    timezone: str
    start: datetime
    end: datetime


class RescheduleCreate(BaseModel):
    proposed_time: datetime

    @field_validator("proposed_time")
    @classmethod
    def _tz_required(cls, v: datetime):
        if v.tzinfo is None:
            raise ValueError("proposed_time must include a timezone offset")
        return v


class PersonOut(BaseModel):
    id: str
    name: str
    email: str


class RequestedBy(PersonOut):
    role: Literal["TUTOR", "STUDENT"]


class BookingSummary(BaseModel):
    id: str
    class_id: str
    tutor_id: str
    scheduled_at: datetime
    duration_minutes: int
    status: BookingStatus
    student: PersonOut


class RescheduleOut(BaseModel):
    id: str
    booking_id: str
    proposed_time: datetime
    status: Literal["PENDING", "ACCEPTED", "DECLINED", "CANCELLED"]
    requested_by: RequestedBy
    created_at: datetime
    updated_at: Optional[datetime] = None
    # only filled on the caller's request list
    booking: Optional[BookingSummary] = None


class BookingStatusPatch(BaseModel):
    status: BookingStatus


class BookingOut(BaseModel):
    id: str
    class_id: str
    tutor_id: str
    student_id: str
    scheduled_at: datetime
    duration_minutes: int
    status: BookingStatus
