from __future__ import annotations

import uuid
from datetime import datetime, time
from typing import Optional
from enum import Enum as PyEnum

from sqlalchemy import (
    Text,
    Enum as SAEnum,
    ForeignKey,
    UniqueConstraint,
    Boolean,
    Index,
    Integer,
    Time,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from db.session import engine, Session
from db.utils import UTCDateTime, utcnow


class Base(DeclarativeBase):
    pass


# ---------- Enums ----------
class UserRole(str, PyEnum):
    TUTOR = "TUTOR"
    STUDENT = "STUDENT"


class BookingStatus(str, PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Bookings in these states occupy the tutor's calendar
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class RescheduleStatus(str, PyEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"


# ---------- Models ----------
class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(Text)
    first_name: Mapped[str] = mapped_column(Text, default="")
    last_name: Mapped[str] = mapped_column(Text, default="")
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, name="user_role", create_constraint=False))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class AvailabilityRule(Base):
    __tablename__ = "availability_rules"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tutor_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"))
    day_of_week: Mapped[int] = mapped_column(Integer)  # 0=Sun..6=Sat
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    timezone: Mapped[str] = mapped_column(Text, default="UTC")
    buffer_minutes: Mapped[int] = mapped_column(Integer, default=0)


class Booking(Base):
    __tablename__ = "bookings"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    tutor_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"))
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"))
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime)
    # snapshot of the class duration at booking time
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60)
    status: Mapped[BookingStatus] = mapped_column(
        SAEnum(BookingStatus, name="booking_status", create_constraint=False), default=BookingStatus.PENDING
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    student: Mapped["User"] = relationship(foreign_keys=[student_id], lazy="raise")


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id", ondelete="CASCADE"))
    proposed_time: Mapped[datetime] = mapped_column(UTCDateTime)
    status: Mapped[RescheduleStatus] = mapped_column(
        SAEnum(RescheduleStatus, name="reschedule_status", create_constraint=False),
        default=RescheduleStatus.PENDING,
    )
    requested_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"))
    requested_by_role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, name="user_role", create_constraint=False))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # loaded explicitly by the repository; never lazy-loaded under asyncio
    booking: Mapped["Booking"] = relationship(lazy="raise")
    requested_by: Mapped["User"] = relationship(lazy="raise")


# At most one PENDING request per booking; concurrent proposals race on this index.
Index(
    "uq_reschedule_requests_one_pending",
    RescheduleRequest.booking_id,
    unique=True,
    postgresql_where=text("status = 'PENDING'"),
    sqlite_where=text("status = 'PENDING'"),
)
Index("ix_availability_rules_tutor_day", AvailabilityRule.tutor_id, AvailabilityRule.day_of_week)
Index("ix_bookings_tutor_scheduled", Booking.tutor_id, Booking.scheduled_at)
Index("ix_reschedule_requests_booking_created", RescheduleRequest.booking_id, RescheduleRequest.created_at)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "engine",
    "Session",
    "Base",
    "User",
    "AvailabilityRule",
    "Booking",
    "RescheduleRequest",
    "UserRole",
    "BookingStatus",
    "RescheduleStatus",
    "ACTIVE_BOOKING_STATUSES",
    "init_db",
]
