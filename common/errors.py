# common/errors.py
"""
Business-rule rejections raised by the scheduling services.

These are never retried inside the services. Storage failures are not part of
this family; they surface as SQLAlchemy errors.
"""
from __future__ import annotations


class SchedulingError(Exception):
    """Base class for every rejection the scheduling core produces."""


class NotFoundError(SchedulingError):
    """Unknown booking, request or user id."""


class UnauthorizedError(SchedulingError):
    """Actor is not a participant, or not the participant allowed to act."""


class ConflictError(SchedulingError):
    """A PENDING reschedule request already exists for the booking."""


class InvalidStateError(SchedulingError):
    """Transition attempted from a terminal state, including a lost race."""


class SlotUnavailableError(SchedulingError):
    """Proposed time does not fall inside a resolved availability slot."""


class InvalidTimeError(SchedulingError):
    """Proposed time is not strictly in the future."""


__all__ = [
    "SchedulingError",
    "NotFoundError",
    "UnauthorizedError",
    "ConflictError",
    "InvalidStateError",
    "SlotUnavailableError",
    "InvalidTimeError",
]
