# common/models.py

import uuid
from dataclasses import dataclass
from typing import Optional

from db.models import Booking, UserRole


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the identity layer."""

    user_id: uuid.UUID
    role: UserRole


def participant_role(booking: Booking, user_id: uuid.UUID) -> Optional[UserRole]:
    """Which side of the booking the user is on, or None for outsiders."""
    if user_id == booking.tutor_id:
        return UserRole.TUTOR
    if user_id == booking.student_id:
        return UserRole.STUDENT
    return None
