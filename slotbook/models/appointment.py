"""Appointment model definitions."""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from slotbook.database import Base


class AppointmentStatus(str, enum.Enum):
    """Reservation states. Only pending and confirmed rows occupy calendar space."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def occupies_calendar(self) -> bool:
        return self in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


LIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)


class Appointment(Base):
    """Represents a client's hold or booking on a provider's calendar."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    client_id = Column(Integer, nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime)
    updated_at = Column(DateTime)
    pre_travel_minutes = Column(Integer)
    post_travel_minutes = Column(Integer)
    reply_count = Column(Integer, nullable=False, default=0)
    cancelled_by = Column(String)
    notes = Column(String)
