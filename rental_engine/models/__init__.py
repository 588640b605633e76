"""SQLAlchemy models."""

from rental_engine.models.base import Base
from rental_engine.models.counter import Counter
from rental_engine.models.payment import IntentStatus, PaymentIntentRecord
from rental_engine.models.reservation import (
    Extension,
    InsurancePlan,
    PaymentStatus,
    RentalType,
    Reservation,
    ReservationStatus,
    StatusChange,
)
from rental_engine.models.vehicle import Vehicle

__all__ = [
    "Base",
    "Counter",
    "Vehicle",
    "Reservation",
    "Extension",
    "StatusChange",
    "PaymentIntentRecord",
    "IntentStatus",
    "ReservationStatus",
    "PaymentStatus",
    "RentalType",
    "InsurancePlan",
]
