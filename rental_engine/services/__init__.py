"""Services package."""

from rental_engine.services.availability import AvailabilityService
from rental_engine.services.payment_service import PaymentService
from rental_engine.services.reservation_service import ReservationService
from rental_engine.services.substitution_service import SubstitutionService
from rental_engine.services.upload_relay import UploadRelayService
from rental_engine.services.vehicle_service import VehicleService

__all__ = [
    "AvailabilityService",
    "VehicleService",
    "ReservationService",
    "PaymentService",
    "SubstitutionService",
    "UploadRelayService",
]
