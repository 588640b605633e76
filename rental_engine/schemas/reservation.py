"""Reservation schemas."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from rental_engine.models.reservation import (
    InsurancePlan,
    PaymentStatus,
    RentalType,
    ReservationStatus,
)
from rental_engine.schemas.common import BaseSchema
from rental_engine.schemas.vehicle import VehicleResponse

CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ReservationCreate(BaseSchema):
    """Schema for a driver's booking request."""

    vehicle_id: str = Field(..., min_length=1, max_length=26)
    start_date: date
    end_date: date
    rental_type: RentalType = RentalType.DAILY
    quantity: int | None = Field(None, ge=1)
    pickup_time: str | None = Field(None, pattern=CLOCK_PATTERN)
    insurance_plan: InsurancePlan = InsurancePlan.NONE
    message: str = Field(default="", max_length=2000)


class ExtensionResponse(BaseSchema):
    """Schema for an applied extension."""

    extension_id: str
    quantity: int
    amount: Decimal
    previous_end_date: date
    new_end_date: date
    payment_intent_id: str
    created_at: datetime


class ReservationResponse(BaseSchema):
    """Schema for reservation response."""

    reservation_id: str
    reservation_code: str
    vehicle_id: str
    driver_id: str
    host_id: str
    start_date: date
    end_date: date
    pickup_time: str
    dropoff_time: str
    rental_type: RentalType
    quantity: int
    rental_price: Decimal
    insurance_plan: InsurancePlan
    insurance_cost: Decimal
    total_price: Decimal
    price_adjustment: Decimal | None = None
    status: ReservationStatus
    payment_status: PaymentStatus
    refund_reference: str | None = None
    message: str
    created_at: datetime
    updated_at: datetime
    extensions: list[ExtensionResponse] = []


class StatusChangeResponse(BaseSchema):
    """Schema for one history row."""

    change_id: int
    from_status: ReservationStatus | None = None
    to_status: ReservationStatus
    actor_id: str | None = None
    note: str
    created_at: datetime


class InspectionRequest(BaseSchema):
    """Pickup or return inspection outcome supplied by the inspection flow."""

    inspection_completed: bool = False


class InsuranceUpdateRequest(BaseSchema):
    """Insurance plan to apply before payment; ``none`` removes it."""

    insurance_plan: InsurancePlan


class OverdueResponse(BaseSchema):
    """Read-time overdue classification."""

    reservation_id: str
    is_overdue: bool
    due_at: datetime
    overdue_hours: int = 0
    overdue_days: int = 0


class ExtensionQuoteResponse(BaseSchema):
    """Price of a prospective extension."""

    quantity: int
    rental: Decimal
    insurance: Decimal
    amount: Decimal
    previous_end_date: date
    new_end_date: date


class SubstituteCandidateResponse(BaseSchema):
    """A replacement vehicle with its re-priced total."""

    vehicle: VehicleResponse
    total_price: Decimal
    price_difference: Decimal


class SwitchVehicleRequest(BaseSchema):
    """Schema for a host-initiated vehicle switch."""

    vehicle_id: str = Field(..., min_length=1, max_length=26)


class SwitchVehicleResponse(BaseSchema):
    """Schema for switch result."""

    reservation: ReservationResponse
    previous_vehicle_id: str
    price_difference: Decimal
