"""Vehicle schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from rental_engine.schemas.common import BaseSchema


class VehicleCreate(BaseSchema):
    """Schema for listing a vehicle."""

    name: str = Field(..., min_length=1, max_length=255)
    daily_rate: Decimal = Field(..., gt=0, decimal_places=2)
    weekly_rate: Decimal | None = Field(None, gt=0, decimal_places=2)
    monthly_rate: Decimal | None = Field(None, gt=0, decimal_places=2)
    is_available: bool = True
    timezone: str = Field(default="UTC", max_length=64)


class VehicleUpdate(BaseSchema):
    """Schema for updating a vehicle's rate card or flags."""

    name: str | None = Field(None, min_length=1, max_length=255)
    daily_rate: Decimal | None = Field(None, gt=0, decimal_places=2)
    weekly_rate: Decimal | None = Field(None, gt=0, decimal_places=2)
    monthly_rate: Decimal | None = Field(None, gt=0, decimal_places=2)
    is_available: bool | None = None
    timezone: str | None = Field(None, max_length=64)


class VehicleTransferRequest(BaseSchema):
    """Schema for handing a vehicle to another host."""

    new_host_id: str = Field(..., min_length=1, max_length=50)


class VehicleResponse(BaseSchema):
    """Schema for vehicle response."""

    vehicle_id: str
    host_id: str
    name: str
    daily_rate: Decimal
    weekly_rate: Decimal | None = None
    monthly_rate: Decimal | None = None
    is_available: bool
    timezone: str
    created_at: datetime
