"""Pydantic schemas for API request/response."""

from rental_engine.schemas.reservation import ReservationCreate, ReservationResponse
from rental_engine.schemas.upload import UploadPollResponse, UploadSessionResponse
from rental_engine.schemas.vehicle import VehicleCreate, VehicleResponse, VehicleUpdate

__all__ = [
    "VehicleCreate",
    "VehicleUpdate",
    "VehicleResponse",
    "ReservationCreate",
    "ReservationResponse",
    "UploadSessionResponse",
    "UploadPollResponse",
]
