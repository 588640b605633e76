"""Vehicles API endpoints."""

from fastapi import APIRouter, HTTPException, Query, status

from rental_engine.api.v1.dependencies import CurrentUser, VehicleServiceDep
from rental_engine.schemas.vehicle import (
    VehicleCreate,
    VehicleResponse,
    VehicleTransferRequest,
    VehicleUpdate,
)

router = APIRouter()


@router.post(
    "",
    response_model=VehicleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="List a vehicle",
)
async def create_vehicle(
    vehicle_data: VehicleCreate,
    current_user: CurrentUser,
    vehicle_service: VehicleServiceDep,
) -> VehicleResponse:
    """Create a vehicle owned by the current user."""
    vehicle = await vehicle_service.create_vehicle(current_user, vehicle_data)
    return VehicleResponse.model_validate(vehicle)


@router.get(
    "",
    response_model=list[VehicleResponse],
    summary="List host vehicles",
)
async def list_vehicles(
    vehicle_service: VehicleServiceDep,
    host_id: str = Query(..., min_length=1),
    available_only: bool = False,
) -> list[VehicleResponse]:
    """List a host's vehicles."""
    vehicles = await vehicle_service.get_host_vehicles(host_id, available_only)
    return [VehicleResponse.model_validate(v) for v in vehicles]


@router.get(
    "/{vehicle_id}",
    response_model=VehicleResponse,
    summary="Get vehicle details",
)
async def get_vehicle(
    vehicle_id: str,
    vehicle_service: VehicleServiceDep,
) -> VehicleResponse:
    """Get vehicle details."""
    vehicle = await vehicle_service.get_vehicle(vehicle_id)
    if not vehicle:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Vehicle not found",
        )
    return VehicleResponse.model_validate(vehicle)


@router.patch(
    "/{vehicle_id}",
    response_model=VehicleResponse,
    summary="Update vehicle",
)
async def update_vehicle(
    vehicle_id: str,
    vehicle_data: VehicleUpdate,
    current_user: CurrentUser,
    vehicle_service: VehicleServiceDep,
) -> VehicleResponse:
    """Update rate card, availability flag or timezone."""
    vehicle = await vehicle_service.update_vehicle(vehicle_id, current_user, vehicle_data)
    return VehicleResponse.model_validate(vehicle)


@router.post(
    "/{vehicle_id}/transfer",
    response_model=VehicleResponse,
    summary="Transfer vehicle to another host",
)
async def transfer_vehicle(
    vehicle_id: str,
    transfer_data: VehicleTransferRequest,
    current_user: CurrentUser,
    vehicle_service: VehicleServiceDep,
) -> VehicleResponse:
    """Hand the vehicle over. Existing reservations keep their host."""
    vehicle = await vehicle_service.transfer_vehicle(
        vehicle_id, current_user, transfer_data.new_host_id
    )
    return VehicleResponse.model_validate(vehicle)
