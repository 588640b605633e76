"""Reservations API endpoints."""

from typing import Literal

from fastapi import APIRouter, HTTPException, Query, status

from rental_engine.api.v1.dependencies import (
    CurrentUser,
    ReservationServiceDep,
    SubstitutionServiceDep,
)
from rental_engine.models.reservation import Reservation, ReservationStatus
from rental_engine.schemas.reservation import (
    ExtensionQuoteResponse,
    InspectionRequest,
    InsuranceUpdateRequest,
    OverdueResponse,
    ReservationCreate,
    ReservationResponse,
    StatusChangeResponse,
    SubstituteCandidateResponse,
    SwitchVehicleRequest,
    SwitchVehicleResponse,
)

router = APIRouter()


def _check_party(reservation: Reservation | None, current_user: str) -> Reservation:
    if not reservation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reservation not found",
        )
    if current_user not in (reservation.driver_id, reservation.host_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot access another user's reservation",
        )
    return reservation


@router.post(
    "",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a booking",
)
async def create_reservation(
    reservation_data: ReservationCreate,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    """
    Create a pending, unpaid reservation for the current user.

    The vehicle's calendar is locked while availability is checked and the
    reservation is written, so two overlapping requests cannot both succeed.
    """
    reservation = await reservation_service.create_reservation(
        driver_id=current_user,
        vehicle_id=reservation_data.vehicle_id,
        start_date=reservation_data.start_date,
        end_date=reservation_data.end_date,
        rental_type=reservation_data.rental_type,
        quantity=reservation_data.quantity,
        pickup_time=reservation_data.pickup_time,
        insurance_plan=reservation_data.insurance_plan,
        message=reservation_data.message,
    )
    return ReservationResponse.model_validate(reservation)


@router.get(
    "",
    response_model=list[ReservationResponse],
    summary="Get user reservations",
)
async def get_user_reservations(
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
    role: Literal["driver", "host"] = "driver",
    status_filter: ReservationStatus | None = Query(None, alias="status"),
) -> list[ReservationResponse]:
    """Get reservations the current user made (driver) or received (host)."""
    if role == "host":
        reservations = await reservation_service.list_for_host(current_user, status_filter)
    else:
        reservations = await reservation_service.list_for_driver(current_user, status_filter)
    return [ReservationResponse.model_validate(r) for r in reservations]


@router.get(
    "/code/{reservation_code}",
    response_model=ReservationResponse,
    summary="Get reservation by code",
)
async def get_reservation_by_code(
    reservation_code: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    """Look a reservation up by its human-facing code."""
    reservation = await reservation_service.get_by_code(reservation_code)
    return ReservationResponse.model_validate(_check_party(reservation, current_user))


@router.get(
    "/{reservation_id}",
    response_model=ReservationResponse,
    summary="Get reservation details",
)
async def get_reservation(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    """Get reservation details."""
    reservation = await reservation_service.get_reservation(reservation_id)
    return ReservationResponse.model_validate(_check_party(reservation, current_user))


@router.get(
    "/{reservation_id}/history",
    response_model=list[StatusChangeResponse],
    summary="Get status history",
)
async def get_reservation_history(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> list[StatusChangeResponse]:
    """Get every recorded transition and money event, oldest first."""
    _check_party(await reservation_service.get_reservation(reservation_id), current_user)
    history = await reservation_service.get_history(reservation_id)
    return [StatusChangeResponse.model_validate(h) for h in history]


@router.get(
    "/{reservation_id}/overdue",
    response_model=OverdueResponse,
    summary="Check overdue status",
)
async def get_overdue_status(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> OverdueResponse:
    """Classify the reservation as overdue in the vehicle's local time."""
    _check_party(await reservation_service.get_reservation(reservation_id), current_user)
    overdue = await reservation_service.get_overdue_status(reservation_id)
    return OverdueResponse(
        reservation_id=reservation_id,
        is_overdue=overdue.is_overdue,
        due_at=overdue.due_at,
        overdue_hours=overdue.overdue_hours,
        overdue_days=overdue.overdue_days,
    )


@router.post(
    "/{reservation_id}/confirm",
    response_model=ReservationResponse,
    summary="Host confirms a booking",
)
async def confirm_reservation(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    reservation = await reservation_service.confirm(reservation_id, current_user)
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/decline",
    response_model=ReservationResponse,
    summary="Host declines a booking",
)
async def decline_reservation(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    reservation = await reservation_service.decline(reservation_id, current_user)
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/cancel",
    response_model=ReservationResponse,
    summary="Driver cancels a pending booking",
)
async def cancel_reservation(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    reservation = await reservation_service.cancel_by_driver(reservation_id, current_user)
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/host-cancel",
    response_model=ReservationResponse,
    summary="Host cancels a confirmed or active booking",
)
async def host_cancel_reservation(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    """Cancel and, if the driver has paid, refund in full."""
    reservation = await reservation_service.cancel_by_host(reservation_id, current_user)
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/insurance",
    response_model=ReservationResponse,
    summary="Change the insurance plan of an unpaid booking",
)
async def set_insurance(
    reservation_id: str,
    insurance: InsuranceUpdateRequest,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    reservation = await reservation_service.set_insurance(
        reservation_id, current_user, insurance.insurance_plan
    )
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/start",
    response_model=ReservationResponse,
    summary="Start the rental after pickup inspection",
)
async def start_reservation(
    reservation_id: str,
    inspection: InspectionRequest,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    reservation = await reservation_service.start(
        reservation_id, current_user, inspection.inspection_completed
    )
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/complete",
    response_model=ReservationResponse,
    summary="Complete the rental after return inspection",
)
async def complete_reservation(
    reservation_id: str,
    inspection: InspectionRequest,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    reservation = await reservation_service.complete(
        reservation_id, current_user, inspection.inspection_completed
    )
    return ReservationResponse.model_validate(reservation)


@router.get(
    "/{reservation_id}/extension-quote",
    response_model=ExtensionQuoteResponse,
    summary="Price an extension",
)
async def quote_extension(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
    quantity: int = Query(..., ge=1),
) -> ExtensionQuoteResponse:
    """Price an extension at the vehicle's current rates without charging."""
    reservation = _check_party(
        await reservation_service.get_reservation(reservation_id), current_user
    )
    extension_quote = await reservation_service.quote_extension(reservation, quantity)
    return ExtensionQuoteResponse.model_validate(extension_quote)


@router.get(
    "/{reservation_id}/substitutes",
    response_model=list[SubstituteCandidateResponse],
    summary="List replacement vehicles",
)
async def list_substitutes(
    reservation_id: str,
    current_user: CurrentUser,
    substitution_service: SubstitutionServiceDep,
) -> list[SubstituteCandidateResponse]:
    """List the host's other vehicles free for the same dates, with price deltas."""
    candidates = await substitution_service.list_candidates(reservation_id, current_user)
    return [SubstituteCandidateResponse.model_validate(c) for c in candidates]


@router.post(
    "/{reservation_id}/switch-vehicle",
    response_model=SwitchVehicleResponse,
    summary="Switch to another vehicle",
)
async def switch_vehicle(
    reservation_id: str,
    switch_data: SwitchVehicleRequest,
    current_user: CurrentUser,
    substitution_service: SubstitutionServiceDep,
) -> SwitchVehicleResponse:
    """Move the reservation to another of the host's vehicles."""
    result = await substitution_service.switch_vehicle(
        reservation_id, current_user, switch_data.vehicle_id
    )
    return SwitchVehicleResponse.model_validate(result)
