"""Payments API endpoints."""

from fastapi import APIRouter, status

from rental_engine.api.v1.dependencies import CurrentUser, PaymentServiceDep
from rental_engine.schemas.payment import (
    ExtensionIntentRequest,
    IntentResponse,
    PaymentConfirmRequest,
    PaymentResultResponse,
    RefundResponse,
)

router = APIRouter()


@router.post(
    "/{reservation_id}/intents",
    response_model=IntentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create payment intent",
)
async def create_payment_intent(
    reservation_id: str,
    current_user: CurrentUser,
    payment_service: PaymentServiceDep,
) -> IntentResponse:
    """
    Create the charge intent for a confirmed reservation.

    Retrying returns the same open intent instead of charging twice.
    """
    result = await payment_service.create_initial_intent(reservation_id, current_user)
    return IntentResponse.model_validate(result)


@router.post(
    "/{reservation_id}/extension-intents",
    response_model=IntentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create extension payment intent",
)
async def create_extension_intent(
    reservation_id: str,
    extension_data: ExtensionIntentRequest,
    current_user: CurrentUser,
    payment_service: PaymentServiceDep,
) -> IntentResponse:
    """Price an extension and create its charge intent."""
    result = await payment_service.create_extension_intent(
        reservation_id,
        current_user,
        extension_data.quantity,
        extension_data.dropoff_time,
    )
    return IntentResponse.model_validate(result)


@router.post(
    "/{reservation_id}/confirm",
    response_model=PaymentResultResponse,
    summary="Confirm payment",
)
async def confirm_payment(
    reservation_id: str,
    confirm_data: PaymentConfirmRequest,
    current_user: CurrentUser,
    payment_service: PaymentServiceDep,
) -> PaymentResultResponse:
    """
    Apply a completed intent.

    The intent's status is re-fetched from the gateway; confirming the same
    intent again is a no-op success.
    """
    result = await payment_service.confirm_payment(
        reservation_id, confirm_data.intent_id, current_user
    )
    return PaymentResultResponse.model_validate(result)


@router.post(
    "/{reservation_id}/reconcile",
    response_model=PaymentResultResponse,
    summary="Reconcile payments with the gateway",
)
async def reconcile_payment(
    reservation_id: str,
    current_user: CurrentUser,
    payment_service: PaymentServiceDep,
) -> PaymentResultResponse:
    """Recover captured payments whose confirmation never arrived."""
    result = await payment_service.reconcile(reservation_id, current_user)
    return PaymentResultResponse.model_validate(result)


@router.post(
    "/{reservation_id}/refund",
    response_model=RefundResponse,
    summary="Refund a cancelled reservation",
)
async def refund_payment(
    reservation_id: str,
    current_user: CurrentUser,
    payment_service: PaymentServiceDep,
) -> RefundResponse:
    """Retry the refund of a host-cancelled reservation. Never refunds twice."""
    result = await payment_service.refund(reservation_id, current_user)
    return RefundResponse.model_validate(result)
