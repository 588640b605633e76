"""Payment schemas."""

from pydantic import Field

from rental_engine.models.payment import IntentStatus
from rental_engine.schemas.common import BaseSchema
from rental_engine.schemas.reservation import (
    CLOCK_PATTERN,
    ExtensionQuoteResponse,
    ReservationResponse,
)
from rental_engine.services.payment_service import ConfirmOutcome


class ExtensionIntentRequest(BaseSchema):
    """Schema for requesting an extension charge."""

    quantity: int = Field(..., ge=1)
    dropoff_time: str | None = Field(None, pattern=CLOCK_PATTERN)


class PaymentConfirmRequest(BaseSchema):
    """Schema for confirming a completed intent."""

    intent_id: str = Field(..., min_length=1, max_length=100)


class IntentResponse(BaseSchema):
    """Intent handed to the client to complete payment."""

    intent_id: str
    client_secret: str | None = None
    amount_cents: int
    currency: str
    purpose: str
    status: IntentStatus
    quote: ExtensionQuoteResponse | None = None


class PaymentResultResponse(BaseSchema):
    """Outcome of a confirm or reconcile."""

    outcome: ConfirmOutcome
    reservation: ReservationResponse
    intent_id: str | None = None
    refund_id: str | None = None
    applied_extensions: list[str] = []


class RefundResponse(BaseSchema):
    """Outcome of a refund request."""

    reservation: ReservationResponse
    refund_reference: str | None = None
    refunded_cents: int
    already_refunded: bool = False
