"""
Payment Reconciliation Tests.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import DRIVER_ID, HOST_ID
from rental_engine.exceptions import (
    ConflictError,
    PaymentError,
    PaymentProcessingError,
    StateError,
)
from rental_engine.models.payment import IntentStatus
from rental_engine.models.reservation import PaymentStatus, ReservationStatus
from rental_engine.schemas.vehicle import VehicleUpdate
from rental_engine.services.payment_service import ConfirmOutcome

START = date(2024, 6, 1)
END = date(2024, 6, 4)


async def _confirmed(reservation_service, vehicle_id):
    reservation = await reservation_service.create_reservation(DRIVER_ID, vehicle_id, START, END)
    await reservation_service.confirm(reservation.reservation_id, HOST_ID)
    return reservation.reservation_id


@pytest.mark.asyncio
async def test_intent_requires_confirmed_reservation(
    reservation_service, payment_service, make_vehicle
):
    vehicle = await make_vehicle()
    reservation = await reservation_service.create_reservation(
        DRIVER_ID, vehicle.vehicle_id, START, END
    )
    with pytest.raises(StateError):
        await payment_service.create_initial_intent(reservation.reservation_id, DRIVER_ID)


@pytest.mark.asyncio
async def test_retried_intent_returns_same_intent(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle(daily_rate="50")
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)

    first = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    second = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)

    assert first.intent_id == second.intent_id
    assert first.amount_cents == 15000
    assert first.idempotency_key == f"{reservation_id}:15000:initial"
    assert len(gateway.intents) == 1


@pytest.mark.asyncio
async def test_failed_intent_allows_new_attempt(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)

    first = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    gateway.set_status(first.intent_id, IntentStatus.FAILED)
    with pytest.raises(PaymentError):
        await payment_service.confirm_payment(reservation_id, first.intent_id)

    retry = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    assert retry.intent_id != first.intent_id
    assert retry.idempotency_key == f"{reservation_id}:15000:initial~1"


@pytest.mark.asyncio
async def test_canceled_intent_seen_at_creation_allows_new_attempt(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)

    first = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    gateway.set_status(first.intent_id, IntentStatus.CANCELED)

    retry = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    assert retry.intent_id != first.intent_id
    assert retry.status == IntentStatus.REQUIRES_PAYMENT


@pytest.mark.asyncio
async def test_confirm_is_idempotent(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)
    intent = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    gateway.succeed(intent.intent_id)

    first = await payment_service.confirm_payment(reservation_id, intent.intent_id, DRIVER_ID)
    second = await payment_service.confirm_payment(reservation_id, intent.intent_id, DRIVER_ID)

    assert first.outcome == ConfirmOutcome.PAID
    assert second.outcome == ConfirmOutcome.ALREADY_PAID
    assert second.reservation.payment_status == PaymentStatus.PAID
    assert second.reservation.status == ReservationStatus.CONFIRMED

    history = await reservation_service.get_history(reservation_id)
    assert sum(1 for h in history if h.note.startswith("payment captured")) == 1


@pytest.mark.asyncio
async def test_confirm_refetches_status_from_gateway(
    reservation_service, payment_service, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)
    intent = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)

    # Client claims success, gateway says otherwise
    with pytest.raises(PaymentError):
        await payment_service.confirm_payment(reservation_id, intent.intent_id)

    reservation = await reservation_service.require_reservation(reservation_id)
    assert reservation.payment_status == PaymentStatus.UNPAID


@pytest.mark.asyncio
async def test_processing_intent_reports_check_later(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)
    intent = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    gateway.set_status(intent.intent_id, IntentStatus.PROCESSING)

    with pytest.raises(PaymentProcessingError) as exc_info:
        await payment_service.confirm_payment(reservation_id, intent.intent_id)
    assert exc_info.value.retryable
    assert exc_info.value.status_code == 202


@pytest.mark.asyncio
async def test_gateway_unreachable_is_retryable(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)
    intent = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    gateway.succeed(intent.intent_id)
    gateway.fail_with = PaymentError("Payment gateway unreachable, please retry", retryable=True)

    with pytest.raises(PaymentError) as exc_info:
        await payment_service.confirm_payment(reservation_id, intent.intent_id)
    assert exc_info.value.retryable
    assert exc_info.value.status_code == 503

    reservation = await reservation_service.require_reservation(reservation_id)
    assert reservation.payment_status == PaymentStatus.UNPAID


@pytest.mark.asyncio
async def test_amount_mismatch_is_rejected(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)
    intent = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    gateway.intents[intent.intent_id] = gateway.intents[intent.intent_id].model_copy(
        update={"amount_cents": 100, "status": IntentStatus.SUCCEEDED}
    )

    with pytest.raises(PaymentError):
        await payment_service.confirm_payment(reservation_id, intent.intent_id)

    reservation = await reservation_service.require_reservation(reservation_id)
    assert reservation.payment_status == PaymentStatus.UNPAID


@pytest.mark.asyncio
async def test_reconcile_distinguishes_no_payment_from_paid(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)

    nothing = await payment_service.reconcile(reservation_id)
    assert nothing.outcome == ConfirmOutcome.NO_PAYMENT

    # Captured at the gateway, confirmation never arrived
    intent = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    gateway.succeed(intent.intent_id)

    recovered = await payment_service.reconcile(reservation_id)
    assert recovered.outcome == ConfirmOutcome.PAID
    assert recovered.reservation.payment_status == PaymentStatus.PAID

    again = await payment_service.reconcile(reservation_id)
    assert again.outcome == ConfirmOutcome.ALREADY_PAID

    confirm = await payment_service.confirm_payment(reservation_id, intent.intent_id)
    assert confirm.outcome == ConfirmOutcome.ALREADY_PAID


@pytest.mark.asyncio
async def test_reconcile_recovers_untracked_intent(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)

    # The intent exists at the gateway but the local write was lost
    intent = await gateway.create_intent(
        15000, "usd", "lost-key", {"reservation_id": reservation_id, "purpose": "initial"}
    )
    gateway.succeed(intent.intent_id)

    result = await payment_service.reconcile(reservation_id)
    assert result.outcome == ConfirmOutcome.PAID
    assert await payment_service.get_intent_record(intent.intent_id) is not None


@pytest.mark.asyncio
async def test_extension_scenario(
    reservation_service, payment_service, gateway, make_vehicle, make_paid_reservation
):
    vehicle = await make_vehicle(daily_rate="50", weekly_rate="300")
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id
    assert reservation.total_price == Decimal("150.00")

    intent = await payment_service.create_extension_intent(reservation_id, DRIVER_ID, 2)
    assert intent.amount_cents == 10000
    assert intent.purpose == "extension#1"
    assert intent.quote.new_end_date == date(2024, 6, 6)

    gateway.succeed(intent.intent_id)
    first = await payment_service.confirm_payment(reservation_id, intent.intent_id)
    second = await payment_service.confirm_payment(reservation_id, intent.intent_id)

    assert first.outcome == ConfirmOutcome.EXTENDED
    assert second.outcome == ConfirmOutcome.ALREADY_EXTENDED

    extended = await reservation_service.require_reservation(reservation_id)
    assert extended.total_price == Decimal("250.00")
    assert extended.end_date == date(2024, 6, 6)
    assert len(extended.extensions) == 1
    assert extended.extensions[0].previous_end_date == END
    assert extended.extensions[0].amount == Decimal("100.00")


@pytest.mark.asyncio
async def test_extension_prices_at_current_rate_and_moves_dropoff(
    reservation_service, payment_service, vehicle_service, gateway, make_vehicle,
    make_paid_reservation,
):
    vehicle = await make_vehicle(daily_rate="50")
    vehicle_id = vehicle.vehicle_id
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id
    await vehicle_service.update_vehicle(vehicle_id, HOST_ID, VehicleUpdate(daily_rate=Decimal("60")))

    intent = await payment_service.create_extension_intent(
        reservation_id, DRIVER_ID, 2, new_dropoff_time="14:00"
    )
    assert intent.amount_cents == 12000

    gateway.succeed(intent.intent_id)
    await payment_service.confirm_payment(reservation_id, intent.intent_id)

    extended = await reservation_service.require_reservation(reservation_id)
    assert extended.dropoff_time == "14:00"
    assert extended.pickup_time == "10:00"


@pytest.mark.asyncio
async def test_extension_requires_paid_reservation(
    reservation_service, payment_service, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)
    with pytest.raises(StateError):
        await payment_service.create_extension_intent(reservation_id, DRIVER_ID, 1)


@pytest.mark.asyncio
async def test_extension_into_booked_range_conflicts(
    reservation_service, payment_service, make_vehicle, make_paid_reservation
):
    vehicle = await make_vehicle()
    vehicle_id = vehicle.vehicle_id
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id
    await reservation_service.create_reservation("driver-2", vehicle_id, END, date(2024, 6, 8))

    with pytest.raises(ConflictError):
        await payment_service.create_extension_intent(reservation_id, DRIVER_ID, 2)


@pytest.mark.asyncio
async def test_extension_revalidated_at_confirm(
    reservation_service, payment_service, gateway, make_vehicle, make_paid_reservation
):
    vehicle = await make_vehicle()
    vehicle_id = vehicle.vehicle_id
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id

    intent = await payment_service.create_extension_intent(reservation_id, DRIVER_ID, 2)
    # Someone books the delta range before the extension is paid
    await reservation_service.create_reservation("driver-2", vehicle_id, END, date(2024, 6, 5))
    gateway.succeed(intent.intent_id)

    with pytest.raises(ConflictError) as exc_info:
        await payment_service.confirm_payment(reservation_id, intent.intent_id)
    assert exc_info.value.details["refund_id"]

    unchanged = await reservation_service.require_reservation(reservation_id)
    assert unchanged.end_date == END
    assert unchanged.extensions == []
    assert len(gateway.refunds) == 1


@pytest.mark.asyncio
async def test_host_cancel_refunds_once(
    reservation_service, payment_service, gateway, make_vehicle, make_paid_reservation
):
    vehicle = await make_vehicle()
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id

    cancelled = await reservation_service.cancel_by_host(reservation_id, HOST_ID)
    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.refund_reference == "re_1"

    again = await payment_service.refund(reservation_id)
    assert again.already_refunded
    assert again.refund_reference == "re_1"
    assert len(gateway.refunds) == 1

    with pytest.raises(StateError):
        await reservation_service.cancel_by_host(reservation_id, HOST_ID)


@pytest.mark.asyncio
async def test_refund_covers_extensions(
    reservation_service, payment_service, gateway, make_vehicle, make_paid_reservation
):
    vehicle = await make_vehicle(daily_rate="50")
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id
    intent = await payment_service.create_extension_intent(reservation_id, DRIVER_ID, 1)
    gateway.succeed(intent.intent_id)
    await payment_service.confirm_payment(reservation_id, intent.intent_id)

    await reservation_service.cancel_by_host(reservation_id, HOST_ID)

    refunded_cents = sorted(r.amount_cents for r in gateway.refunds.values())
    assert refunded_cents == [5000, 15000]
    reservation = await reservation_service.require_reservation(reservation_id)
    assert reservation.refund_reference is not None


@pytest.mark.asyncio
async def test_deferred_refund_is_retried(
    reservation_service, payment_service, gateway, make_vehicle, make_paid_reservation
):
    vehicle = await make_vehicle()
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id

    gateway.fail_with = PaymentError("Payment gateway unreachable, please retry", retryable=True)
    cancelled = await reservation_service.cancel_by_host(reservation_id, HOST_ID)
    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.refund_reference is None

    pending = await payment_service.find_pending_refunds()
    assert [r.reservation_id for r in pending] == [reservation_id]

    gateway.fail_with = None
    result = await payment_service.refund(reservation_id)
    assert result.refund_reference == "re_1"
    assert await payment_service.find_pending_refunds() == []


@pytest.mark.asyncio
async def test_payment_after_cancellation_is_refunded(
    reservation_service, payment_service, gateway, make_vehicle
):
    vehicle = await make_vehicle()
    reservation_id = await _confirmed(reservation_service, vehicle.vehicle_id)
    intent = await payment_service.create_initial_intent(reservation_id, DRIVER_ID)
    await reservation_service.cancel_by_host(reservation_id, HOST_ID)
    gateway.succeed(intent.intent_id)

    result = await payment_service.confirm_payment(reservation_id, intent.intent_id)
    assert result.outcome == ConfirmOutcome.REFUNDED
    assert result.reservation.payment_status == PaymentStatus.UNPAID
    assert len(gateway.refunds) == 1


@pytest.mark.asyncio
async def test_reconcile_applies_extensions_in_sequence_order(
    reservation_service, payment_service, gateway, make_vehicle, make_paid_reservation
):
    vehicle = await make_vehicle(daily_rate="50")
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id

    # Recovered from the gateway only; listed tenth before second
    for sequence in (10, 2):
        intent = await gateway.create_intent(
            5000,
            "usd",
            f"lost-extension-{sequence}",
            {
                "reservation_id": reservation_id,
                "purpose": f"extension#{sequence}",
                "extension_quantity": "1",
            },
        )
        gateway.succeed(intent.intent_id)
    tenth, second = list(gateway.intents)[-2:]

    result = await payment_service.reconcile(reservation_id)

    assert result.applied_extensions == [second, tenth]
    extended = await reservation_service.require_reservation(reservation_id)
    assert [e.payment_intent_id for e in extended.extensions] == [second, tenth]
    assert extended.end_date == date(2024, 6, 6)


@pytest.mark.asyncio
async def test_reconcile_skips_rejected_intent(
    reservation_service, payment_service, gateway, make_vehicle, make_paid_reservation
):
    vehicle = await make_vehicle(daily_rate="50")
    reservation = await make_paid_reservation(vehicle, START, END)
    reservation_id = reservation.reservation_id

    broken = await payment_service.create_extension_intent(reservation_id, DRIVER_ID, 1)
    gateway.intents[broken.intent_id] = gateway.intents[broken.intent_id].model_copy(
        update={"amount_cents": 100, "status": IntentStatus.SUCCEEDED}
    )
    good = await gateway.create_intent(
        5000,
        "usd",
        "lost-extension",
        {"reservation_id": reservation_id, "purpose": "extension#2", "extension_quantity": "1"},
    )
    gateway.succeed(good.intent_id)

    result = await payment_service.reconcile(reservation_id)

    assert result.applied_extensions == [good.intent_id]
    extended = await reservation_service.require_reservation(reservation_id)
    assert extended.end_date == date(2024, 6, 5)
