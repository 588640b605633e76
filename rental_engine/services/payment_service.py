"""
Payment reconciliation.

Keeps a reservation's money state consistent with the gateway's view of its
intents. Gateway calls are never made while a reservation lock is held; the
result of a call is applied afterwards under the lock, idempotently.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.config import get_settings
from rental_engine.distributed_lock import vehicle_lock_key
from rental_engine.exceptions import (
    ConflictError,
    PaymentError,
    PaymentProcessingError,
    PermissionDeniedError,
    StateError,
)
from rental_engine.models.base import utcnow
from rental_engine.models.payment import (
    INITIAL_PURPOSE,
    IntentStatus,
    PaymentIntentRecord,
    extension_purpose,
    extension_sequence,
)
from rental_engine.models.reservation import (
    Extension,
    PaymentStatus,
    Reservation,
    ReservationStatus,
)
from rental_engine.services.identifiers import new_id
from rental_engine.services.payment_gateway import (
    GatewayIntent,
    PaymentGateway,
    get_payment_gateway,
)
from rental_engine.services.pricing import rental_days, to_cents
from rental_engine.services.reservation_service import (
    ExtensionQuote,
    ReservationService,
    normalize_clock,
)

settings = get_settings()
logger = logging.getLogger(__name__)

_OPEN_INTENT_STATUSES = (
    IntentStatus.REQUIRES_PAYMENT,
    IntentStatus.PROCESSING,
    IntentStatus.SUCCEEDED,
)


class ConfirmOutcome(str, enum.Enum):
    """What applying a gateway intent did to the reservation."""

    PAID = "paid"
    ALREADY_PAID = "already_paid"
    EXTENDED = "extended"
    ALREADY_EXTENDED = "already_extended"
    REFUNDED = "refunded"
    NO_PAYMENT = "no_payment"


@dataclass
class IntentResult:
    """A created (or re-used) intent handed to the client to complete payment."""

    intent_id: str
    client_secret: str | None
    amount_cents: int
    currency: str
    purpose: str
    status: IntentStatus
    idempotency_key: str
    quote: ExtensionQuote | None = None


@dataclass
class PaymentResult:
    outcome: ConfirmOutcome
    reservation: Reservation
    intent_id: str | None = None
    refund_id: str | None = None
    applied_extensions: list[str] = field(default_factory=list)


@dataclass
class RefundResult:
    reservation: Reservation
    refund_reference: str | None
    refunded_cents: int
    already_refunded: bool = False


def intent_idempotency_key(reservation_id: str, amount_cents: int, purpose: str) -> str:
    """Idempotency key for a charge: ``{reservation_id}:{amount_cents}:{purpose}``."""
    return f"{reservation_id}:{amount_cents}:{purpose}"


def refund_idempotency_key(reservation_id: str, intent_id: str) -> str:
    """Idempotency key for refunding one captured intent."""
    return f"{reservation_id}:refund:{intent_id}"


class PaymentService:
    """
    Creates intents, confirms and reconciles them, and issues refunds.

    A succeeded intent is applied at most once: the initial payment flips the
    reservation to paid, an extension intent appends exactly one extension.
    """

    def __init__(
        self,
        db: AsyncSession,
        redis_client: redis.Redis,
        gateway: PaymentGateway | None = None,
    ):
        self.db = db
        self.redis = redis_client
        self.gateway = gateway or get_payment_gateway()
        self.reservations = ReservationService(db, redis_client, self.gateway)

    # Ledger helpers

    async def get_intent_record(self, intent_id: str) -> PaymentIntentRecord | None:
        result = await self.db.execute(
            select(PaymentIntentRecord)
            .where(PaymentIntentRecord.intent_id == intent_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_intent_records(self, reservation_id: str) -> list[PaymentIntentRecord]:
        """Get the local intent ledger of a reservation, oldest first."""
        result = await self.db.execute(
            select(PaymentIntentRecord)
            .where(PaymentIntentRecord.reservation_id == reservation_id)
            .order_by(PaymentIntentRecord.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _records_for_key(self, base_key: str) -> list[PaymentIntentRecord]:
        result = await self.db.execute(
            select(PaymentIntentRecord)
            .where(PaymentIntentRecord.idempotency_key.startswith(base_key))
            .order_by(PaymentIntentRecord.created_at)
        )
        return [
            r for r in result.scalars().all()
            if r.idempotency_key == base_key or r.idempotency_key.startswith(f"{base_key}~")
        ]

    async def _open_intent(
        self,
        reservation: Reservation,
        amount_cents: int,
        purpose: str,
        extension_quantity: int | None = None,
        new_dropoff_time: str | None = None,
    ) -> IntentResult:
        """
        Create the gateway intent for a charge, or hand back the open one.

        A key whose earlier intents all failed or were canceled gets an
        attempt suffix so the driver can try again.
        """
        reservation_id = reservation.reservation_id
        reservation_code = reservation.reservation_code
        base_key = intent_idempotency_key(reservation_id, amount_cents, purpose)
        previous = await self._records_for_key(base_key)
        for record in previous:
            if record.status in _OPEN_INTENT_STATUSES:
                intent = await self.gateway.fetch_intent(record.intent_id)
                if intent.status not in _OPEN_INTENT_STATUSES:
                    record.status = intent.status
                    await self.db.commit()
                    continue
                return IntentResult(
                    intent_id=intent.intent_id,
                    client_secret=intent.client_secret,
                    amount_cents=record.amount_cents,
                    currency=record.currency,
                    purpose=record.purpose,
                    status=intent.status,
                    idempotency_key=record.idempotency_key,
                )

        key = base_key if not previous else f"{base_key}~{len(previous)}"
        metadata = {
            "reservation_id": reservation_id,
            "reservation_code": reservation_code,
            "purpose": purpose,
        }
        if extension_quantity is not None:
            metadata["extension_quantity"] = str(extension_quantity)
        if new_dropoff_time is not None:
            metadata["new_dropoff_time"] = new_dropoff_time

        intent = await self.gateway.create_intent(
            amount_cents, settings.PAYMENT_CURRENCY, key, metadata
        )

        record = PaymentIntentRecord(
            intent_id=intent.intent_id,
            reservation_id=reservation_id,
            purpose=purpose,
            extension_quantity=extension_quantity,
            new_dropoff_time=new_dropoff_time,
            amount_cents=amount_cents,
            currency=intent.currency,
            idempotency_key=key,
            status=intent.status,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request stored the same intent first
            await self.db.rollback()

        logger.info(
            f"Intent {intent.intent_id} opened for {reservation_code} "
            f"({purpose}, {amount_cents} {intent.currency})"
        )
        return IntentResult(
            intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            amount_cents=amount_cents,
            currency=intent.currency,
            purpose=purpose,
            status=intent.status,
            idempotency_key=key,
        )

    # Intents

    async def create_initial_intent(self, reservation_id: str, driver_id: str) -> IntentResult:
        """
        Create the charge intent for a confirmed, unpaid reservation.

        Raises:
            StateError: If the reservation is not confirmed and unpaid
            PaymentError: If the gateway rejects or cannot be reached
        """
        reservation = await self.reservations.require_reservation(reservation_id)
        if reservation.driver_id != driver_id:
            raise PermissionDeniedError("Only the driver can pay for a reservation")
        if reservation.status != ReservationStatus.CONFIRMED:
            raise StateError(
                f"Cannot pay for a {reservation.status.value} reservation",
                {"status": reservation.status.value},
            )
        if reservation.payment_status == PaymentStatus.PAID:
            raise StateError("Reservation is already paid")

        amount_cents = to_cents(reservation.total_price)
        return await self._open_intent(reservation, amount_cents, INITIAL_PURPOSE)

    async def create_extension_intent(
        self,
        reservation_id: str,
        driver_id: str,
        quantity: int,
        new_dropoff_time: str | None = None,
    ) -> IntentResult:
        """
        Price an extension and create its charge intent.

        Raises:
            StateError: If the reservation is not paid and confirmed/active
            ConflictError: If the vehicle is taken right after the current end
        """
        reservation = await self.reservations.require_reservation(reservation_id)
        if reservation.driver_id != driver_id:
            raise PermissionDeniedError("Only the driver can extend a reservation")
        if new_dropoff_time is not None:
            new_dropoff_time = normalize_clock(new_dropoff_time)

        extension_quote = await self.reservations.quote_extension(reservation, quantity)
        purpose = extension_purpose(len(reservation.extensions) + 1)
        result = await self._open_intent(
            reservation,
            to_cents(extension_quote.amount),
            purpose,
            extension_quantity=quantity,
            new_dropoff_time=new_dropoff_time,
        )
        result.quote = extension_quote
        return result

    # Confirmation

    async def confirm_payment(
        self,
        reservation_id: str,
        intent_id: str,
        actor_id: str | None = None,
    ) -> PaymentResult:
        """
        Apply a completed intent after re-fetching it from the gateway.

        Idempotent: confirming an intent that is already applied reports
        ``ALREADY_PAID`` / ``ALREADY_EXTENDED`` and changes nothing.
        """
        reservation = await self.reservations.require_reservation(reservation_id)
        if actor_id is not None and actor_id not in (reservation.driver_id, reservation.host_id):
            raise PermissionDeniedError("Not a party to this reservation")

        intent = await self.gateway.fetch_intent(intent_id)
        return await self._apply_intent(reservation_id, intent, actor_id)

    async def _ensure_record(
        self,
        reservation_id: str,
        intent: GatewayIntent,
    ) -> PaymentIntentRecord:
        """Local ledger row for a gateway intent, created from its metadata if missing."""
        record = await self.get_intent_record(intent.intent_id)
        if record is None:
            purpose = intent.metadata.get("purpose", INITIAL_PURPOSE)
            quantity = intent.metadata.get("extension_quantity")
            record = PaymentIntentRecord(
                intent_id=intent.intent_id,
                reservation_id=reservation_id,
                purpose=purpose,
                extension_quantity=int(quantity) if quantity else None,
                new_dropoff_time=intent.metadata.get("new_dropoff_time"),
                amount_cents=intent.amount_cents,
                currency=intent.currency,
                idempotency_key=f"{intent_idempotency_key(reservation_id, intent.amount_cents, purpose)}@{intent.intent_id}",
                status=intent.status,
            )
            self.db.add(record)
            logger.info(f"Recovered untracked intent {intent.intent_id} for {reservation_id}")

        if record.reservation_id != reservation_id:
            logger.error(
                f"Pricing integrity: intent {intent.intent_id} belongs to "
                f"{record.reservation_id}, not {reservation_id}"
            )
            raise PaymentError(
                "Payment does not belong to this reservation",
                details={"intent_id": intent.intent_id},
            )
        if record.amount_cents != intent.amount_cents:
            logger.error(
                f"Pricing integrity: intent {intent.intent_id} amount {intent.amount_cents} "
                f"differs from recorded {record.amount_cents}"
            )
            raise PaymentError(
                "Payment amount does not match",
                details={"intent_id": intent.intent_id},
            )

        record.status = intent.status
        await self.db.commit()
        return record

    async def _apply_intent(
        self,
        reservation_id: str,
        intent: GatewayIntent,
        actor_id: str | None,
    ) -> PaymentResult:
        metadata_reservation = intent.metadata.get("reservation_id")
        if metadata_reservation and metadata_reservation != reservation_id:
            logger.error(
                f"Pricing integrity: intent {intent.intent_id} tagged for "
                f"{metadata_reservation} confirmed against {reservation_id}"
            )
            raise PaymentError(
                "Payment does not belong to this reservation",
                details={"intent_id": intent.intent_id},
            )

        try:
            record = await self._ensure_record(reservation_id, intent)
        except BaseException:
            await self.db.rollback()
            raise

        if intent.status == IntentStatus.PROCESSING:
            raise PaymentProcessingError(details={"intent_id": intent.intent_id})
        if intent.status == IntentStatus.REQUIRES_PAYMENT:
            raise PaymentError(
                "Payment has not been completed",
                details={"intent_id": intent.intent_id, "status": intent.status.value},
            )
        if intent.status != IntentStatus.SUCCEEDED:
            raise PaymentError(
                "Payment failed",
                details={"intent_id": intent.intent_id, "status": intent.status.value},
            )

        if record.is_extension:
            return await self._apply_extension(reservation_id, record, actor_id)
        return await self._apply_initial(reservation_id, record, actor_id)

    async def _apply_initial(
        self,
        reservation_id: str,
        record: PaymentIntentRecord,
        actor_id: str | None,
    ) -> PaymentResult:
        needs_refund = False

        async with self.reservations.locked(reservation_id) as reservation:
            record = await self.get_intent_record(record.intent_id)
            if record.applied_at is not None:
                return PaymentResult(
                    ConfirmOutcome.ALREADY_PAID, reservation, intent_id=record.intent_id
                )

            expected = to_cents(reservation.total_price)
            if (
                record.refund_id
                or reservation.status == ReservationStatus.CANCELLED
                or reservation.payment_status == PaymentStatus.PAID
            ):
                # Captured for a reservation that no longer wants it
                needs_refund = True
            elif reservation.status != ReservationStatus.CONFIRMED:
                raise StateError(
                    f"Cannot apply payment to a {reservation.status.value} reservation"
                )
            elif record.amount_cents != expected:
                # Total changed (vehicle switch, insurance) after the intent was opened
                logger.warning(
                    f"Intent {record.intent_id} paid {record.amount_cents}, "
                    f"{reservation.reservation_code} now totals {expected}; refunding"
                )
                needs_refund = True
            else:
                reservation.payment_status = PaymentStatus.PAID
                record.applied_at = utcnow()
                self.reservations.record(
                    reservation,
                    reservation.status,
                    actor_id,
                    f"payment captured ({record.intent_id})",
                )
                await self.reservations.save(reservation)
                logger.info(f"Reservation {reservation.reservation_code} paid")
                return PaymentResult(ConfirmOutcome.PAID, reservation, intent_id=record.intent_id)

        if needs_refund:
            refund_id = await self._refund_stray_intent(record)
            reservation = await self.reservations.require_reservation(reservation_id)
            return PaymentResult(
                ConfirmOutcome.REFUNDED,
                reservation,
                intent_id=record.intent_id,
                refund_id=refund_id,
            )

    async def _apply_extension(
        self,
        reservation_id: str,
        record: PaymentIntentRecord,
        actor_id: str | None,
    ) -> PaymentResult:
        current = await self.reservations.require_reservation(reservation_id)
        vehicle_id = current.vehicle_id
        needs_refund = False
        conflict: ConflictError | None = None

        async with self.reservations.locked(
            reservation_id, [vehicle_lock_key(vehicle_id)]
        ) as reservation:
            record = await self.get_intent_record(record.intent_id)
            if any(e.payment_intent_id == record.intent_id for e in reservation.extensions):
                return PaymentResult(
                    ConfirmOutcome.ALREADY_EXTENDED, reservation, intent_id=record.intent_id
                )
            if reservation.vehicle_id != vehicle_id:
                raise ConflictError("Reservation vehicle changed, please retry")

            extendable = (
                reservation.status in (ReservationStatus.CONFIRMED, ReservationStatus.ACTIVE)
                and reservation.payment_status == PaymentStatus.PAID
                and not record.refund_id
            )

            if not extendable:
                needs_refund = True
            else:
                quantity = record.extension_quantity or 1
                new_end_date = reservation.end_date + timedelta(
                    days=rental_days(reservation.rental_type, quantity)
                )
                conflicts = await self.reservations.availability.find_conflicts(
                    reservation.vehicle_id,
                    reservation.end_date,
                    new_end_date,
                    exclude_reservation_id=reservation.reservation_id,
                )
                if conflicts:
                    needs_refund = True
                    conflict = ConflictError(
                        "Vehicle was booked after the extension was quoted; payment refunded",
                        {"conflicting_codes": [r.reservation_code for r in conflicts]},
                    )
                else:
                    amount = Decimal(record.amount_cents) / 100
                    reservation.extensions.append(
                        Extension(
                            extension_id=new_id(),
                            quantity=quantity,
                            amount=amount,
                            previous_end_date=reservation.end_date,
                            new_end_date=new_end_date,
                            payment_intent_id=record.intent_id,
                        )
                    )
                    reservation.end_date = new_end_date
                    reservation.total_price = reservation.total_price + amount
                    if record.new_dropoff_time:
                        reservation.dropoff_time = record.new_dropoff_time
                    record.applied_at = utcnow()
                    self.reservations.record(
                        reservation,
                        reservation.status,
                        actor_id,
                        f"extended to {new_end_date.isoformat()} ({record.intent_id})",
                    )
                    await self.reservations.save(reservation)
                    logger.info(
                        f"Reservation {reservation.reservation_code} extended to {new_end_date}"
                    )
                    return PaymentResult(
                        ConfirmOutcome.EXTENDED, reservation, intent_id=record.intent_id
                    )

        if needs_refund:
            refund_id = await self._refund_stray_intent(record)
            if conflict is not None:
                conflict.details["refund_id"] = refund_id
                raise conflict
            reservation = await self.reservations.require_reservation(reservation_id)
            return PaymentResult(
                ConfirmOutcome.REFUNDED,
                reservation,
                intent_id=record.intent_id,
                refund_id=refund_id,
            )

    async def _refund_stray_intent(self, record: PaymentIntentRecord) -> str:
        """Refund a captured intent that was not (and will not be) applied."""
        if record.refund_id:
            return record.refund_id

        refund = await self.gateway.refund(
            record.intent_id,
            record.amount_cents,
            refund_idempotency_key(record.reservation_id, record.intent_id),
        )
        async with self.reservations.locked(record.reservation_id) as reservation:
            record = await self.get_intent_record(record.intent_id)
            record.refund_id = refund.refund_id
            self.reservations.record(
                reservation,
                reservation.status,
                None,
                f"refunded unapplied payment {record.intent_id} ({refund.refund_id})",
            )
            await self.db.commit()

        logger.warning(
            f"Refunded unapplied intent {record.intent_id} for {record.reservation_id}"
        )
        return refund.refund_id

    async def cancel_superseded_intents(self, reservation_id: str) -> list[str]:
        """
        Cancel open initial intents whose amount no longer matches the total.

        Called after the total of an unpaid reservation changes. An intent the
        gateway refuses to cancel (already captured) is refunded when it is
        confirmed or reconciled.
        """
        reservation = await self.reservations.require_reservation(reservation_id)
        if reservation.payment_status == PaymentStatus.PAID:
            return []
        expected = to_cents(reservation.total_price)

        stale = [
            r for r in await self.list_intent_records(reservation_id)
            if not r.is_extension
            and r.applied_at is None
            and r.status in (IntentStatus.REQUIRES_PAYMENT, IntentStatus.PROCESSING)
            and r.amount_cents != expected
        ]

        canceled = []
        for record in stale:
            try:
                intent = await self.gateway.cancel_intent(record.intent_id)
            except PaymentError as e:
                logger.warning(f"Superseded intent {record.intent_id} not canceled: {e.message}")
                continue
            record.status = intent.status
            canceled.append(record.intent_id)

        if canceled:
            await self.db.commit()
            logger.info(
                f"Canceled {len(canceled)} superseded intent(s) for {reservation.reservation_code}"
            )
        return canceled

    # Reconciliation

    async def _reconcile_one(
        self,
        reservation_id: str,
        intent: GatewayIntent,
        actor_id: str | None,
    ) -> PaymentResult | None:
        """Apply one succeeded intent; a rejected intent is logged and skipped."""
        try:
            return await self._apply_intent(reservation_id, intent, actor_id)
        except ConflictError as e:
            logger.warning(f"Intent {intent.intent_id} not applied: {e.message}")
        except PaymentError as e:
            if e.retryable:
                raise
            logger.warning(f"Intent {intent.intent_id} rejected: {e.message}")
        return None

    async def reconcile(self, reservation_id: str, actor_id: str | None = None) -> PaymentResult:
        """
        Recover payments the client never confirmed.

        Lists the reservation's intents at the gateway and applies any
        succeeded ones not yet reflected locally. Never double-applies.
        """
        reservation = await self.reservations.require_reservation(reservation_id)
        if actor_id is not None and actor_id not in (reservation.driver_id, reservation.host_id):
            raise PermissionDeniedError("Not a party to this reservation")
        was_paid = reservation.payment_status == PaymentStatus.PAID

        intents = await self.gateway.list_intents(reservation_id)
        succeeded = [i for i in intents if i.status == IntentStatus.SUCCEEDED]
        initial = [i for i in succeeded if i.metadata.get("purpose", INITIAL_PURPOSE) == INITIAL_PURPOSE]
        extensions = sorted(
            (i for i in succeeded if i.metadata.get("purpose", INITIAL_PURPOSE) != INITIAL_PURPOSE),
            key=lambda i: extension_sequence(i.metadata.get("purpose", "")),
        )

        outcome = ConfirmOutcome.ALREADY_PAID if was_paid else ConfirmOutcome.NO_PAYMENT
        intent_id = None
        # Matching amount first; the rest are refunded as strays
        expected = to_cents(reservation.total_price)
        initial.sort(key=lambda i: i.amount_cents != expected)
        for intent in initial:
            result = await self._reconcile_one(reservation_id, intent, actor_id)
            if result is None:
                continue
            if result.outcome == ConfirmOutcome.PAID or outcome == ConfirmOutcome.NO_PAYMENT:
                outcome = result.outcome
                intent_id = result.intent_id

        applied: list[str] = []
        reservation = await self.reservations.require_reservation(reservation_id)
        if reservation.payment_status == PaymentStatus.PAID:
            for intent in extensions:
                result = await self._reconcile_one(reservation_id, intent, actor_id)
                if result is not None and result.outcome == ConfirmOutcome.EXTENDED:
                    applied.append(intent.intent_id)

        reservation = await self.reservations.require_reservation(reservation_id)
        logger.info(
            f"Reconciled {reservation.reservation_code}: {outcome.value}, "
            f"{len(applied)} extension(s) applied"
        )
        return PaymentResult(
            outcome, reservation, intent_id=intent_id, applied_extensions=applied
        )

    # Refunds

    async def refund(self, reservation_id: str, actor_id: str | None = None) -> RefundResult:
        """
        Refund every applied payment of a cancelled, paid reservation.

        Issued at most once: each captured intent is refunded under its own
        idempotency key and the reservation keeps the initial refund's id as
        its refund reference.
        """
        reservation = await self.reservations.require_reservation(reservation_id)
        if actor_id is not None and actor_id != reservation.host_id:
            raise PermissionDeniedError("Only the host can refund a reservation")
        if reservation.refund_reference:
            return RefundResult(
                reservation, reservation.refund_reference, 0, already_refunded=True
            )
        if reservation.status != ReservationStatus.CANCELLED:
            raise StateError("Only cancelled reservations can be refunded")
        if reservation.payment_status != PaymentStatus.PAID:
            raise StateError("Reservation has no captured payment to refund")

        records = [
            r for r in await self.list_intent_records(reservation_id) if r.applied_at is not None
        ]

        issued: dict[str, str] = {}
        failure: PaymentError | None = None
        for record in records:
            if record.refund_id:
                continue
            try:
                refund = await self.gateway.refund(
                    record.intent_id,
                    record.amount_cents,
                    refund_idempotency_key(reservation_id, record.intent_id),
                )
            except PaymentError as e:
                failure = e
                break
            issued[record.intent_id] = refund.refund_id

        refunded_cents = 0
        async with self.reservations.locked(reservation_id) as reservation:
            for record in await self.list_intent_records(reservation_id):
                if record.intent_id in issued and not record.refund_id:
                    record.refund_id = issued[record.intent_id]
                    refunded_cents += record.amount_cents

            applied = [r for r in records if r.applied_at is not None]
            initial = next((r for r in applied if not r.is_extension), None)
            if failure is None and not reservation.refund_reference:
                reference = (initial or applied[0]).refund_id if applied else None
                reservation.refund_reference = reference
            if issued:
                self.reservations.record(
                    reservation,
                    reservation.status,
                    actor_id,
                    f"refunded {refunded_cents} cents",
                )
            await self.reservations.save(reservation)

        if failure is not None:
            logger.error(f"Refund for {reservation.reservation_code} incomplete: {failure.message}")
            raise failure

        logger.info(
            f"Reservation {reservation.reservation_code} refunded "
            f"({refunded_cents} cents, reference {reservation.refund_reference})"
        )
        return RefundResult(reservation, reservation.refund_reference, refunded_cents)

    async def find_pending_refunds(self, limit: int = 100) -> list[Reservation]:
        """Cancelled, paid reservations still lacking a refund reference."""
        result = await self.db.execute(
            select(Reservation)
            .where(
                Reservation.status == ReservationStatus.CANCELLED,
                Reservation.payment_status == PaymentStatus.PAID,
                Reservation.refund_reference.is_(None),
            )
            .order_by(Reservation.updated_at)
            .limit(limit)
        )
        return list(result.scalars().all())
