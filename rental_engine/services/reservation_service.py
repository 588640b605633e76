"""Reservation state machine with distributed locking."""

import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.config import get_settings
from rental_engine.distributed_lock import (
    DistributedLockError,
    multi_lock,
    reservation_lock_key,
    vehicle_lock_key,
)
from rental_engine.exceptions import (
    ConflictError,
    InvalidRangeError,
    NotFoundError,
    PaymentError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from rental_engine.models.base import utcnow
from rental_engine.models.reservation import (
    InsurancePlan,
    PaymentStatus,
    RentalType,
    Reservation,
    ReservationStatus,
    StatusChange,
    is_allowed_state,
)
from rental_engine.models.vehicle import Vehicle
from rental_engine.services.availability import AvailabilityService, validate_range
from rental_engine.services.identifiers import allocate_reservation_code, new_id
from rental_engine.services.overdue import OverdueStatus, classify_overdue, local_today
from rental_engine.services.payment_gateway import PaymentGateway, get_payment_gateway
from rental_engine.services.pricing import (
    RateCard,
    insurance_cost,
    quantity_for_days,
    quote,
    rental_days,
    validate_quantity,
)

settings = get_settings()
logger = logging.getLogger(__name__)

_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def normalize_clock(value: str | None) -> str:
    """Validate an ``HH:MM`` clock string, defaulting to the configured drop-off time."""
    if value is None:
        return settings.DEFAULT_DROPOFF_TIME
    if not _CLOCK_RE.match(value):
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    return value


@dataclass(frozen=True)
class ExtensionQuote:
    """Price and dates an extension would produce."""

    quantity: int
    rental: Decimal
    insurance: Decimal
    previous_end_date: date
    new_end_date: date

    @property
    def amount(self) -> Decimal:
        return self.rental + self.insurance


class ReservationService:
    """
    Owns the lifecycle of a reservation.

    pending -> confirmed -> active -> completed, with cancelled reachable from
    pending, confirmed and active. Every mutation runs under the reservation's
    distributed lock, re-reads the row, validates the transition and commits
    once; any failure rolls the session back.
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
        self.availability = AvailabilityService(db)

    # Reads

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        """Get reservation by ID, always reloading from the database."""
        result = await self.db.execute(
            select(Reservation)
            .where(Reservation.reservation_id == reservation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def require_reservation(self, reservation_id: str) -> Reservation:
        reservation = await self.get_reservation(reservation_id)
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    async def get_by_code(self, reservation_code: str) -> Reservation | None:
        """Get reservation by its human-facing code."""
        result = await self.db.execute(
            select(Reservation).where(Reservation.reservation_code == reservation_code)
        )
        return result.scalar_one_or_none()

    async def list_for_driver(
        self,
        driver_id: str,
        status: ReservationStatus | None = None,
    ) -> list[Reservation]:
        """Get reservations made by a driver, newest first."""
        query = select(Reservation).where(Reservation.driver_id == driver_id)
        if status:
            query = query.where(Reservation.status == status)
        result = await self.db.execute(query.order_by(Reservation.created_at.desc()))
        return list(result.scalars().all())

    async def list_for_host(
        self,
        host_id: str,
        status: ReservationStatus | None = None,
    ) -> list[Reservation]:
        """Get reservations on a host's vehicles, newest first."""
        query = select(Reservation).where(Reservation.host_id == host_id)
        if status:
            query = query.where(Reservation.status == status)
        result = await self.db.execute(query.order_by(Reservation.created_at.desc()))
        return list(result.scalars().all())

    async def get_history(self, reservation_id: str) -> list[StatusChange]:
        """Get the status-change history of a reservation in order."""
        result = await self.db.execute(
            select(StatusChange)
            .where(StatusChange.reservation_id == reservation_id)
            .order_by(StatusChange.change_id)
        )
        return list(result.scalars().all())

    async def get_vehicle(self, vehicle_id: str, for_update: bool = False) -> Vehicle:
        query = select(Vehicle).where(Vehicle.vehicle_id == vehicle_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        vehicle = result.scalar_one_or_none()
        if not vehicle:
            raise NotFoundError("Vehicle", vehicle_id)
        return vehicle

    async def get_overdue_status(
        self,
        reservation_id: str,
        now: datetime | None = None,
    ) -> OverdueStatus:
        """Classify a reservation as overdue in its vehicle's timezone."""
        reservation = await self.require_reservation(reservation_id)
        vehicle = await self.get_vehicle(reservation.vehicle_id)
        return classify_overdue(reservation, vehicle.timezone, now)

    # Locking helpers

    @asynccontextmanager
    async def locked(
        self,
        reservation_id: str,
        extra_keys: list[str] | None = None,
    ) -> AsyncGenerator[Reservation, None]:
        """
        Lock a reservation and yield its freshly loaded row.

        Usage:
            async with service.locked(reservation_id) as reservation:
                ...
                await service.save(reservation)

        Raises:
            ConflictError: If the lock cannot be acquired
            NotFoundError: If the reservation does not exist
        """
        keys = [reservation_lock_key(reservation_id), *(extra_keys or [])]
        try:
            async with multi_lock(self.redis, keys, blocking=True):
                try:
                    result = await self.db.execute(
                        select(Reservation)
                        .where(Reservation.reservation_id == reservation_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    )
                    reservation = result.scalar_one_or_none()
                    if not reservation:
                        raise NotFoundError("Reservation", reservation_id)
                    yield reservation
                except BaseException:
                    await self.db.rollback()
                    raise
        except DistributedLockError:
            raise ConflictError("Reservation is being modified, please retry")

    async def save(self, reservation: Reservation) -> Reservation:
        """Validate the (status, payment_status) pair and commit."""
        if not is_allowed_state(reservation.status, reservation.payment_status):
            raise StateError(
                f"Invalid state {reservation.status.value}/{reservation.payment_status.value}"
            )
        await self.db.commit()
        return reservation

    def record(
        self,
        reservation: Reservation,
        from_status: ReservationStatus | None,
        actor_id: str | None,
        note: str = "",
    ) -> None:
        """Append a history row for the reservation's current status."""
        self.db.add(
            StatusChange(
                reservation_id=reservation.reservation_id,
                from_status=from_status,
                to_status=reservation.status,
                actor_id=actor_id,
                note=note[:255],
            )
        )

    def _transition(
        self,
        reservation: Reservation,
        allowed_from: tuple[ReservationStatus, ...],
        to_status: ReservationStatus,
        actor_id: str,
        action: str,
    ) -> None:
        if reservation.status not in allowed_from:
            raise StateError(
                f"Cannot {action} a {reservation.status.value} reservation",
                {"status": reservation.status.value, "action": action},
            )
        previous = reservation.status
        reservation.status = to_status
        self.record(reservation, previous, actor_id, action)

    @staticmethod
    def require_host(reservation: Reservation, actor_id: str) -> None:
        if reservation.host_id != actor_id:
            raise PermissionDeniedError("Only the host can perform this action")

    @staticmethod
    def require_driver(reservation: Reservation, actor_id: str) -> None:
        if reservation.driver_id != actor_id:
            raise PermissionDeniedError("Only the driver can perform this action")

    # Create

    async def create_reservation(
        self,
        driver_id: str,
        vehicle_id: str,
        start_date: date,
        end_date: date,
        rental_type: RentalType = RentalType.DAILY,
        quantity: int | None = None,
        pickup_time: str | None = None,
        insurance_plan: InsurancePlan = InsurancePlan.NONE,
        message: str = "",
    ) -> Reservation:
        """
        Create a pending, unpaid reservation.

        Args:
            driver_id: Driver making the booking
            vehicle_id: Vehicle to book
            start_date: First day of the rental
            end_date: Return day (exclusive for availability)
            rental_type: Billing quantum
            quantity: Quantum units; derived from the date span when omitted
            pickup_time: ``HH:MM``; drop-off time is set to the same value
            insurance_plan: Insurance add-on
            message: Free text for the host

        Returns:
            Created reservation

        Raises:
            InvalidRangeError: If end <= start, or quantity is out of bounds or
                does not match the number of units the date span needs
            ConflictError: If the vehicle is unavailable for the range
        """
        validate_range(start_date, end_date)
        days = (end_date - start_date).days
        covering = quantity_for_days(rental_type, days)
        if quantity is None:
            quantity = covering
        validate_quantity(rental_type, quantity)
        if quantity != covering:
            raise InvalidRangeError(
                f"{days} days need {covering} {rental_type.value} unit(s), got {quantity}",
                {
                    "rental_type": rental_type.value,
                    "days": days,
                    "expected_quantity": covering,
                    "quantity": quantity,
                },
            )
        pickup_time = normalize_clock(pickup_time)

        try:
            async with multi_lock(self.redis, [vehicle_lock_key(vehicle_id)], blocking=True):
                try:
                    return await self._do_create_reservation(
                        driver_id,
                        vehicle_id,
                        start_date,
                        end_date,
                        rental_type,
                        quantity,
                        pickup_time,
                        insurance_plan,
                        message,
                    )
                except IntegrityError:
                    await self.db.rollback()
                    raise ConflictError("Reservation could not be allocated, please retry")
                except BaseException:
                    await self.db.rollback()
                    raise
        except DistributedLockError:
            raise ConflictError("Vehicle is being booked by someone else, please retry")

    async def _do_create_reservation(
        self,
        driver_id: str,
        vehicle_id: str,
        start_date: date,
        end_date: date,
        rental_type: RentalType,
        quantity: int,
        pickup_time: str,
        insurance_plan: InsurancePlan,
        message: str,
    ) -> Reservation:
        """
        Internal method to create a reservation.
        Should be called within the vehicle lock.
        """
        vehicle = await self.get_vehicle(vehicle_id, for_update=True)

        if vehicle.host_id == driver_id:
            raise ValidationError("Hosts cannot book their own vehicle")
        if not vehicle.is_available:
            raise ConflictError(
                "Vehicle is not available for booking", {"vehicle_id": vehicle_id}
            )

        await self.availability.ensure_available(vehicle_id, start_date, end_date)

        price = quote(
            RateCard.from_vehicle(vehicle),
            rental_type,
            quantity,
            insurance_plan,
            days=(end_date - start_date).days,
        )

        reservation = Reservation(
            reservation_id=new_id(),
            reservation_code=await allocate_reservation_code(self.db),
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            host_id=vehicle.host_id,
            start_date=start_date,
            end_date=end_date,
            pickup_time=pickup_time,
            dropoff_time=pickup_time,
            rental_type=rental_type,
            quantity=quantity,
            rental_price=price.rental,
            insurance_plan=insurance_plan,
            insurance_cost=price.insurance,
            total_price=price.total,
            status=ReservationStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            message=message or "",
            extensions=[],
        )
        self.db.add(reservation)
        self.record(reservation, None, driver_id, "created")
        await self.save(reservation)

        logger.info(
            f"Reservation {reservation.reservation_code} created for vehicle {vehicle_id} "
            f"({start_date} - {end_date}, total {reservation.total_price})"
        )
        return reservation

    # Host / driver transitions

    async def confirm(self, reservation_id: str, host_id: str) -> Reservation:
        """Host accepts a pending reservation. Payment is untouched."""
        async with self.locked(reservation_id) as reservation:
            self.require_host(reservation, host_id)
            self._transition(
                reservation,
                (ReservationStatus.PENDING,),
                ReservationStatus.CONFIRMED,
                host_id,
                "confirm",
            )
            return await self.save(reservation)

    async def decline(self, reservation_id: str, host_id: str) -> Reservation:
        """Host declines a pending reservation."""
        async with self.locked(reservation_id) as reservation:
            self.require_host(reservation, host_id)
            self._transition(
                reservation,
                (ReservationStatus.PENDING,),
                ReservationStatus.CANCELLED,
                host_id,
                "decline",
            )
            return await self.save(reservation)

    async def cancel_by_driver(self, reservation_id: str, driver_id: str) -> Reservation:
        """Driver withdraws a pending reservation; nothing has been paid yet."""
        async with self.locked(reservation_id) as reservation:
            self.require_driver(reservation, driver_id)
            self._transition(
                reservation,
                (ReservationStatus.PENDING,),
                ReservationStatus.CANCELLED,
                driver_id,
                "cancel",
            )
            return await self.save(reservation)

    async def start(
        self,
        reservation_id: str,
        driver_id: str,
        inspection_completed: bool,
        now: datetime | None = None,
    ) -> Reservation:
        """
        Pickup: confirmed + paid -> active.

        Requires a completed pickup inspection and the vehicle's local date to
        have reached the start date.
        """
        if not inspection_completed:
            raise ValidationError("Pickup inspection must be completed before starting the rental")

        async with self.locked(reservation_id) as reservation:
            self.require_driver(reservation, driver_id)
            if reservation.status == ReservationStatus.CONFIRMED and (
                reservation.payment_status != PaymentStatus.PAID
            ):
                raise StateError("Reservation must be paid before pickup")

            vehicle = await self.get_vehicle(reservation.vehicle_id)
            today = local_today(vehicle.timezone, now)
            if today < reservation.start_date:
                raise StateError(
                    f"Rental cannot start before {reservation.start_date.isoformat()}",
                    {"start_date": reservation.start_date.isoformat(), "today": today.isoformat()},
                )

            self._transition(
                reservation,
                (ReservationStatus.CONFIRMED,),
                ReservationStatus.ACTIVE,
                driver_id,
                "start",
            )
            reservation.pickup_inspected_at = utcnow()
            return await self.save(reservation)

    async def complete(
        self,
        reservation_id: str,
        actor_id: str,
        inspection_completed: bool,
    ) -> Reservation:
        """Return: active -> completed once the return inspection is done."""
        if not inspection_completed:
            raise ValidationError("Return inspection must be completed before completing the rental")

        async with self.locked(reservation_id) as reservation:
            if actor_id not in (reservation.driver_id, reservation.host_id):
                raise PermissionDeniedError("Only the driver or host can complete the rental")
            self._transition(
                reservation,
                (ReservationStatus.ACTIVE,),
                ReservationStatus.COMPLETED,
                actor_id,
                "complete",
            )
            reservation.return_inspected_at = utcnow()
            return await self.save(reservation)

    async def cancel_by_host(self, reservation_id: str, host_id: str) -> Reservation:
        """
        Host cancels a confirmed or active reservation.

        A paid reservation is refunded in full once the cancellation is
        committed. If the gateway fails, the reservation stays cancelled without
        a refund reference and the refund sweeper retries later.
        """
        async with self.locked(reservation_id) as reservation:
            self.require_host(reservation, host_id)
            self._transition(
                reservation,
                (ReservationStatus.CONFIRMED, ReservationStatus.ACTIVE),
                ReservationStatus.CANCELLED,
                host_id,
                "host cancel",
            )
            await self.save(reservation)

        if reservation.payment_status == PaymentStatus.PAID:
            from rental_engine.services.payment_service import PaymentService

            payments = PaymentService(self.db, self.redis, self.gateway)
            try:
                await payments.refund(reservation_id)
            except PaymentError as e:
                logger.warning(
                    f"Refund for {reservation.reservation_code} deferred to sweeper: {e.message}"
                )
            return await self.require_reservation(reservation_id)

        return reservation

    # Insurance

    async def set_insurance(
        self,
        reservation_id: str,
        driver_id: str,
        plan: InsurancePlan,
    ) -> Reservation:
        """
        Add, change or remove the insurance plan before payment.

        The cost is recomputed over the reservation's days and the total moves
        by the difference. An intent already opened for the old total is
        canceled once the change is committed.

        Raises:
            StateError: If the reservation is paid or past confirmation
        """
        async with self.locked(reservation_id) as reservation:
            self.require_driver(reservation, driver_id)
            if reservation.status not in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED):
                raise StateError(
                    f"Cannot change insurance of a {reservation.status.value} reservation",
                    {"status": reservation.status.value},
                )
            if reservation.payment_status != PaymentStatus.UNPAID:
                raise StateError("Insurance cannot change after payment")

            previous = reservation.insurance_plan
            if plan == previous:
                return reservation

            cost = insurance_cost(plan, reservation.days)
            difference = cost - reservation.insurance_cost
            reservation.insurance_plan = plan
            reservation.insurance_cost = cost
            reservation.total_price = reservation.total_price + difference
            self.record(
                reservation,
                reservation.status,
                driver_id,
                f"insurance {previous.value} -> {plan.value} ({difference:+})",
            )
            await self.save(reservation)

        logger.info(
            f"Reservation {reservation.reservation_code} insurance set to {plan.value} "
            f"(total {reservation.total_price})"
        )

        from rental_engine.services.payment_service import PaymentService

        payments = PaymentService(self.db, self.redis, self.gateway)
        await payments.cancel_superseded_intents(reservation_id)
        return await self.require_reservation(reservation_id)

    # Extension pricing

    async def quote_extension(
        self,
        reservation: Reservation,
        quantity: int,
        vehicle: Vehicle | None = None,
    ) -> ExtensionQuote:
        """
        Price an extension at the vehicle's current rate card.

        Uses the reservation's own quantum and insurance plan. Only the delta
        range after the current end date is checked for availability.

        Raises:
            StateError: If the reservation cannot be extended
            ConflictError: If the delta range is taken
        """
        if reservation.status not in (ReservationStatus.CONFIRMED, ReservationStatus.ACTIVE):
            raise StateError(f"Cannot extend a {reservation.status.value} reservation")
        if reservation.payment_status != PaymentStatus.PAID:
            raise StateError("Reservation must be paid before it can be extended")

        validate_quantity(reservation.rental_type, quantity)
        vehicle = vehicle or await self.get_vehicle(reservation.vehicle_id)

        extra_days = rental_days(reservation.rental_type, quantity)
        new_end_date = reservation.end_date + timedelta(days=extra_days)
        await self.availability.ensure_available(
            reservation.vehicle_id,
            reservation.end_date,
            new_end_date,
            exclude_reservation_id=reservation.reservation_id,
        )

        price = quote(
            RateCard.from_vehicle(vehicle),
            reservation.rental_type,
            quantity,
            reservation.insurance_plan,
            days=extra_days,
        )
        return ExtensionQuote(
            quantity=quantity,
            rental=price.rental,
            insurance=price.insurance,
            previous_end_date=reservation.end_date,
            new_end_date=new_end_date,
        )
