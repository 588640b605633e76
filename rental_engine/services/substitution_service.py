"""Vehicle substitution: move a reservation to another of the host's vehicles."""

import logging
from dataclasses import dataclass
from decimal import Decimal

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.distributed_lock import vehicle_lock_key
from rental_engine.exceptions import ConflictError, StateError, ValidationError
from rental_engine.models.reservation import Reservation, ReservationStatus
from rental_engine.models.vehicle import Vehicle
from rental_engine.services.payment_gateway import PaymentGateway
from rental_engine.services.payment_service import PaymentService
from rental_engine.services.pricing import PriceQuote, RateCard, quote
from rental_engine.services.reservation_service import ReservationService
from rental_engine.services.vehicle_service import VehicleService

logger = logging.getLogger(__name__)

SWITCHABLE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


@dataclass(frozen=True)
class SubstituteCandidate:
    vehicle: Vehicle
    total_price: Decimal
    price_difference: Decimal


@dataclass(frozen=True)
class SwitchResult:
    reservation: Reservation
    previous_vehicle_id: str
    price_difference: Decimal


def reprice(reservation: Reservation, vehicle: Vehicle) -> PriceQuote:
    """Price the reservation's current range and quantum on another vehicle."""
    units = reservation.quantity + sum(e.quantity for e in reservation.extensions)
    return quote(
        RateCard.from_vehicle(vehicle),
        reservation.rental_type,
        units,
        reservation.insurance_plan,
        days=reservation.days,
    )


class SubstitutionService:
    """Lists replacement vehicles and performs the switch atomically."""

    def __init__(
        self,
        db: AsyncSession,
        redis_client: redis.Redis,
        gateway: PaymentGateway | None = None,
    ):
        self.db = db
        self.redis = redis_client
        self.reservations = ReservationService(db, redis_client, gateway)
        self.payments = PaymentService(db, redis_client, self.reservations.gateway)
        self.vehicles = VehicleService(db)

    @staticmethod
    def _check_switchable(reservation: Reservation) -> None:
        if reservation.status not in SWITCHABLE_STATUSES:
            raise StateError(
                f"Cannot switch the vehicle of a {reservation.status.value} reservation",
                {"status": reservation.status.value},
            )

    async def list_candidates(
        self,
        reservation_id: str,
        host_id: str,
    ) -> list[SubstituteCandidate]:
        """
        Get the host's other vehicles free for the reservation's range.

        Each candidate carries the re-priced total and its difference from the
        current total, cheapest first.
        """
        reservation = await self.reservations.require_reservation(reservation_id)
        self.reservations.require_host(reservation, host_id)
        self._check_switchable(reservation)

        candidates = []
        for vehicle in await self.vehicles.get_host_vehicles(host_id, available_only=True):
            if vehicle.vehicle_id == reservation.vehicle_id:
                continue
            free = await self.reservations.availability.is_available(
                vehicle.vehicle_id, reservation.start_date, reservation.end_date
            )
            if not free:
                continue
            total = reprice(reservation, vehicle).total
            candidates.append(
                SubstituteCandidate(
                    vehicle=vehicle,
                    total_price=total,
                    price_difference=total - reservation.total_price,
                )
            )

        return sorted(candidates, key=lambda c: c.total_price)

    async def switch_vehicle(
        self,
        reservation_id: str,
        host_id: str,
        new_vehicle_id: str,
    ) -> SwitchResult:
        """
        Move a pending or confirmed reservation to another vehicle.

        Availability is re-validated under the reservation and new-vehicle
        locks; the vehicle, prices and history entry commit together.

        Raises:
            StateError: If the reservation is active or finished
            ConflictError: If the new vehicle is no longer free
        """
        async with self.reservations.locked(
            reservation_id, [vehicle_lock_key(new_vehicle_id)]
        ) as reservation:
            self.reservations.require_host(reservation, host_id)
            self._check_switchable(reservation)
            if new_vehicle_id == reservation.vehicle_id:
                raise ValidationError("Reservation is already on this vehicle")

            vehicle = await self.reservations.get_vehicle(new_vehicle_id, for_update=True)
            if vehicle.host_id != reservation.host_id:
                raise ValidationError("Replacement vehicle must belong to the same host")
            if not vehicle.is_available:
                raise ConflictError(
                    "Vehicle is not available for booking", {"vehicle_id": new_vehicle_id}
                )
            await self.reservations.availability.ensure_available(
                new_vehicle_id, reservation.start_date, reservation.end_date
            )

            price = reprice(reservation, vehicle)
            difference = price.total - reservation.total_price
            previous_vehicle_id = reservation.vehicle_id

            reservation.vehicle_id = new_vehicle_id
            reservation.rental_price = price.rental
            reservation.insurance_cost = price.insurance
            reservation.total_price = price.total
            reservation.price_adjustment = (reservation.price_adjustment or Decimal("0")) + difference
            self.reservations.record(
                reservation,
                reservation.status,
                host_id,
                f"vehicle switched from {previous_vehicle_id} to {new_vehicle_id} ({difference:+})",
            )
            await self.reservations.save(reservation)

        logger.info(
            f"Reservation {reservation.reservation_code} moved to vehicle {new_vehicle_id} "
            f"(price difference {difference})"
        )
        if difference:
            await self.payments.cancel_superseded_intents(reservation_id)
            reservation = await self.reservations.require_reservation(reservation_id)
        return SwitchResult(reservation, previous_vehicle_id, difference)
