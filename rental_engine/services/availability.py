"""Availability index over reservation date ranges."""

from datetime import date

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.exceptions import ConflictError, InvalidRangeError
from rental_engine.models.reservation import BLOCKING_STATUSES, Reservation


def validate_range(start_date: date, end_date: date) -> None:
    """Reject ranges whose end is not after their start."""
    if end_date <= start_date:
        raise InvalidRangeError(
            "End date must be after start date",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open overlap test: ``[a_start, a_end)`` against ``[b_start, b_end)``."""
    return a_start < b_end and b_start < a_end


class AvailabilityService:
    """
    Answers whether a vehicle is free for a date range.

    Only pending, confirmed and active reservations block; cancelled and
    completed ones never do. Callers that act on the answer must hold the
    vehicle lock (see ``distributed_lock.vehicle_lock_key``) across the check
    and their write.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_conflicts(
        self,
        vehicle_id: str,
        start_date: date,
        end_date: date,
        exclude_reservation_id: str | None = None,
    ) -> list[Reservation]:
        """Get blocking reservations on the vehicle overlapping the range."""
        validate_range(start_date, end_date)

        query = select(Reservation).where(
            and_(
                Reservation.vehicle_id == vehicle_id,
                Reservation.status.in_(BLOCKING_STATUSES),
                Reservation.start_date < end_date,
                Reservation.end_date > start_date,
            )
        )
        if exclude_reservation_id:
            query = query.where(Reservation.reservation_id != exclude_reservation_id)

        result = await self.db.execute(query.order_by(Reservation.start_date))
        return list(result.scalars().all())

    async def is_available(
        self,
        vehicle_id: str,
        start_date: date,
        end_date: date,
        exclude_reservation_id: str | None = None,
    ) -> bool:
        """Check that no blocking reservation overlaps the range."""
        conflicts = await self.find_conflicts(
            vehicle_id, start_date, end_date, exclude_reservation_id
        )
        return not conflicts

    async def ensure_available(
        self,
        vehicle_id: str,
        start_date: date,
        end_date: date,
        exclude_reservation_id: str | None = None,
    ) -> None:
        """
        Raise ConflictError when the range is taken.

        Raises:
            ConflictError: If any blocking reservation overlaps
        """
        conflicts = await self.find_conflicts(
            vehicle_id, start_date, end_date, exclude_reservation_id
        )
        if conflicts:
            raise ConflictError(
                "Vehicle is not available for the requested dates",
                {
                    "vehicle_id": vehicle_id,
                    "conflicting_codes": [r.reservation_code for r in conflicts],
                },
            )
