"""Overdue classification, computed at read time and never stored."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rental_engine.config import get_settings
from rental_engine.models.reservation import Reservation, ReservationStatus

settings = get_settings()
logger = logging.getLogger(__name__)

DEFAULT_DROPOFF = time(10, 0)

OVERDUE_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.ACTIVE)


@dataclass(frozen=True)
class OverdueStatus:
    """Overdue classification of one reservation at one instant."""

    is_overdue: bool
    due_at: datetime
    overdue_seconds: int = 0

    @property
    def overdue_hours(self) -> int:
        return self.overdue_seconds // 3600

    @property
    def overdue_days(self) -> int:
        return self.overdue_seconds // 86400


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Vehicle timezone, falling back to the configured default (UTC)."""
    fallback = settings.DEFAULT_TIMEZONE
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {name!r}, using {fallback}")
    return ZoneInfo(fallback)


def parse_clock(value: str | None) -> time:
    """Parse an ``HH:MM`` string, defaulting to 10:00 when unset or malformed."""
    if not value:
        return DEFAULT_DROPOFF
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except ValueError:
        logger.warning(f"Malformed clock value {value!r}, using 10:00")
        return DEFAULT_DROPOFF


def due_at(end_date: date, dropoff_time: str | None, tz: ZoneInfo) -> datetime:
    """Aware instant at which the vehicle is due back."""
    return datetime.combine(end_date, parse_clock(dropoff_time), tzinfo=tz)


def local_today(tz_name: str | None, now: datetime | None = None) -> date:
    """Current calendar date in the given timezone."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(resolve_timezone(tz_name)).date()


def classify_overdue(
    reservation: Reservation,
    tz_name: str | None = None,
    now: datetime | None = None,
) -> OverdueStatus:
    """
    Classify a reservation as overdue or not.

    Only confirmed and active reservations can be overdue. The due instant is
    ``end_date`` at ``dropoff_time`` in the vehicle's timezone. A naive ``now``
    is read as UTC.
    """
    tz = resolve_timezone(tz_name)
    deadline = due_at(reservation.end_date, reservation.dropoff_time, tz)

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if reservation.status not in OVERDUE_STATUSES:
        return OverdueStatus(is_overdue=False, due_at=deadline)

    late = now - deadline
    if late <= timedelta(0):
        return OverdueStatus(is_overdue=False, due_at=deadline)

    return OverdueStatus(
        is_overdue=True,
        due_at=deadline,
        overdue_seconds=int(late.total_seconds()),
    )
