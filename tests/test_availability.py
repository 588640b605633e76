"""
Availability Index Tests.
"""

from datetime import date

import pytest

from conftest import DRIVER_ID, HOST_ID
from rental_engine.exceptions import ConflictError, InvalidRangeError
from rental_engine.services.availability import AvailabilityService, ranges_overlap


def test_half_open_ranges_touching_do_not_overlap():
    assert not ranges_overlap(date(2024, 6, 1), date(2024, 6, 4), date(2024, 6, 4), date(2024, 6, 6))
    assert ranges_overlap(date(2024, 6, 1), date(2024, 6, 5), date(2024, 6, 4), date(2024, 6, 6))


@pytest.mark.asyncio
async def test_overlapping_booking_is_rejected(reservation_service, make_vehicle):
    vehicle = await make_vehicle()
    await reservation_service.create_reservation(
        DRIVER_ID, vehicle.vehicle_id, date(2024, 6, 1), date(2024, 6, 5)
    )

    with pytest.raises(ConflictError) as exc_info:
        await reservation_service.create_reservation(
            "driver-2", vehicle.vehicle_id, date(2024, 6, 3), date(2024, 6, 7)
        )
    assert exc_info.value.details["conflicting_codes"] == ["RUFS-00001"]


@pytest.mark.asyncio
async def test_back_to_back_bookings_are_allowed(reservation_service, make_vehicle):
    vehicle = await make_vehicle()
    await reservation_service.create_reservation(
        DRIVER_ID, vehicle.vehicle_id, date(2024, 6, 1), date(2024, 6, 5)
    )
    second = await reservation_service.create_reservation(
        "driver-2", vehicle.vehicle_id, date(2024, 6, 5), date(2024, 6, 8)
    )
    assert second.reservation_code == "RUFS-00002"


@pytest.mark.asyncio
async def test_cancelled_reservation_never_blocks(reservation_service, make_vehicle):
    vehicle = await make_vehicle()
    first = await reservation_service.create_reservation(
        DRIVER_ID, vehicle.vehicle_id, date(2024, 6, 1), date(2024, 6, 10)
    )
    await reservation_service.decline(first.reservation_id, HOST_ID)

    inside = await reservation_service.create_reservation(
        "driver-2", vehicle.vehicle_id, date(2024, 6, 3), date(2024, 6, 5)
    )
    assert inside.vehicle_id == vehicle.vehicle_id


@pytest.mark.asyncio
async def test_other_vehicles_do_not_conflict(db_session, reservation_service, make_vehicle):
    a = await make_vehicle(name="A")
    b = await make_vehicle(name="B")
    await reservation_service.create_reservation(
        DRIVER_ID, a.vehicle_id, date(2024, 6, 1), date(2024, 6, 5)
    )

    availability = AvailabilityService(db_session)
    assert await availability.is_available(b.vehicle_id, date(2024, 6, 1), date(2024, 6, 5))
    assert not await availability.is_available(a.vehicle_id, date(2024, 6, 4), date(2024, 6, 6))


@pytest.mark.asyncio
async def test_empty_range_is_invalid(db_session):
    availability = AvailabilityService(db_session)
    with pytest.raises(InvalidRangeError):
        await availability.find_conflicts("any", date(2024, 6, 5), date(2024, 6, 5))
