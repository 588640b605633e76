"""Vehicle catalog service."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.exceptions import NotFoundError, PermissionDeniedError
from rental_engine.models.vehicle import Vehicle
from rental_engine.schemas.vehicle import VehicleCreate, VehicleUpdate
from rental_engine.services.identifiers import new_id


class VehicleService:
    """Read access to the catalog plus the host-side edits the engine depends on."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_vehicle(self, host_id: str, vehicle_data: VehicleCreate) -> Vehicle:
        """Create a new vehicle owned by ``host_id``."""
        vehicle = Vehicle(
            vehicle_id=new_id(),
            host_id=host_id,
            name=vehicle_data.name,
            daily_rate=vehicle_data.daily_rate,
            weekly_rate=vehicle_data.weekly_rate,
            monthly_rate=vehicle_data.monthly_rate,
            is_available=vehicle_data.is_available,
            timezone=vehicle_data.timezone,
        )
        self.db.add(vehicle)
        await self.db.commit()
        await self.db.refresh(vehicle)
        return vehicle

    async def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        """Get vehicle by ID."""
        result = await self.db.execute(
            select(Vehicle).where(Vehicle.vehicle_id == vehicle_id)
        )
        return result.scalar_one_or_none()

    async def require_vehicle(self, vehicle_id: str) -> Vehicle:
        """Get vehicle by ID or raise NotFoundError."""
        vehicle = await self.get_vehicle(vehicle_id)
        if not vehicle:
            raise NotFoundError("Vehicle", vehicle_id)
        return vehicle

    async def get_host_vehicles(self, host_id: str, available_only: bool = False) -> list[Vehicle]:
        """Get vehicles owned by a host."""
        query = select(Vehicle).where(Vehicle.host_id == host_id)
        if available_only:
            query = query.where(Vehicle.is_available.is_(True))
        result = await self.db.execute(query.order_by(Vehicle.created_at))
        return list(result.scalars().all())

    async def update_vehicle(
        self,
        vehicle_id: str,
        host_id: str,
        vehicle_data: VehicleUpdate,
    ) -> Vehicle:
        """
        Update rates, availability or timezone.

        Rate changes apply to later actions only; existing reservations keep
        the price computed when they were created or extended.
        """
        vehicle = await self.require_vehicle(vehicle_id)
        if vehicle.host_id != host_id:
            raise PermissionDeniedError("Cannot modify another host's vehicle")

        update_data = vehicle_data.model_dump(exclude_unset=True)
        for field, value in update_data.items():
            setattr(vehicle, field, value)

        await self.db.commit()
        await self.db.refresh(vehicle)
        return vehicle

    async def transfer_vehicle(
        self,
        vehicle_id: str,
        host_id: str,
        new_host_id: str,
    ) -> Vehicle:
        """Hand a vehicle to another host. Existing reservations keep their host."""
        vehicle = await self.require_vehicle(vehicle_id)
        if vehicle.host_id != host_id:
            raise PermissionDeniedError("Cannot transfer another host's vehicle")

        vehicle.host_id = new_host_id
        await self.db.commit()
        await self.db.refresh(vehicle)
        return vehicle
