"""API dependencies."""

from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.database import get_db
from rental_engine.redis_client import get_redis
from rental_engine.services.payment_gateway import PaymentGateway, get_payment_gateway
from rental_engine.services.payment_service import PaymentService
from rental_engine.services.reservation_service import ReservationService
from rental_engine.services.substitution_service import SubstitutionService
from rental_engine.services.upload_relay import UploadRelayService
from rental_engine.services.vehicle_service import VehicleService

# Type aliases
DBSession = Annotated[AsyncSession, Depends(get_db)]
RedisClient = Annotated[redis.Redis, Depends(get_redis)]
Gateway = Annotated[PaymentGateway, Depends(get_payment_gateway)]


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """
    Get current user ID from header.
    In a real application, this would verify JWT tokens, etc.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header is required",
        )
    return x_user_id


CurrentUser = Annotated[str, Depends(get_current_user_id)]


def get_vehicle_service(db: DBSession) -> VehicleService:
    """Get vehicle service."""
    return VehicleService(db)


def get_reservation_service(
    db: DBSession,
    redis_client: RedisClient,
    gateway: Gateway,
) -> ReservationService:
    """Get reservation service."""
    return ReservationService(db, redis_client, gateway)


def get_payment_service(
    db: DBSession,
    redis_client: RedisClient,
    gateway: Gateway,
) -> PaymentService:
    """Get payment service."""
    return PaymentService(db, redis_client, gateway)


def get_substitution_service(
    db: DBSession,
    redis_client: RedisClient,
    gateway: Gateway,
) -> SubstitutionService:
    """Get substitution service."""
    return SubstitutionService(db, redis_client, gateway)


def get_upload_relay_service(redis_client: RedisClient) -> UploadRelayService:
    """Get upload relay service."""
    return UploadRelayService(redis_client)


# Annotated dependencies
VehicleServiceDep = Annotated[VehicleService, Depends(get_vehicle_service)]
ReservationServiceDep = Annotated[ReservationService, Depends(get_reservation_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
SubstitutionServiceDep = Annotated[SubstitutionService, Depends(get_substitution_service)]
UploadRelayServiceDep = Annotated[UploadRelayService, Depends(get_upload_relay_service)]
