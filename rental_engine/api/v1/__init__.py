"""API v1 routers package."""

from rental_engine.api.v1.payments import router as payments_router
from rental_engine.api.v1.reservations import router as reservations_router
from rental_engine.api.v1.uploads import router as uploads_router
from rental_engine.api.v1.vehicles import router as vehicles_router

__all__ = [
    "vehicles_router",
    "reservations_router",
    "payments_router",
    "uploads_router",
]
