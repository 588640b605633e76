"""API v1 main router."""

from fastapi import APIRouter

from rental_engine.api.v1.payments import router as payments_router
from rental_engine.api.v1.reservations import router as reservations_router
from rental_engine.api.v1.uploads import router as uploads_router
from rental_engine.api.v1.vehicles import router as vehicles_router
from rental_engine.schemas.common import ErrorResponse

# Engine errors share one body shape; documented once for every route
ENGINE_ERRORS = {code: {"model": ErrorResponse} for code in (400, 403, 404, 409)}
PAYMENT_ERRORS = {
    **ENGINE_ERRORS,
    402: {"model": ErrorResponse, "description": "Payment rejected"},
    503: {"model": ErrorResponse, "description": "Gateway unreachable, retry"},
}

router = APIRouter(prefix="/v1")

router.include_router(
    vehicles_router, prefix="/vehicles", tags=["Vehicles"], responses=ENGINE_ERRORS
)
router.include_router(
    reservations_router,
    prefix="/reservations",
    tags=["Reservations"],
    responses=PAYMENT_ERRORS,
)
router.include_router(
    payments_router, prefix="/payments", tags=["Payments"], responses=PAYMENT_ERRORS
)
router.include_router(
    uploads_router, prefix="/uploads", tags=["Uploads"], responses=ENGINE_ERRORS
)
