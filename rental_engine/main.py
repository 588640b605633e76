"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Annotated

import redis.asyncio as redis
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rental_engine.api.v1.router import router as v1_router
from rental_engine.config import get_settings
from rental_engine.exceptions import EngineError, engine_exception_handler
from rental_engine.redis_client import close_redis, get_redis, redis_is_healthy
from rental_engine.services.payment_gateway import close_payment_gateway
from rental_engine.tasks import background_tasks


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Rental Engine API...")

    # Initialize Redis connection
    redis_client = await get_redis()
    if await redis_is_healthy(redis_client):
        logger.info("Redis connection established")
    else:
        logger.error("Redis is unreachable; locks and upload sessions will fail")

    # Start background tasks
    await background_tasks.start()

    yield

    # Shutdown
    logger.info("Shutting down Rental Engine API...")

    # Stop background tasks
    await background_tasks.stop()

    # Close gateway connection pool
    await close_payment_gateway()

    # Close Redis connection
    await close_redis()
    logger.info("Redis connection closed")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Rental Engine API

Reservation fulfillment for a peer-to-peer vehicle rental marketplace.

- **Conflict-free booking**: vehicle-scoped Redis locks around availability checks
- **Single-writer reservations**: every transition runs under the reservation lock
- **Payment reconciliation**: idempotent confirm, gateway recovery, refund once
- **Vehicle substitution**: re-validated atomically at switch time
- **Upload relay**: short-lived phone-to-desktop image sessions

### Authentication
Reservation, vehicle and payment endpoints require the `X-User-ID` header.
Upload relay endpoints are keyed by session id only.

### Workflow
1. Driver requests a booking (pending, unpaid)
2. Host confirms
3. Driver creates a payment intent, pays, and confirms it
4. Pickup inspection starts the rental; return inspection completes it
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routers
    app.include_router(v1_router, prefix="/api")

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check(redis_client: Annotated[redis.Redis, Depends(get_redis)]):
        """Health check endpoint. Degraded when Redis does not answer."""
        redis_ok = await redis_is_healthy(redis_client)
        return {
            "status": "healthy" if redis_ok else "degraded",
            "version": settings.APP_VERSION,
            "redis": "ok" if redis_ok else "unavailable",
        }

    # Engine errors render as {error_code, message, details}
    app.add_exception_handler(EngineError, engine_exception_handler)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error_code": "ERR_INTERNAL",
                "message": "Internal Server Error",
                "details": {"error": str(exc)} if settings.DEBUG else {},
            },
        )

    return app


# Create application instance
app = create_app()


def run():
    """Run the application with uvicorn."""
    uvicorn.run(
        "rental_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
