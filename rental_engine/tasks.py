"""Background tasks for the rental engine."""

import asyncio
import logging

from rental_engine.config import get_settings
from rental_engine.database import get_db_context
from rental_engine.exceptions import EngineError
from rental_engine.redis_client import get_redis
from rental_engine.services.payment_service import PaymentService

settings = get_settings()
logger = logging.getLogger(__name__)


async def retry_pending_refunds() -> int:
    """
    Issue refunds that a host cancellation could not complete.

    Returns:
        Number of reservations refunded in this pass
    """
    refunded = 0
    async with get_db_context() as db:
        redis_client = await get_redis()
        service = PaymentService(db, redis_client)
        for reservation in await service.find_pending_refunds():
            try:
                await service.refund(reservation.reservation_id)
                refunded += 1
            except EngineError as e:
                logger.warning(
                    f"Refund retry for {reservation.reservation_code} failed: {e.message}"
                )
    return refunded


async def refund_sweeper() -> None:
    """
    Background task retrying deferred refunds.

    Cancelled, paid reservations without a refund reference are refunded
    again; gateway idempotency keys make each retry safe.
    """
    logger.info("Starting refund sweeper task")

    while True:
        try:
            refunded = await retry_pending_refunds()
            if refunded > 0:
                logger.info(f"Refund sweeper issued {refunded} refunds")

        except Exception as e:
            logger.error(f"Error in refund sweeper: {e}")

        await asyncio.sleep(settings.REFUND_SWEEP_INTERVAL_SECONDS)


class BackgroundTaskManager:
    """Manager for background tasks."""

    def __init__(self):
        self.tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start all background tasks."""
        self.tasks.append(
            asyncio.create_task(refund_sweeper())
        )
        logger.info("Background tasks started")

    async def stop(self) -> None:
        """Stop all background tasks."""
        for task in self.tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks.clear()
        logger.info("Background tasks stopped")


# Global instance
background_tasks = BackgroundTaskManager()
