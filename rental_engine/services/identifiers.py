"""Identifier allocation: ULIDs for durable ids, a counter row for reservation codes."""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from ulid import ULID

from rental_engine.config import get_settings
from rental_engine.models.counter import Counter

settings = get_settings()

RESERVATION_COUNTER = "reservation_code"


def new_id() -> str:
    """Generate a durable opaque identifier."""
    return str(ULID())


def format_reservation_code(sequence: int, prefix: str | None = None) -> str:
    """Format a counter value as a human-facing code, e.g. ``RUFS-00001``."""
    return f"{prefix or settings.RESERVATION_CODE_PREFIX}-{sequence:05d}"


async def next_sequence(db: AsyncSession, name: str) -> int:
    """
    Atomically increment the named counter and return the new value.

    Runs inside the caller's transaction: the UPDATE holds the counter row
    until commit, so concurrent creators are serialized. The first allocation
    inserts the row; two first allocations racing each other surface as an
    IntegrityError on flush and the loser's transaction is rolled back.
    """
    result = await db.execute(
        update(Counter).where(Counter.name == name).values(value=Counter.value + 1)
    )
    if result.rowcount == 0:
        db.add(Counter(name=name, value=1))
        await db.flush()
        return 1

    value = await db.execute(select(Counter.value).where(Counter.name == name))
    return int(value.scalar_one())


async def allocate_reservation_code(db: AsyncSession) -> str:
    """Allocate the next reservation code."""
    return format_reservation_code(await next_sequence(db, RESERVATION_COUNTER))
