"""Monotonic counter model."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from rental_engine.models.base import Base


class Counter(Base):
    """Named counter row, incremented in place by the identifier allocator."""

    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
