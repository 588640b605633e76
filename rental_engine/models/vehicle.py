"""Vehicle model."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from rental_engine.models.base import Base, utcnow


class Vehicle(Base):
    """Vehicle catalog entry: owner, rate card and availability flag."""

    __tablename__ = "vehicles"

    vehicle_id: Mapped[str] = mapped_column(String(26), primary_key=True)
    host_id: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    weekly_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    monthly_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (Index("idx_vehicle_host", "host_id"),)
