"""Reservation models."""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rental_engine.models.base import Base, utcnow


class ReservationStatus(str, enum.Enum):
    """Reservation lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment status, orthogonal to the lifecycle status."""

    UNPAID = "unpaid"
    PAID = "paid"


class RentalType(str, enum.Enum):
    """Billing quantum."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class InsurancePlan(str, enum.Enum):
    """Insurance add-on plans."""

    NONE = "none"
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


# Statuses that hold the vehicle's calendar.
BLOCKING_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.CONFIRMED,
    ReservationStatus.ACTIVE,
)

# Every (status, payment_status) pair a reservation may be in.
ALLOWED_STATES: dict[ReservationStatus, frozenset[PaymentStatus]] = {
    ReservationStatus.PENDING: frozenset({PaymentStatus.UNPAID}),
    ReservationStatus.CONFIRMED: frozenset({PaymentStatus.UNPAID, PaymentStatus.PAID}),
    ReservationStatus.ACTIVE: frozenset({PaymentStatus.PAID}),
    ReservationStatus.COMPLETED: frozenset({PaymentStatus.PAID}),
    ReservationStatus.CANCELLED: frozenset({PaymentStatus.UNPAID, PaymentStatus.PAID}),
}


def is_allowed_state(status: ReservationStatus, payment_status: PaymentStatus) -> bool:
    """Check a (status, payment_status) pair against the allowed table."""
    return payment_status in ALLOWED_STATES.get(status, frozenset())


class Reservation(Base):
    """A booked, priced, time-bounded grant of vehicle use."""

    __tablename__ = "reservations"

    reservation_id: Mapped[str] = mapped_column(String(26), primary_key=True)
    reservation_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    vehicle_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("vehicles.vehicle_id"), nullable=False
    )
    driver_id: Mapped[str] = mapped_column(String(50), nullable=False)
    # Frozen at creation; a later host transfer of the vehicle does not apply.
    host_id: Mapped[str] = mapped_column(String(50), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pickup_time: Mapped[str] = mapped_column(String(5), default="10:00", nullable=False)
    dropoff_time: Mapped[str] = mapped_column(String(5), default="10:00", nullable=False)

    rental_type: Mapped[RentalType] = mapped_column(
        Enum(RentalType), default=RentalType.DAILY, nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    rental_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    insurance_plan: Mapped[InsurancePlan] = mapped_column(
        Enum(InsurancePlan), default=InsurancePlan.NONE, nullable=False
    )
    insurance_cost: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_adjustment: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus), default=ReservationStatus.PENDING, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.UNPAID, nullable=False
    )
    refund_reference: Mapped[str | None] = mapped_column(String(100))

    message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    pickup_inspected_at: Mapped[datetime | None] = mapped_column(DateTime)
    return_inspected_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    extensions: Mapped[list["Extension"]] = relationship(
        "Extension",
        back_populates="reservation",
        order_by="Extension.new_end_date",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_reservation_vehicle_dates", "vehicle_id", "start_date", "end_date"),
        Index("idx_reservation_driver", "driver_id"),
        Index("idx_reservation_host", "host_id"),
        Index("idx_reservation_status", "status", "payment_status"),
    )

    @property
    def days(self) -> int:
        """Number of calendar days held, ``end_date`` exclusive."""
        return (self.end_date - self.start_date).days


class Extension(Base):
    """Immutable record of a paid extension of a reservation's end date."""

    __tablename__ = "reservation_extensions"

    extension_id: Mapped[str] = mapped_column(String(26), primary_key=True)
    reservation_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("reservations.reservation_id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    previous_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    new_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_intent_id: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    reservation: Mapped["Reservation"] = relationship(
        "Reservation", back_populates="extensions"
    )

    __table_args__ = (
        UniqueConstraint("reservation_id", "payment_intent_id", name="uk_extension_payment"),
    )


class StatusChange(Base):
    """Audit row for every transition or money event on a reservation."""

    __tablename__ = "reservation_status_changes"

    change_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reservation_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("reservations.reservation_id"), nullable=False
    )
    from_status: Mapped[ReservationStatus | None] = mapped_column(Enum(ReservationStatus))
    to_status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus), nullable=False
    )
    actor_id: Mapped[str | None] = mapped_column(String(50))
    note: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_status_change_reservation", "reservation_id"),)
