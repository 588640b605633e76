"""Payment intent ledger model."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rental_engine.models.base import Base, utcnow


class IntentStatus(str, enum.Enum):
    """Last gateway status seen for an intent."""

    REQUIRES_PAYMENT = "requires_payment"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"


INITIAL_PURPOSE = "initial"


def extension_purpose(sequence: int) -> str:
    """Purpose tag for the N-th extension of a reservation."""
    return f"extension#{sequence}"


def extension_sequence(purpose: str) -> int:
    """Sequence number of an extension purpose tag, 0 when it carries none."""
    _, _, suffix = purpose.partition("#")
    return int(suffix) if suffix.isdigit() else 0


class PaymentIntentRecord(Base):
    """
    Local record of a gateway charge intent.

    The idempotency key ``{reservation_id}:{amount_cents}:{purpose}`` is unique
    so a retried create returns the intent already on file.
    """

    __tablename__ = "payment_intents"

    intent_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    reservation_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("reservations.reservation_id"), nullable=False
    )
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    extension_quantity: Mapped[int | None] = mapped_column(Integer)
    new_dropoff_time: Mapped[str | None] = mapped_column(String(5))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    status: Mapped[IntentStatus] = mapped_column(
        Enum(IntentStatus), default=IntentStatus.REQUIRES_PAYMENT, nullable=False
    )
    applied_at: Mapped[datetime | None] = mapped_column(DateTime)
    refund_id: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_intent_reservation", "reservation_id"),)

    @property
    def is_extension(self) -> bool:
        return self.purpose != INITIAL_PURPOSE
