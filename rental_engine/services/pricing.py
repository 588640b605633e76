"""
Pricing calculator.

Pure functions converting a rental quantum plus add-ons into a price using a
vehicle's rate card. A rate card missing the weekly or monthly tier falls back
to the daily rate times ``DAYS_PER_WEEK`` or ``DAYS_PER_MONTH``; the same
constants define how many calendar days one unit of each quantum covers.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from rental_engine.exceptions import InvalidRangeError, ValidationError
from rental_engine.models.reservation import InsurancePlan, RentalType
from rental_engine.models.vehicle import Vehicle

DAYS_PER_WEEK = 7
DAYS_PER_MONTH = 30

DAYS_PER_UNIT: dict[RentalType, int] = {
    RentalType.DAILY: 1,
    RentalType.WEEKLY: DAYS_PER_WEEK,
    RentalType.MONTHLY: DAYS_PER_MONTH,
}

MAX_QUANTITY: dict[RentalType, int] = {
    RentalType.DAILY: 365,
    RentalType.WEEKLY: 52,
    RentalType.MONTHLY: 12,
}

INSURANCE_DAILY_RATES: dict[InsurancePlan, Decimal] = {
    InsurancePlan.NONE: Decimal("0"),
    InsurancePlan.BASIC: Decimal("15"),
    InsurancePlan.STANDARD: Decimal("29"),
    InsurancePlan.PREMIUM: Decimal("45"),
}

CENT = Decimal("0.01")


@dataclass(frozen=True)
class RateCard:
    """Per-quantum rates of a vehicle; weekly and monthly tiers are optional."""

    daily: Decimal
    weekly: Decimal | None = None
    monthly: Decimal | None = None

    @classmethod
    def from_vehicle(cls, vehicle: Vehicle) -> "RateCard":
        return cls(
            daily=Decimal(vehicle.daily_rate),
            weekly=Decimal(vehicle.weekly_rate) if vehicle.weekly_rate is not None else None,
            monthly=Decimal(vehicle.monthly_rate) if vehicle.monthly_rate is not None else None,
        )

    def unit_rate(self, rental_type: RentalType) -> Decimal:
        """Rate for one unit of the quantum, applying the daily fallback."""
        if rental_type == RentalType.WEEKLY:
            return self.weekly if self.weekly is not None else self.daily * DAYS_PER_WEEK
        if rental_type == RentalType.MONTHLY:
            return self.monthly if self.monthly is not None else self.daily * DAYS_PER_MONTH
        return self.daily


@dataclass(frozen=True)
class PriceQuote:
    """Itemized price: rental and insurance are kept apart."""

    rental: Decimal
    insurance: Decimal

    @property
    def total(self) -> Decimal:
        return self.rental + self.insurance


def quantize(amount: Decimal) -> Decimal:
    """Round to cents, half up."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert a money amount to integer cents."""
    return int(quantize(amount) * 100)


def validate_quantity(rental_type: RentalType, quantity: int) -> None:
    """Reject non-integer, non-positive or out-of-bounds quantities."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be a positive integer")
    if quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    upper = MAX_QUANTITY[rental_type]
    if quantity > upper:
        raise InvalidRangeError(
            f"Quantity for {rental_type.value} rentals must be between 1 and {upper}",
            {"rental_type": rental_type.value, "max_quantity": upper},
        )


def rental_days(rental_type: RentalType, quantity: int) -> int:
    """Calendar days covered by ``quantity`` units of the quantum."""
    return DAYS_PER_UNIT[rental_type] * quantity


def quantity_for_days(rental_type: RentalType, days: int) -> int:
    """Smallest quantity of the quantum covering ``days`` (ceiling division)."""
    unit = DAYS_PER_UNIT[rental_type]
    return -(-days // unit)


def rental_price(rate_card: RateCard, rental_type: RentalType, quantity: int) -> Decimal:
    """Price of ``quantity`` units of ``rental_type`` on ``rate_card``."""
    validate_quantity(rental_type, quantity)
    return quantize(rate_card.unit_rate(rental_type) * quantity)


def insurance_cost(plan: InsurancePlan, days: int) -> Decimal:
    """Insurance add-on cost for ``days`` days."""
    if days < 0:
        raise ValidationError("Insurance days cannot be negative")
    return quantize(INSURANCE_DAILY_RATES[plan] * days)


def quote(
    rate_card: RateCard,
    rental_type: RentalType,
    quantity: int,
    insurance_plan: InsurancePlan = InsurancePlan.NONE,
    days: int | None = None,
) -> PriceQuote:
    """
    Price a rental with its insurance add-on.

    Args:
        rate_card: Vehicle rate card at the time of the action
        rental_type: Billing quantum
        quantity: Number of quantum units
        insurance_plan: Selected insurance plan
        days: Insured days; defaults to the days the quantum covers

    Returns:
        Itemized price quote
    """
    if days is None:
        days = rental_days(rental_type, quantity)
    return PriceQuote(
        rental=rental_price(rate_card, rental_type, quantity),
        insurance=insurance_cost(insurance_plan, days),
    )
