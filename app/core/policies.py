"""Pricing and refund policies.

Pure functions over integer cents. Both policies are applied in exactly one
place each, every workflow that needs a price split or a refund quote goes
through here.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from app.config import settings


def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole cent, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class FeeBreakdown:
    """Split of an appointment price between platform and doctor."""

    total: int
    platform_fee: int
    doctor_payout: int


def calculate_fees(total_cents: int, fee_percent: int | None = None) -> FeeBreakdown:
    """Split a total into platform fee and doctor payout."""
    percent = settings.platform_fee_percent if fee_percent is None else fee_percent
    platform_fee = round_half_up(Decimal(total_cents) * Decimal(percent) / Decimal(100))
    return FeeBreakdown(
        total=total_cents,
        platform_fee=platform_fee,
        doctor_payout=total_cents - platform_fee,
    )


def calculate_price(
    hourly_rate_cents: int,
    duration_minutes: int,
    fee_percent: int | None = None,
) -> FeeBreakdown:
    """
    Price a consultation from the doctor's hourly rate.

    Args:
        hourly_rate_cents: Doctor's hourly rate in cents
        duration_minutes: Consultation length
        fee_percent: Platform fee percentage, defaults to configured policy

    Returns:
        Fee breakdown where total == platform_fee + doctor_payout
    """
    price_per_minute = Decimal(hourly_rate_cents) / Decimal(60)
    total = round_half_up(price_per_minute * Decimal(duration_minutes))
    return calculate_fees(total, fee_percent)


@dataclass(frozen=True)
class RefundQuote:
    """Refund owed for a cancellation or reschedule."""

    amount: int
    percentage: int
    hours_until_appointment: float


@dataclass(frozen=True)
class RefundPolicy:
    """
    Step function from hours-until-appointment to refund percentage.

    Tiers are (minimum_hours, percentage) pairs in descending order of hours;
    the first tier whose threshold is met wins.
    """

    tiers: tuple[tuple[float, int], ...]
    default_percentage: int = 0

    def percentage_for(self, hours_until_appointment: float) -> int:
        """Return refund percentage for the given lead time."""
        for minimum_hours, percentage in self.tiers:
            if hours_until_appointment >= minimum_hours:
                return percentage
        return self.default_percentage

    def quote(self, total_cents: int, appointment_at: datetime, now: datetime) -> RefundQuote:
        """Quote the refund for an appointment cancelled at ``now``."""
        hours = (appointment_at - now).total_seconds() / 3600
        percentage = self.percentage_for(hours)
        amount = round_half_up(Decimal(total_cents) * Decimal(percentage) / Decimal(100))
        return RefundQuote(amount=amount, percentage=percentage, hours_until_appointment=hours)


# 100% at 24h or more, 50% from 4h up to 24h, nothing under 4h
REFUND_POLICY = RefundPolicy(tiers=((24, 100), (4, 50)), default_percentage=0)
