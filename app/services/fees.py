"""Fee calculation for escrow payments.

Customer pays the job amount plus a service fee; the handyman receives the job
amount minus the platform fee. Every amount is an integer number of cents and
each fee is rounded on its own, so ``total_charged - handyman_payout`` may
differ from ``customer_fee + handyman_fee`` by a cent for odd amounts.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from app.config import get_settings

_CENT = Decimal("1")


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def to_cents(amount_dollars: Decimal | int | float | str) -> int:
    """Convert a dollar amount to integer cents (half-up)."""

    return _round_cents(Decimal(str(amount_dollars)) * 100)


def cents_to_dollars(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class FeeBreakdown:
    job_amount: int
    customer_fee: int
    handyman_fee: int
    total_charged: int
    handyman_payout: int

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = asdict(self)
        data["display"] = {key: cents_to_dollars(value) for key, value in asdict(self).items()}
        return data


def calculate_fees(
    job_amount_dollars: Decimal | int | float | str,
    *,
    customer_fee_rate: Decimal | None = None,
    handyman_fee_rate: Decimal | None = None,
) -> FeeBreakdown:
    """Compute the fee breakdown for a job amount given in dollars.

    Callers validate ``job_amount_dollars > 0`` beforehand.
    """

    settings = get_settings()
    customer_rate = Decimal(str(customer_fee_rate if customer_fee_rate is not None else settings.CUSTOMER_FEE_RATE))
    handyman_rate = Decimal(str(handyman_fee_rate if handyman_fee_rate is not None else settings.HANDYMAN_FEE_RATE))

    job_amount = to_cents(job_amount_dollars)
    customer_fee = _round_cents(Decimal(job_amount) * customer_rate)
    handyman_fee = _round_cents(Decimal(job_amount) * handyman_rate)
    return FeeBreakdown(
        job_amount=job_amount,
        customer_fee=customer_fee,
        handyman_fee=handyman_fee,
        total_charged=job_amount + customer_fee,
        handyman_payout=job_amount - handyman_fee,
    )


__all__ = ["FeeBreakdown", "calculate_fees", "cents_to_dollars", "to_cents"]
