from decimal import Decimal

import pytest

from app.services.fees import calculate_fees, cents_to_dollars, to_cents


def test_hundred_dollar_job_breakdown():
    fees = calculate_fees(Decimal("100.00"))
    assert fees.job_amount == 10000
    assert fees.customer_fee == 800
    assert fees.handyman_fee == 500
    assert fees.total_charged == 10800
    assert fees.handyman_payout == 9500
    display = fees.as_dict()["display"]
    assert display["total_charged"] == Decimal("108.00")
    assert display["handyman_payout"] == Decimal("95.00")


@pytest.mark.parametrize("amount", ["0.01", "0.07", "12.34", "19.99", "54.13", "333.33", "1234.56"])
def test_totals_hold_with_independent_rounding(amount):
    fees = calculate_fees(amount)
    assert fees.total_charged == fees.job_amount + fees.customer_fee
    assert fees.handyman_payout == fees.job_amount - fees.handyman_fee


def test_fees_round_half_up_independently():
    # 0.08 * 1250 = 100 exactly, 0.05 * 1250 = 62.5 -> 63
    fees = calculate_fees("12.50")
    assert fees.customer_fee == 100
    assert fees.handyman_fee == 63
    assert fees.handyman_payout == 1187


def test_custom_rates_override_settings():
    fees = calculate_fees("10.00", customer_fee_rate=Decimal("0.10"), handyman_fee_rate=Decimal("0"))
    assert fees.customer_fee == 100
    assert fees.handyman_fee == 0
    assert fees.handyman_payout == 1000


def test_cent_conversions():
    assert to_cents("20") == 2000
    assert to_cents(Decimal("0.005")) == 1
    assert cents_to_dollars(2000) == Decimal("20.00")
    assert cents_to_dollars(None) is None
