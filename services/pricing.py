"""Money helpers shared by reservation and payment confirmation."""
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

CENT = Decimal("0.01")
UNIT = Decimal("1")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def distribute_amount(total, count: int) -> list:
    """
    Split total across count slots in whole cents. The first
    (total_cents % count) slots carry one extra cent so the parts
    always add back up to round_money(total).
    """
    if count <= 0:
        return []
    total_cents = int(round_money(total) * 100)
    base, remainder = divmod(total_cents, count)
    return [
        (Decimal(base + (1 if i < remainder else 0)) / 100).quantize(CENT)
        for i in range(count)
    ]


def platform_fee_percent() -> Decimal:
    return to_decimal(current_app.config.get("PLATFORM_FEE_PERCENT", 5))


def calculate_fees(total, percent=None):
    """Return (total, platform_fee, net_to_shop); the fee is a whole currency unit."""
    total = round_money(total)
    if percent is None:
        percent = platform_fee_percent()
    fee = (total * to_decimal(percent) / 100).quantize(UNIT, rounding=ROUND_HALF_UP)
    fee = round_money(fee)
    return total, fee, round_money(total - fee)
