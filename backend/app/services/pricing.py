from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP


# Discounts are rounded half-up to whole currency units.
DISCOUNT_QUANT = Decimal("1")


def quantize_discount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(DISCOUNT_QUANT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class DiscountBreakdown:
    order_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


def compute_discount(order_amount: Decimal, discount_percent: Decimal) -> DiscountBreakdown:
    amount = Decimal(order_amount)
    percent = Decimal(discount_percent)
    if percent <= 0 or amount <= 0:
        discount = Decimal("0")
    else:
        discount = quantize_discount(amount * percent / Decimal("100"))
    # 0.50 at 100% rounds half-up to 1; a discount never exceeds the amount it applies to.
    discount = min(discount, amount)
    return DiscountBreakdown(order_amount=amount, discount_amount=discount, final_amount=amount - discount)
