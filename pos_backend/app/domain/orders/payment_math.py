"""
Order payment arithmetic.

Discounts are recomputed against the subtotal, fixed discounts are clamped
to it and totals never go below zero.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from pos_backend.app.core.exceptions import InvalidAmountError

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

PERCENTAGE = "percentage"
FIXED = "fixed"

# Split legs may differ from the amount due by rounding only
SPLIT_TOLERANCE = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedOrder:
    subtotal: Decimal
    discount_amount: Decimal
    discount_percentage: Decimal
    loyalty_discount_amount: Decimal
    delivery_charges: Decimal
    new_total: Decimal


def compute_discount(subtotal: Decimal, discount_type: Optional[str], discount_value) -> tuple:
    """
    Returns (discount_amount, discount_percentage).

    Raises:
        InvalidAmountError: negative value, or a percentage above 100
    """
    value = Decimal(str(discount_value or 0))
    if value < 0:
        raise InvalidAmountError("Discount cannot be negative", details={"discount_value": str(value)})
    if value == 0 or subtotal <= 0:
        return ZERO, ZERO

    if discount_type == PERCENTAGE:
        if value > HUNDRED:
            raise InvalidAmountError("Discount percentage must be between 0 and 100", details={"discount_value": str(value)})
        return money(subtotal * value / HUNDRED), value.quantize(CENT)

    if discount_type == FIXED:
        amount = min(money(value), subtotal)
        return amount, money(amount * HUNDRED / subtotal)

    raise InvalidAmountError(f"Unknown discount type '{discount_type}'", details={"discount_type": discount_type})


def price_order(
    subtotal,
    discount_type: Optional[str] = None,
    discount_value=0,
    loyalty_discount=0,
    delivery_charges=0
) -> PricedOrder:
    """newTotal = subtotal - discount - loyalty discount + delivery charges, floored at 0."""
    subtotal = money(subtotal)
    loyalty = money(loyalty_discount)
    delivery = money(delivery_charges)
    if subtotal < 0 or loyalty < 0 or delivery < 0:
        raise InvalidAmountError(
            "Subtotal, loyalty discount and delivery charges cannot be negative",
            details={"subtotal": str(subtotal), "loyalty_discount": str(loyalty), "delivery_charges": str(delivery)}
        )

    discount_amount, discount_percentage = compute_discount(subtotal, discount_type, discount_value)
    new_total = max(subtotal - discount_amount - loyalty + delivery, ZERO)

    return PricedOrder(
        subtotal=subtotal,
        discount_amount=discount_amount,
        discount_percentage=discount_percentage,
        loyalty_discount_amount=loyalty,
        delivery_charges=delivery,
        new_total=new_total,
    )


def change_due(total: Decimal, cash_received) -> Decimal:
    return max(money(cash_received) - total, ZERO)
