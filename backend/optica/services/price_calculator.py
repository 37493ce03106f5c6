# Overview: Pure price arithmetic for a line item with an optional discount.

"""
Price Calculator

Turns (unit_price, quantity, discount) into an itemized PriceResult.

RULES:
- original_total = unit_price * quantity, exact Decimal arithmetic
- discount_amount = round_half_up(original_total * pct / 100, 2 places)
- final_total = original_total - discount_amount, never rounded on its own
- therefore discount_amount + final_total == original_total, exactly

No database access; safe to call from any request concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Any, Optional

from ..validation import ValidationError, coerce_decimal, coerce_int

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _cent_precision(value: Decimal) -> int:
    # Significant digits needed to hold value at cent resolution
    if not value.is_finite():
        return 0
    return max(value.adjusted() + 3, len(value.as_tuple().digits))


def _product_precision(left: Decimal, right: Decimal | int) -> int:
    # Enough digits for left * right, and for subtracting a cent amount from it
    return _cent_precision(left) + _cent_precision(Decimal(right)) + 2


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half away from zero. Never loses integer digits."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _cent_precision(value))
        return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    """
    Serialize for JSON. At least two decimals; extra precision is kept
    so a serialized total never disagrees with the arithmetic behind it.
    """
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _cent_precision(value))
        if value == value.quantize(CENT):
            return str(value.quantize(CENT))
    return str(value)


@dataclass(frozen=True)
class PriceResult:
    unit_price: Decimal
    quantity: int
    original_total: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    final_total: Decimal
    discount_applied: bool
    discount_id: Optional[int] = None

    @property
    def savings(self) -> Decimal:
        return self.discount_amount

    def to_dict(self) -> dict:
        return {
            "unit_price": format_money(self.unit_price),
            "quantity": self.quantity,
            "original_total": format_money(self.original_total),
            "discount_percentage": format_money(self.discount_percentage),
            "discount_amount": format_money(self.discount_amount),
            "final_total": format_money(self.final_total),
            "discount_applied": self.discount_applied,
            "discount_id": self.discount_id,
        }


def calculate(unit_price: Any, quantity: Any, discount: Any = None) -> PriceResult:
    """
    Apply a resolved discount (or none) to a unit price and quantity.

    Args:
        unit_price: Decimal, int or numeric string; must be >= 0
        quantity: integer >= 1
        discount: None, or any object exposing discount_percentage (and
            optionally id), e.g. an ActiveDiscount snapshot

    Raises:
        ValidationError: negative price, quantity below 1 or non-integer,
            discount percentage outside (0, 100]
    """
    price = coerce_decimal(unit_price, "unit_price")
    if price < ZERO:
        raise ValidationError("unit_price must be >= 0", "unit_price")

    qty = coerce_int(quantity, "quantity")
    if qty < 1:
        raise ValidationError("quantity must be at least 1", "quantity")

    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _product_precision(price, qty))
        original_total = price * qty

    if discount is None:
        return PriceResult(
            unit_price=price,
            quantity=qty,
            original_total=original_total,
            discount_percentage=ZERO,
            discount_amount=round_money(ZERO),
            final_total=original_total,
            discount_applied=False,
        )

    pct = coerce_decimal(discount.discount_percentage, "discount_percentage")
    if pct <= ZERO or pct > HUNDRED:
        raise ValidationError("discount_percentage must be in (0, 100]", "discount_percentage")

    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _product_precision(original_total, pct))
        discount_amount = round_money(original_total * pct / HUNDRED)
        final_total = original_total - discount_amount

    return PriceResult(
        unit_price=price,
        quantity=qty,
        original_total=original_total,
        discount_percentage=pct,
        discount_amount=discount_amount,
        final_total=final_total,
        discount_applied=True,
        discount_id=getattr(discount, "id", None),
    )
