# Overview: Line pricing shared by the stock pre-check and persistence.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError


MAX_DISCOUNT_PERCENT = Decimal("100")


@dataclass(frozen=True)
class LinePrice:
    unit_price_cents: int
    quantity: int
    discount_percent: Decimal
    gross_cents: int
    discount_cents: int
    line_total_cents: int


def parse_discount_percent(value) -> Decimal:
    """
    Normalize a client-supplied discount percentage.

    Accepts int, float, str or Decimal in [0, 100]; None means no discount.
    Booleans and non-finite values are rejected.
    """
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise ValidationError("discount_percent must be a number")
    try:
        pct = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("discount_percent must be a number")
    if not pct.is_finite():
        raise ValidationError("discount_percent must be a number")
    if pct < 0 or pct > MAX_DISCOUNT_PERCENT:
        raise ValidationError("discount_percent must be between 0 and 100")
    return pct


def price_line(unit_price_cents: int, quantity: int, discount_percent: Decimal | int = 0) -> LinePrice:
    """
    Price one line.

    gross = unit_price * quantity
    discount = gross * percent / 100, rounded half-up to the cent
    line_total = gross - discount

    Rounding happens once per line, so a sale total (the sum of line totals)
    never drifts.
    """
    pct = Decimal(str(discount_percent))
    gross = unit_price_cents * quantity
    discount = int(
        (Decimal(gross) * pct / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    )
    return LinePrice(
        unit_price_cents=unit_price_cents,
        quantity=quantity,
        discount_percent=pct,
        gross_cents=gross,
        discount_cents=discount,
        line_total_cents=gross - discount,
    )
