from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP, localcontext
from typing import Optional


ZERO = Decimal("0")
HUNDRED = Decimal("100")
Q2 = Decimal("0.01")
# Tolerance for "fully paid" comparisons; tenders may arrive as binary floats.
MONEY_EPSILON = Decimal("0.000001")
# Largest amount or unit price accepted from input, and largest line quantity.
MAX_MONEY = Decimal("1000000000")
MAX_QUANTITY = 100000


def q2(v: Decimal) -> Decimal:
    # Display/storage precision for monetary values. The wide context keeps
    # quantize from overflowing on products of large prices and quantities.
    with localcontext() as ctx:
        ctx.prec = 60
        return v.quantize(Q2, rounding=ROUND_HALF_UP)


def parse_decimal(v) -> Optional[Decimal]:
    """
    Parse user or wire input into a finite Decimal.

    Returns None for anything unparsable, including NaN and Infinity, so a bad
    keypad entry can never leak into totals.
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, Decimal):
        d = v
    else:
        raw = str(v).strip()
        if not raw:
            return None
        try:
            d = Decimal(raw)
        except (InvalidOperation, ValueError):
            return None
    if not d.is_finite():
        return None
    return d


def parse_bounded(v, limit: Decimal = MAX_MONEY) -> Optional[Decimal]:
    """parse_decimal, also rejecting anything whose magnitude exceeds `limit`."""
    d = parse_decimal(v)
    if d is None or abs(d) > limit:
        return None
    return d


def to_money(v) -> Optional[Decimal]:
    d = parse_bounded(v)
    return q2(d) if d is not None else None


def floor_int(v: Decimal) -> int:
    return int(v.to_integral_value(rounding=ROUND_FLOOR))


def clamp(v: Decimal, lo: Decimal, hi: Decimal) -> Decimal:
    return max(lo, min(hi, v))


def gte_with_tolerance(a: Decimal, b: Decimal) -> bool:
    return a >= b - MONEY_EPSILON


def fmt_money(v) -> str:
    d = parse_decimal(v)
    return f"{q2(d if d is not None else ZERO):.2f}"
