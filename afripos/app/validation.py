from __future__ import annotations

from typing import Annotated, Literal, get_args

from pydantic import BeforeValidator


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_snake_str(v):
    if v is None:
        return v
    return str(v).strip().lower().replace("-", "_").replace(" ", "_")


# Tender channels accepted at the till. Mobile-money channels cannot overpay.
PaymentMethod = Annotated[
    Literal["cash", "evc_plus", "zaad", "waffi", "edahab"],
    BeforeValidator(_to_snake_str),
]
DiscountKind = Annotated[Literal["percentage", "amount"], BeforeValidator(_to_lower_str)]
OrderStatus = Annotated[Literal["completed", "pending"], BeforeValidator(_to_lower_str)]
NumpadMode = Annotated[Literal["quantity", "unit_price", "discount_percent"], BeforeValidator(_to_snake_str)]
ReceiptMode = Annotated[Literal["order", "no_order"], BeforeValidator(_to_snake_str)]

CASH = "cash"
PAYMENT_METHODS = get_args(get_args(PaymentMethod)[0])
DISCOUNT_KINDS = get_args(get_args(DiscountKind)[0])
NUMPAD_MODES = get_args(get_args(NumpadMode)[0])
RECEIPT_MODES = get_args(get_args(ReceiptMode)[0])

PAYMENT_METHOD_LABELS = {
    "cash": "Cash",
    "evc_plus": "EVC Plus",
    "zaad": "ZAAD",
    "waffi": "WAFFI",
    "edahab": "E-DAHAB",
}


def normalize_payment_method(v) -> str | None:
    m = _to_snake_str(v)
    return m if m in PAYMENT_METHODS else None


def normalize_numpad_mode(v) -> str | None:
    m = _to_snake_str(v)
    # Short aliases used by the pad buttons.
    m = {"qty": "quantity", "price": "unit_price", "disc": "discount_percent"}.get(m, m)
    return m if m in NUMPAD_MODES else None


def normalize_receipt_mode(v) -> str | None:
    m = _to_snake_str(v)
    return m if m in RECEIPT_MODES else None
