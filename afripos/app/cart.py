from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .jsonlog import json_log
from .models import Customer, Product
from .money import HUNDRED, MAX_QUANTITY, ZERO, clamp, floor_int, parse_bounded, q2
from .validation import DiscountKind, normalize_numpad_mode


class CartLine(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    product: Product
    # Captured at add time; the pad can override it without touching the product.
    unit_price: Decimal
    quantity: int = Field(default=1, ge=1)
    discount: Decimal = Decimal("0")
    discount_kind: DiscountKind = "percentage"

    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    def discount_value(self) -> Decimal:
        sub = self.subtotal()
        d = max(self.discount, ZERO)
        if self.discount_kind == "percentage":
            return sub * min(d, HUNDRED) / HUNDRED
        return d

    def total(self) -> Decimal:
        # Over-discounting floors at zero instead of producing a negative line.
        return q2(max(ZERO, self.subtotal() - self.discount_value()))


@dataclass
class OrderDraft:
    id: str
    name: str
    lines: list[CartLine] = field(default_factory=list)
    customer: Optional[Customer] = None
    selected_line: Optional[int] = None

    @classmethod
    def new(cls, name: str) -> "OrderDraft":
        return cls(id=str(uuid.uuid4()), name=name)

    def line(self, index) -> Optional[CartLine]:
        if not isinstance(index, int) or isinstance(index, bool):
            return None
        if index < 0 or index >= len(self.lines):
            return None
        return self.lines[index]

    def item_count(self) -> int:
        return sum(ln.quantity for ln in self.lines)


def compute_order_total(draft: OrderDraft) -> Decimal:
    """Canonical order total: the sum of rounded line totals."""
    return sum((ln.total() for ln in draft.lines), Decimal("0.00"))


class Register:
    """
    The set of open order drafts ("tabs") on this terminal.

    There is always at least one draft. Line operations apply to the active
    draft; commit-side cleanup addresses drafts by id so that switching tabs
    during a checkout is safe.
    """

    def __init__(self, on_product_added: Optional[Callable[[Product], None]] = None):
        self._tab_seq = 1
        first = OrderDraft.new("Order 1")
        self.drafts: list[OrderDraft] = [first]
        self.active_id = first.id
        self._on_product_added = on_product_added

    @property
    def active(self) -> OrderDraft:
        d = self.get(self.active_id)
        if d is None:
            # active_id always tracks a live draft; recover if it ever does not.
            d = self.drafts[0]
            self.active_id = d.id
        return d

    def get(self, draft_id: str) -> Optional[OrderDraft]:
        for d in self.drafts:
            if d.id == draft_id:
                return d
        return None

    # Tabs

    def new_tab(self, name: Optional[str] = None) -> OrderDraft:
        self._tab_seq += 1
        draft = OrderDraft.new((name or "").strip() or f"Order {self._tab_seq}")
        self.drafts.append(draft)
        self.active_id = draft.id
        return draft

    def close_tab(self, draft_id: str) -> bool:
        if len(self.drafts) <= 1:
            return False
        draft = self.get(draft_id)
        if draft is None:
            return False
        idx = self.drafts.index(draft)
        self.drafts.remove(draft)
        if self.active_id == draft_id:
            self.active_id = self.drafts[min(idx, len(self.drafts) - 1)].id
        return True

    def select_tab(self, draft_id: str) -> bool:
        if self.get(draft_id) is None:
            return False
        self.active_id = draft_id
        return True

    # Lines

    def add_product(self, product: Product) -> CartLine:
        draft = self.active
        line = next((ln for ln in draft.lines if ln.product.id == product.id), None)
        if line is not None:
            line.quantity += 1
        else:
            line = CartLine(product=product, unit_price=product.price)
            draft.lines.append(line)
        self._emit_product_added(product)
        return line

    def _emit_product_added(self, product: Product) -> None:
        if self._on_product_added is None:
            return
        try:
            self._on_product_added(product)
        except Exception as ex:
            json_log("debug", "cart.analytics.error", product_id=product.id, error=str(ex))

    def update_quantity(self, index: int, quantity) -> bool:
        draft = self.active
        line = draft.line(index)
        if line is None:
            return False
        q = parse_bounded(quantity, Decimal(MAX_QUANTITY))
        if q is None:
            return False
        qty = floor_int(q)
        if qty <= 0:
            return self.remove_line(index) is not None
        line.quantity = qty
        return True

    def remove_line(self, index: int) -> Optional[CartLine]:
        draft = self.active
        line = draft.line(index)
        if line is None:
            return None
        del draft.lines[index]
        sel = draft.selected_line
        if sel is not None:
            if sel == index:
                draft.selected_line = None
            elif sel > index:
                draft.selected_line = sel - 1
        return line

    def update_discount(self, index: int, value, kind: str) -> bool:
        line = self.active.line(index)
        if line is None:
            return False
        d = parse_bounded(value)
        if d is None:
            return False
        # Assign the kind first: an invalid tag raises before anything changes.
        line.discount_kind = kind
        line.discount = d
        return True

    def select_line(self, index: Optional[int]) -> bool:
        draft = self.active
        if index is None:
            draft.selected_line = None
            return True
        if draft.line(index) is None:
            return False
        draft.selected_line = index
        return True

    def apply_numeric_entry(self, mode: str, raw_value) -> bool:
        draft = self.active
        index = draft.selected_line
        line = draft.line(index)
        m = normalize_numpad_mode(mode)
        if line is None or m is None:
            return False
        v = parse_bounded(raw_value)
        if v is None:
            return False
        if m == "quantity":
            qty = max(0, floor_int(v))
            if qty > MAX_QUANTITY:
                return False
            if qty == 0:
                return self.remove_line(index) is not None
            line.quantity = qty
        elif m == "unit_price":
            if v < 0:
                return False
            line.unit_price = v
        else:
            line.discount_kind = "percentage"
            line.discount = clamp(v, ZERO, HUNDRED)
        return True

    def attach_customer(self, customer: Optional[Customer]) -> None:
        self.active.customer = customer

    def clear_draft(self, draft_id: Optional[str] = None) -> None:
        draft = self.get(draft_id) if draft_id else self.active
        if draft is None:
            return
        draft.lines.clear()
        draft.selected_line = None
        draft.customer = None

    def clear_active(self) -> None:
        self.clear_draft(self.active_id)


class NumpadBuffer:
    """Keystroke buffer behind the on-screen pad (digits, one '.', backspace)."""

    BACKSPACE = "\b"

    def __init__(self):
        self.value = ""

    def press(self, key: str) -> str:
        if key == self.BACKSPACE:
            self.value = self.value[:-1]
        elif key == ".":
            if "." not in self.value:
                self.value = (self.value or "0") + "."
        elif len(key) == 1 and key.isdigit():
            self.value = key if self.value == "0" else self.value + key
        return self.value

    def clear(self) -> None:
        self.value = ""

    def apply(self, register: Register, mode: str) -> bool:
        applied = register.apply_numeric_entry(mode, self.value)
        if applied:
            self.clear()
        return applied
