from __future__ import annotations

from decimal import Decimal
from typing import Optional

from .models import Payment
from .money import MONEY_EPSILON, ZERO, gte_with_tolerance, q2, to_money
from .validation import CASH, normalize_payment_method

COLLECTING = "collecting"
SATISFIED = "satisfied"
COMMITTED = "committed"


class PaymentSession:
    """
    Tender collection for one checkout attempt.

    States: collecting -> satisfied (paid >= total) -> committed (terminal).
    Removing a tender can move a satisfied session back to collecting.
    Rejected tenders are silent no-ops: callers get False and nothing changes.
    """

    def __init__(self, order_total: Decimal):
        self.order_total = q2(order_total if order_total is not None else ZERO)
        self.payments: list[Payment] = []
        self._committed = False

    @property
    def state(self) -> str:
        if self._committed:
            return COMMITTED
        return SATISFIED if self.can_commit() else COLLECTING

    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0.00"))

    @property
    def remaining(self) -> Decimal:
        rem = self.order_total - self.total_paid
        if rem <= MONEY_EPSILON:
            return Decimal("0.00")
        return rem

    @property
    def change(self) -> Decimal:
        return max(Decimal("0.00"), self.total_paid - self.order_total)

    def add_payment(self, method: str, amount) -> bool:
        if self._committed:
            return False
        m = normalize_payment_method(method)
        amt = to_money(amount)
        if m is None or amt is None or amt <= 0:
            return False
        # Only cash can exceed the balance; the excess becomes change.
        if m != CASH and amt > self.remaining + MONEY_EPSILON:
            return False
        self.payments.append(Payment(method=m, amount=amt))
        return True

    def pay_full(self, method: str) -> bool:
        if self._committed:
            return False
        m = normalize_payment_method(method)
        if m is None or self.order_total <= 0:
            return False
        self.payments = [Payment(method=m, amount=self.order_total)]
        return True

    def remove_payment(self, index: int) -> Optional[Payment]:
        if self._committed:
            return None
        if not isinstance(index, int) or index < 0 or index >= len(self.payments):
            return None
        return self.payments.pop(index)

    def can_commit(self) -> bool:
        return gte_with_tolerance(self.total_paid, self.order_total)

    def mark_committed(self) -> None:
        self._committed = True

    def summary(self) -> dict:
        return {
            "state": self.state,
            "total": f"{q2(self.order_total):.2f}",
            "paid": f"{q2(self.total_paid):.2f}",
            "remaining": f"{q2(self.remaining):.2f}",
            "change": f"{q2(self.change):.2f}",
        }
