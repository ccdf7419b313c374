from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from .cart import OrderDraft, Register, compute_order_total
from .errors import CheckoutNotReadyError, CommitInFlightError, RemoteUnavailable
from .jsonlog import json_log
from .models import CommittedOrder, LineSnapshot, ReceiptSettings
from .money import gte_with_tolerance
from .payments import PaymentSession
from .receipts import build_receipt_html, printable_document, receipt_order_from


class OrderNumberGenerator:
    """`ORD-<epoch ms>`, strictly increasing within the process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            ms = int(self._clock() * 1000)
            if ms <= self._last:
                ms = self._last + 1
            self._last = ms
        return f"ORD-{ms}"


@dataclass
class CommitResult:
    order: CommittedOrder
    queued: bool
    remote_order_id: Optional[Any] = None
    queue_entry_id: Optional[int] = None
    partial_error: Optional[str] = None
    receipt_html: Optional[str] = None


def build_committed_order(
    draft: OrderDraft,
    payment: PaymentSession,
    *,
    order_number: str,
    cashier: str,
    seller_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> CommittedOrder:
    lines = [
        LineSnapshot(
            product_id=ln.product.id,
            name=ln.product.name,
            quantity=ln.quantity,
            unit_price=ln.unit_price,
            discount=ln.discount,
            discount_kind=ln.discount_kind,
            total=ln.total(),
        )
        for ln in draft.lines
    ]
    total = compute_order_total(draft)
    return CommittedOrder(
        order_number=order_number,
        cashier=cashier,
        seller_id=seller_id,
        customer=draft.customer,
        lines=lines,
        payments=list(payment.payments),
        subtotal=total,
        total=total,
        status="completed",
        created_at=created_at or datetime.utcnow(),
    )


def order_header_row(order: CommittedOrder) -> dict:
    return {
        "order_number": order.order_number,
        "seller_id": order.seller_id,
        "customer_id": order.customer.id if order.customer else None,
        "cashier_name": order.cashier,
        "subtotal": order.subtotal,
        # Header-level discounts do not exist on the till.
        "discount_amount": 0,
        "discount_percentage": 0,
        "total": order.total,
        "status": order.status,
        "created_at": order.created_at,
    }


def order_item_rows(order: CommittedOrder, order_id=None) -> list[dict]:
    rows = []
    for ln in order.lines:
        row = {
            "product_id": ln.product_id,
            "product_name": ln.name,
            "quantity": ln.quantity,
            "unit_price": ln.unit_price,
            "discount_amount": ln.discount_amount,
            "discount_percentage": ln.discount_percentage,
            "total": ln.total,
        }
        if order_id is not None:
            row["order_id"] = order_id
        rows.append(row)
    return rows


def payment_rows(order: CommittedOrder, order_id=None) -> list[dict]:
    rows = []
    for p in order.payments:
        row = {"payment_method": p.method, "amount": p.amount}
        if order_id is not None:
            row["order_id"] = order_id
        rows.append(row)
    return rows


def order_queue_payload(order: CommittedOrder) -> dict:
    return {
        "order": order_header_row(order),
        "items": order_item_rows(order),
        "payments": payment_rows(order),
    }


class CheckoutPipeline:
    """
    Turns a fully paid draft into a committed order.

    Online: header, then items, then payments (or one atomic bundle when
    configured). Offline, or when the header write fails: one sync-queue
    entry. Either way a receipt is rendered and the draft is cleared.
    """

    def __init__(
        self,
        register: Register,
        store,
        remote=None,
        monitor=None,
        *,
        cashier: str = "POS",
        seller_id: Optional[str] = None,
        atomic_remote_commit: bool = False,
        printer: Optional[Callable[[str], None]] = None,
        reload_catalog: Optional[Callable[[], Any]] = None,
        order_numbers: Optional[OrderNumberGenerator] = None,
    ):
        self.register = register
        self.store = store
        self.remote = remote
        self.monitor = monitor
        self.cashier = cashier
        self.seller_id = seller_id
        self.atomic_remote_commit = atomic_remote_commit
        self.printer = printer
        self.reload_catalog = reload_catalog
        self.order_numbers = order_numbers or OrderNumberGenerator()
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def is_committing(self, draft_id: str) -> bool:
        with self._lock:
            return draft_id in self._in_flight

    def start(self, draft_id: Optional[str] = None) -> Optional[PaymentSession]:
        """Open tender collection for a draft; None when the draft is empty or already committing."""
        draft = self.register.get(draft_id) if draft_id else self.register.active
        if draft is None or not draft.lines:
            return None
        if self.is_committing(draft.id):
            return None
        return PaymentSession(compute_order_total(draft))

    def _online(self) -> bool:
        if self.remote is None:
            return False
        return self.monitor.is_online if self.monitor is not None else True

    def commit(self, payment: PaymentSession, draft_id: Optional[str] = None) -> CommitResult:
        draft = self.register.get(draft_id) if draft_id else self.register.active
        if draft is None or not draft.lines:
            raise CheckoutNotReadyError("nothing to commit")
        total = compute_order_total(draft)
        if not payment.can_commit() or not gte_with_tolerance(payment.total_paid, total):
            raise CheckoutNotReadyError("payment does not cover the order total", {"total": str(total)})

        with self._lock:
            if draft.id in self._in_flight:
                raise CommitInFlightError(draft.id)
            self._in_flight.add(draft.id)
        try:
            return self._commit(draft, payment)
        finally:
            with self._lock:
                self._in_flight.discard(draft.id)

    def _commit(self, draft: OrderDraft, payment: PaymentSession) -> CommitResult:
        order = build_committed_order(
            draft,
            payment,
            order_number=self.order_numbers.next(),
            cashier=self.cashier,
            seller_id=self.seller_id,
        )

        result = None
        if self._online():
            result = self._persist_remote(order)
        if result is None:
            order = order.model_copy(update={"status": "pending"})
            entry = self.store.enqueue("order", order.order_number, "create", order_queue_payload(order))
            result = CommitResult(order=order, queued=True, queue_entry_id=entry.id)
            json_log("warning", "checkout.queued", order_number=order.order_number, queue_id=entry.id, total=order.total)

        result.receipt_html = self._render_receipt(result)

        self.register.clear_draft(draft.id)
        payment.mark_committed()
        if self.reload_catalog is not None:
            try:
                self.reload_catalog()
            except Exception as ex:
                json_log("warning", "checkout.reload_catalog.error", error=str(ex))

        json_log(
            "info",
            "checkout.committed",
            order_number=order.order_number,
            queued=result.queued,
            total=order.total,
            partial_error=result.partial_error,
        )
        return result

    def _persist_remote(self, order: CommittedOrder) -> Optional[CommitResult]:
        """Remote write; returns None when the order should go to the offline queue."""
        header = order_header_row(order)
        try:
            if self.atomic_remote_commit:
                res = self.remote.create_order_bundle(header, order_item_rows(order), payment_rows(order))
                return CommitResult(order=order, queued=False, remote_order_id=(res or {}).get("id"))
            row = self.remote.create_order(header)
        except RemoteUnavailable as ex:
            json_log("warning", "checkout.remote.unavailable", order_number=order.order_number, error=str(ex))
            if self.monitor is not None:
                self.monitor.set_online(False)
            return None
        except Exception as ex:
            # A confirmed sale is never lost: queue it and let sync surface the error.
            json_log("error", "checkout.remote.rejected", order_number=order.order_number, error=str(ex))
            return None

        order_id = (row or {}).get("id")
        result = CommitResult(order=order, queued=False, remote_order_id=order_id)
        try:
            self.remote.create_order_items(order_item_rows(order, order_id))
            self.remote.create_payments(payment_rows(order, order_id))
        except Exception as ex:
            # Header exists remotely; reported, not compensated or retried.
            result.partial_error = str(ex) or ex.__class__.__name__
            json_log(
                "error",
                "checkout.remote.partial",
                order_number=order.order_number,
                order_id=order_id,
                error=result.partial_error,
            )
        return result

    def load_branding(self, online: bool) -> ReceiptSettings:
        """
        Receipt settings, best effort: remote settings, then the seller profile,
        then the last cached branding, then defaults. Never raises.
        """
        key = f"branding:{self.seller_id or 'default'}"
        if online and self.remote is not None and self.seller_id:
            try:
                raw = self.remote.get_receipt_settings(self.seller_id)
                if raw:
                    settings = ReceiptSettings.coerce(raw)
                else:
                    settings = ReceiptSettings.from_profile(self.remote.get_profile(self.seller_id))
                    try:
                        self.remote.upsert_receipt_settings(self.seller_id, settings.model_dump())
                    except Exception as ex:
                        json_log("warning", "checkout.branding.upsert.error", error=str(ex))
                try:
                    self.store.set_setting(key, settings.model_dump())
                except Exception as ex:
                    json_log("warning", "checkout.branding.cache.error", error=str(ex))
                return settings
            except Exception as ex:
                json_log("warning", "checkout.branding.error", error=str(ex))
        try:
            return ReceiptSettings.coerce(self.store.get_setting(key))
        except Exception as ex:
            json_log("warning", "checkout.branding.cache.error", error=str(ex))
            return ReceiptSettings()

    def _render_receipt(self, result: CommitResult) -> Optional[str]:
        order = result.order
        settings = self.load_branding(online=not result.queued)
        receipt = receipt_order_from(order)
        try:
            doc = printable_document(build_receipt_html(settings, "order", receipt), settings.paper_width_mm)
        except Exception as ex:
            json_log("error", "checkout.receipt.render.error", order_number=order.order_number, error=str(ex))
            try:
                doc = printable_document(build_receipt_html(ReceiptSettings(), "order", receipt))
            except Exception as ex2:
                json_log("error", "checkout.receipt.render.error", order_number=order.order_number, error=str(ex2))
                return None

        snapshot = {"order": receipt, "settings": settings.model_dump(), "queued": result.queued}
        try:
            self.store.save_receipt("sale", snapshot)
        except Exception as ex:
            json_log("warning", "checkout.receipt.save.error", order_number=order.order_number, error=str(ex))

        if not result.queued and self.remote is not None:
            try:
                self.remote.insert_receipt_snapshot(
                    result.remote_order_id,
                    self.seller_id,
                    order.customer.id if order.customer else None,
                    {**order_queue_payload(order), "settings": settings.model_dump()},
                )
            except Exception as ex:
                json_log("warning", "checkout.receipt.snapshot.error", order_number=order.order_number, error=str(ex))

        if self.printer is not None:
            try:
                self.printer(doc)
            except Exception as ex:
                json_log("warning", "checkout.print.error", order_number=order.order_number, error=str(ex))
        return doc
