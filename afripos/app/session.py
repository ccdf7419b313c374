from __future__ import annotations

from typing import Callable, Optional, Union

from afripos.workers.offline_sync import SyncReconciler

from .analytics import CartAddRecorder
from .cart import CartLine, NumpadBuffer, Register
from .checkout import CheckoutPipeline, CommitResult
from .connectivity import ConnectivityMonitor
from .errors import CheckoutNotReadyError, RemoteUnavailable
from .jsonlog import json_log
from .models import Product
from .offline_store import OfflineStore
from .payments import PaymentSession

ALL_CATEGORIES = "all"


def derive_categories(products) -> list[str]:
    return sorted({(p.category or "").strip() for p in products or [] if (p.category or "").strip()})


def filter_products(products, category: Optional[str] = None, query: Optional[str] = None) -> list[Product]:
    """Category filter plus case-insensitive search over name, SKU and barcode."""
    cat = (category or "").strip()
    q = (query or "").strip().lower()
    out = []
    for p in products or []:
        if cat and cat != ALL_CATEGORIES and p.category != cat:
            continue
        if q:
            hay = " ".join(x for x in (p.name, p.sku, p.barcode) if x).lower()
            if q not in hay:
                continue
        out.append(p)
    return out


class PosSession:
    """
    One till: catalog, open drafts, the checkout in progress, and sync.

    Reconnecting (an Offline -> Online transition on the monitor) drains the
    offline queue and reloads the catalog.
    """

    def __init__(
        self,
        store: OfflineStore,
        remote=None,
        monitor: Optional[ConnectivityMonitor] = None,
        *,
        seller_id: Optional[str] = None,
        cashier: str = "POS",
        user_id: Optional[str] = None,
        atomic_remote_commit: bool = False,
        printer: Optional[Callable[[str], None]] = None,
        analytics: Optional[Callable[[Product], None]] = None,
    ):
        self.store = store
        self.remote = remote
        self.monitor = monitor or ConnectivityMonitor(online=remote is not None)
        self.seller_id = seller_id
        if analytics is None and remote is not None:
            analytics = CartAddRecorder(remote, user_id=user_id)
        self.analytics = analytics
        self.register = Register(on_product_added=analytics)
        self.numpad = NumpadBuffer()
        self.reconciler = SyncReconciler(store, remote)
        self.pipeline = CheckoutPipeline(
            self.register,
            store,
            remote,
            self.monitor,
            cashier=cashier,
            seller_id=seller_id,
            atomic_remote_commit=atomic_remote_commit,
            printer=printer,
            reload_catalog=self.load_catalog,
        )
        self.products: list[Product] = []
        self.categories: list[str] = []
        self.payment: Optional[PaymentSession] = None
        self._checkout_draft_id: Optional[str] = None
        self.last_sync_count = 0
        self._unsubscribe = self.monitor.on_reconnect(self._on_reconnect)

    # Catalog

    def load_catalog(self) -> list[Product]:
        products = None
        if self.remote is not None and self.seller_id and self.monitor.is_online:
            try:
                products = self.remote.list_active_products_for_seller(self.seller_id)
            except RemoteUnavailable as ex:
                json_log("warning", "catalog.remote.unavailable", error=str(ex))
                self.monitor.set_online(False)
            except Exception as ex:
                json_log("error", "catalog.remote.error", error=str(ex))
            if products is not None:
                try:
                    self.store.cache_products(products)
                    self.store.cache_categories(derive_categories(products))
                except Exception as ex:
                    json_log("warning", "catalog.cache.error", error=str(ex))

        if products is None:
            products = []
            for row in self.store.cached_products():
                try:
                    products.append(Product.from_row(row))
                except Exception as ex:
                    json_log("warning", "catalog.cache.invalid", product_id=str(row.get("id")), error=str(ex))
            json_log("info", "catalog.cached", count=len(products))

        self.products = products
        self.categories = derive_categories(products)
        return products

    def search(self, category: Optional[str] = None, query: Optional[str] = None) -> list[Product]:
        return filter_products(self.products, category, query)

    def select_product(self, product: Union[Product, str]) -> Optional[CartLine]:
        if not isinstance(product, Product):
            product = next((p for p in self.products if p.id == str(product)), None)
            if product is None:
                return None
        return self.register.add_product(product)

    def press_key(self, key: str) -> str:
        return self.numpad.press(key)

    def apply_numpad(self, mode: str) -> bool:
        return self.numpad.apply(self.register, mode)

    # Checkout

    def start_checkout(self) -> Optional[PaymentSession]:
        draft = self.register.active
        self.payment = self.pipeline.start(draft.id)
        self._checkout_draft_id = draft.id if self.payment is not None else None
        return self.payment

    def cancel_checkout(self) -> None:
        # Discards collected tenders only; a dispatched commit is not affected.
        self.payment = None
        self._checkout_draft_id = None

    def confirm_payment(self) -> CommitResult:
        if self.payment is None or self._checkout_draft_id is None:
            raise CheckoutNotReadyError("no checkout in progress")
        result = self.pipeline.commit(self.payment, draft_id=self._checkout_draft_id)
        self.payment = None
        self._checkout_draft_id = None
        return result

    # Sync

    def pending_sync_count(self) -> int:
        return self.store.count_unsynced()

    def sync_now(self) -> int:
        self.last_sync_count = self.reconciler.drain()
        return self.last_sync_count

    def _on_reconnect(self) -> None:
        try:
            n = self.sync_now()
            if n:
                json_log("info", "session.reconnect.synced", synced=n)
        except Exception as ex:
            json_log("error", "session.reconnect.sync.error", error=str(ex))
        try:
            self.load_catalog()
        except Exception as ex:
            json_log("warning", "session.reconnect.catalog.error", error=str(ex))

    def close(self) -> None:
        self._unsubscribe()
        if isinstance(self.analytics, CartAddRecorder):
            self.analytics.shutdown()
        self.store.close()
