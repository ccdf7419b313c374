import os
import sys


# Allow running pytest from either the repo root or from within `afripos/`.
# Tests import `afripos.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from decimal import Decimal

import pytest

from afripos.app.models import Product
from afripos.app.offline_store import OfflineStore


class FakeRemote:
    """In-memory RemoteStore. `fail[op] = exc` makes that operation raise."""

    def __init__(self, products=None, receipt_settings=None, profile=None):
        self.products = list(products or [])
        self.receipt_settings = receipt_settings
        self.profile = profile
        self.orders = []
        self.items = []
        self.payments = []
        self.sync_rows = []
        self.snapshots = []
        self.upserts = []
        self.cart_adds = []
        self.calls = []
        self.fail = {}
        self.reject_order_numbers = set()
        self.before_create_order = None

    def _call(self, op):
        self.calls.append(op)
        ex = self.fail.get(op)
        if ex is not None:
            raise ex

    def _insert_order(self, header):
        row = {**header, "id": f"order-{len(self.orders) + 1}"}
        self.orders.append(row)
        return row

    def list_active_products_for_seller(self, seller_id):
        self._call("list_active_products_for_seller")
        return list(self.products)

    def create_order(self, header):
        hook, self.before_create_order = self.before_create_order, None
        if hook is not None:
            hook()
        self._call("create_order")
        row = self._insert_order(header)
        return {"id": row["id"], "order_number": row["order_number"], "created_at": row["created_at"]}

    def create_order_items(self, items):
        self._call("create_order_items")
        self.items.extend(items)

    def create_payments(self, payments):
        self._call("create_payments")
        self.payments.extend(payments)

    def create_order_bundle(self, header, items, payments):
        self._call("create_order_bundle")
        if header.get("order_number") in self.reject_order_numbers:
            raise ValueError(f"rejected {header.get('order_number')}")
        existing = next((o for o in self.orders if o["order_number"] == header.get("order_number")), None)
        if existing is not None:
            return {"id": existing["id"], "created": False}
        row = self._insert_order(header)
        self.items.extend({**i, "order_id": row["id"]} for i in items)
        self.payments.extend({**p, "order_id": row["id"]} for p in payments)
        return {"id": row["id"], "created": True}

    def insert_sync_queue_row(self, entry):
        self._call("insert_sync_queue_row")
        self.sync_rows.append(entry)

    def get_receipt_settings(self, seller_id):
        self._call("get_receipt_settings")
        return self.receipt_settings

    def get_profile(self, seller_id):
        self._call("get_profile")
        return self.profile

    def upsert_receipt_settings(self, seller_id, settings):
        self._call("upsert_receipt_settings")
        self.upserts.append((seller_id, dict(settings)))
        self.receipt_settings = dict(settings)

    def insert_receipt_snapshot(self, order_id, seller_id, customer_id, payload):
        self._call("insert_receipt_snapshot")
        self.snapshots.append({"order_id": order_id, "seller_id": seller_id, "customer_id": customer_id, "payload": payload})

    def record_cart_add(self, product_id, user_id):
        self._call("record_cart_add")
        self.cart_adds.append((product_id, user_id))


@pytest.fixture
def store():
    s = OfflineStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def widget():
    return Product(id="p-widget", name="Widget", price=Decimal("10.00"), category="tools", stock=12, sku="W-1")


@pytest.fixture
def gadget():
    return Product(id="p-gadget", name="Gadget", price=Decimal("4.50"), category="electronics", stock=3, barcode="600123")
