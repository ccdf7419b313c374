from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Optional, Protocol

import psycopg
from psycopg.types.json import Jsonb

from .db import pooled_conn
from .errors import RemoteUnavailable
from .jsonlog import json_log
from .models import Product, SyncQueueEntry


class RemoteStore(Protocol):
    """Operations the POS core needs from the remote relational store."""

    def list_active_products_for_seller(self, seller_id: str) -> list[Product]: ...

    def create_order(self, header: dict) -> dict: ...

    def create_order_items(self, items: list[dict]) -> None: ...

    def create_payments(self, payments: list[dict]) -> None: ...

    def create_order_bundle(self, header: dict, items: list[dict], payments: list[dict]) -> dict: ...

    def insert_sync_queue_row(self, entry: SyncQueueEntry) -> None: ...

    def get_receipt_settings(self, seller_id: str) -> Optional[dict]: ...

    def get_profile(self, seller_id: str) -> Optional[dict]: ...

    def upsert_receipt_settings(self, seller_id: str, settings: dict) -> None: ...

    def insert_receipt_snapshot(self, order_id, seller_id: Optional[str], customer_id, payload: dict) -> None: ...

    def record_cart_add(self, product_id: str, user_id: Optional[str]) -> None: ...


def _jsonb(obj) -> Jsonb:
    return Jsonb(obj, dumps=lambda o: json.dumps(o, default=str))


_ORDER_COLUMNS = (
    "order_number",
    "seller_id",
    "customer_id",
    "cashier_name",
    "subtotal",
    "discount_amount",
    "discount_percentage",
    "total",
    "status",
    "created_at",
)
_ITEM_COLUMNS = (
    "order_id",
    "product_id",
    "product_name",
    "quantity",
    "unit_price",
    "discount_amount",
    "discount_percentage",
    "total",
)
_PAYMENT_COLUMNS = ("order_id", "payment_method", "amount")
_SETTINGS_COLUMNS = (
    "business_name",
    "logo_url",
    "address",
    "phone",
    "footer_note",
    "show_order_number",
    "accent_color",
    "paper_width_mm",
)


def _insert_sql(table: str, cols: tuple, suffix: str = "") -> str:
    return f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join(['%s'] * len(cols))}){suffix}"


def _values(row: dict, cols: tuple) -> tuple:
    return tuple(row.get(c) for c in cols)


class PostgresRemoteStore:
    """
    RemoteStore over psycopg 3.

    Every connectivity-class failure (refused, DNS, pool or statement timeout)
    is raised as RemoteUnavailable so callers can fall back to the offline
    queue. Constraint and data errors propagate unchanged.
    """

    def __init__(self, pool):
        self.pool = pool

    @contextmanager
    def _conn(self):
        try:
            with pooled_conn(self.pool) as conn:
                yield conn
        except psycopg.OperationalError as ex:
            raise RemoteUnavailable(str(ex)) from ex

    def list_active_products_for_seller(self, seller_id: str) -> list[Product]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, title, price, category, sku, stock, barcode, image_url
                    FROM products
                    WHERE status = 'active' AND user_id = %s
                    ORDER BY title
                    """,
                    (seller_id,),
                )
                rows = cur.fetchall()
        out = []
        for r in rows:
            try:
                out.append(Product.from_row(r))
            except Exception as ex:
                json_log("warning", "remote.product.invalid", product_id=str(r.get("id")), error=str(ex))
        return out

    def create_order(self, header: dict) -> dict:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    _insert_sql("orders", _ORDER_COLUMNS, " RETURNING id, order_number, created_at"),
                    _values(header, _ORDER_COLUMNS),
                )
                return dict(cur.fetchone())

    def create_order_items(self, items: list[dict]) -> None:
        if not items:
            return
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.executemany(_insert_sql("order_items", _ITEM_COLUMNS), [_values(i, _ITEM_COLUMNS) for i in items])

    def create_payments(self, payments: list[dict]) -> None:
        if not payments:
            return
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.executemany(_insert_sql("payments", _PAYMENT_COLUMNS), [_values(p, _PAYMENT_COLUMNS) for p in payments])

    def create_order_bundle(self, header: dict, items: list[dict], payments: list[dict]) -> dict:
        """
        Write header, items and payments in one transaction.

        Idempotent by order_number: when the header already exists nothing is
        written and the existing id is returned with created=False.
        """
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    _insert_sql("orders", _ORDER_COLUMNS, " ON CONFLICT (order_number) DO NOTHING RETURNING id"),
                    _values(header, _ORDER_COLUMNS),
                )
                row = cur.fetchone()
                if not row:
                    cur.execute("SELECT id FROM orders WHERE order_number = %s", (header.get("order_number"),))
                    existing = cur.fetchone()
                    return {"id": existing["id"] if existing else None, "created": False}
                order_id = row["id"]
                if items:
                    cur.executemany(
                        _insert_sql("order_items", _ITEM_COLUMNS),
                        [_values({**i, "order_id": order_id}, _ITEM_COLUMNS) for i in items],
                    )
                if payments:
                    cur.executemany(
                        _insert_sql("payments", _PAYMENT_COLUMNS),
                        [_values({**p, "order_id": order_id}, _PAYMENT_COLUMNS) for p in payments],
                    )
                return {"id": order_id, "created": True}

    def insert_sync_queue_row(self, entry: SyncQueueEntry) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO sync_queue (entity_type, entity_id, action, data, synced)
                    VALUES (%s, %s, %s, %s, false)
                    """,
                    (entry.entity_type, entry.entity_id, entry.action, _jsonb(entry.payload)),
                )

    def get_receipt_settings(self, seller_id: str) -> Optional[dict]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM receipt_settings WHERE profile_id = %s LIMIT 1", (seller_id,))
                row = cur.fetchone()
        return dict(row) if row else None

    def get_profile(self, seller_id: str) -> Optional[dict]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT full_name, username, avatar_url, contact_number FROM profiles WHERE id = %s",
                    (seller_id,),
                )
                row = cur.fetchone()
        return dict(row) if row else None

    def upsert_receipt_settings(self, seller_id: str, settings: dict) -> None:
        cols = ("profile_id",) + _SETTINGS_COLUMNS
        updates = ", ".join(f"{c}=excluded.{c}" for c in _SETTINGS_COLUMNS)
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    _insert_sql("receipt_settings", cols, f" ON CONFLICT (profile_id) DO UPDATE SET {updates}"),
                    _values({**settings, "profile_id": seller_id}, cols),
                )

    def insert_receipt_snapshot(self, order_id, seller_id: Optional[str], customer_id, payload: dict) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO receipt_snapshots (order_id, seller_id, customer_id, payload)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (order_id, seller_id, customer_id, _jsonb(payload)),
                )

    def record_cart_add(self, product_id: str, user_id: Optional[str]) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO product_cart_adds (product_id, user_id) VALUES (%s, %s)",
                    (product_id, user_id),
                )
