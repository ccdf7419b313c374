from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .validation import DiscountKind, OrderStatus, PaymentMethod


class Product(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: Decimal = Field(default=Decimal("0"), ge=0)
    category: str = ""
    stock: int = Field(default=0, ge=0)
    sku: Optional[str] = None
    barcode: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "Product":
        # Remote catalog rows use `title`; cached rows use our own field names.
        return cls(
            id=str(row.get("id")),
            name=(row.get("name") or row.get("title") or "").strip(),
            price=row.get("price") if row.get("price") is not None else Decimal("0"),
            category=row.get("category") or "",
            stock=int(row.get("stock") or 0),
            sku=row.get("sku") or None,
            barcode=row.get("barcode") or None,
            image_url=row.get("image_url") or row.get("image") or None,
        )


class Customer(BaseModel):
    id: Optional[str] = None
    name: str
    phone: Optional[str] = None


class Payment(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: PaymentMethod
    amount: Decimal = Field(gt=0)


class LineSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    discount_kind: DiscountKind
    total: Decimal

    @property
    def discount_amount(self) -> Decimal:
        return self.discount if self.discount_kind == "amount" else Decimal("0")

    @property
    def discount_percentage(self) -> Decimal:
        return self.discount if self.discount_kind == "percentage" else Decimal("0")


class CommittedOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_number: str
    cashier: str
    seller_id: Optional[str] = None
    customer: Optional[Customer] = None
    lines: list[LineSnapshot]
    payments: list[Payment]
    subtotal: Decimal
    total: Decimal
    status: OrderStatus = "completed"
    created_at: datetime

    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0"))

    @property
    def change(self) -> Decimal:
        return max(Decimal("0"), self.total_paid - self.total)


class SyncQueueEntry(BaseModel):
    id: Optional[int] = None
    entity_type: str
    entity_id: str
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    synced: bool = False
    created_at: datetime
    attempt_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None


_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class ReceiptSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    business_name: Optional[str] = None
    logo_url: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    footer_note: Optional[str] = None
    show_order_number: bool = True
    accent_color: str = "#111827"
    paper_width_mm: int = Field(default=80, ge=40, le=120)

    @field_validator("show_order_number", mode="before")
    @classmethod
    def _null_means_default(cls, v):
        return True if v is None else v

    @field_validator("accent_color", mode="before")
    @classmethod
    def _hex_only(cls, v):
        # Accent lands inside a style attribute; anything but a hex color is dropped.
        if v is None or not _HEX_COLOR.match(str(v).strip()):
            return "#111827"
        return str(v).strip()

    @field_validator("paper_width_mm", mode="before")
    @classmethod
    def _default_width(cls, v):
        return 80 if v in (None, "", 0) else v

    @classmethod
    def coerce(cls, raw) -> "ReceiptSettings":
        """
        Build settings from an untrusted mapping.

        Fields that fail validation are dropped (their defaults apply) instead of
        failing the whole receipt.
        """
        if isinstance(raw, ReceiptSettings):
            return raw
        data = dict(raw) if isinstance(raw, dict) else {}
        for _ in range(len(data) + 1):
            try:
                return cls.model_validate(data)
            except ValidationError as ex:
                bad = {e["loc"][0] for e in ex.errors() if e.get("loc")}
                if not bad & set(data):
                    break
                for k in bad:
                    data.pop(k, None)
        return cls()

    @classmethod
    def from_profile(cls, profile: Optional[dict]) -> "ReceiptSettings":
        p = profile or {}
        return cls.coerce(
            {
                "business_name": p.get("full_name") or p.get("username") or "Receipt",
                "logo_url": p.get("avatar_url") or None,
                "phone": p.get("contact_number") or None,
            }
        )
