from __future__ import annotations

import html
from datetime import datetime
from typing import Optional, Union

from .models import CommittedOrder, ReceiptSettings
from .money import fmt_money
from .validation import PAYMENT_METHOD_LABELS, normalize_receipt_mode


def receipt_order_from(order: CommittedOrder) -> dict:
    """Flatten a committed order into the receipt's order shape."""
    return {
        "order_number": order.order_number,
        "created_at": order.created_at.isoformat(),
        "cashier_name": order.cashier,
        "customer_name": order.customer.name if order.customer else None,
        "items": [
            {"name": ln.name, "qty": ln.quantity, "unit": str(ln.unit_price), "total": str(ln.total)}
            for ln in order.lines
        ],
        "payments": [{"method": p.method, "amount": str(p.amount)} for p in order.payments],
        "change": str(order.change),
        "total": str(order.total),
        "status": order.status,
    }


def _fmt_date(raw) -> str:
    if isinstance(raw, datetime):
        return raw.strftime("%Y-%m-%d %H:%M")
    s = str(raw or "").strip()
    if not s:
        return datetime.utcnow().strftime("%Y-%m-%d %H:%M")
    try:
        return datetime.fromisoformat(s).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return s


def build_receipt_html(
    settings: Union[ReceiptSettings, dict, None],
    mode: str,
    order: Union[CommittedOrder, dict, None] = None,
    custom: Optional[dict] = None,
) -> str:
    """
    Render a receipt as an HTML fragment.

    mode="order" itemizes an order; mode="no_order" prints an ad hoc receipt
    from custom={"title", "lines", "total"}. Every free-text value is escaped,
    and absent optional settings (logo, address, phone, footer) are omitted.
    """
    m = normalize_receipt_mode(mode)
    if m is None:
        raise ValueError(f"unknown receipt mode: {mode}")
    mode = m
    s = ReceiptSettings.coerce(settings)
    if isinstance(order, CommittedOrder):
        order = receipt_order_from(order)
    o = order or {}
    c = custom or {}

    def e(x):
        return html.escape(str(x if x is not None else ""), quote=True)

    width = s.paper_width_mm
    head = []
    if s.logo_url:
        head.append(f'<img src="{e(s.logo_url)}" alt="logo" style="max-height:60px;margin-bottom:6px;"/>')
    head.append(f'<div style="font-weight:700;color:{s.accent_color}">{e(s.business_name or "Receipt")}</div>')
    if s.address:
        head.append(f'<div style="font-size:12px;color:#6b7280">{e(s.address)}</div>')
    if s.phone:
        head.append(f'<div style="font-size:12px;color:#6b7280">{e(s.phone)}</div>')

    meta = [f"<div><strong>Date:</strong> {e(_fmt_date(o.get('created_at')))}</div>"]
    if mode == "order" and s.show_order_number and o.get("order_number"):
        meta.append(f"<div><strong>Order #:</strong> {e(o.get('order_number'))}</div>")
    if o.get("cashier_name"):
        meta.append(f"<div><strong>Cashier:</strong> {e(o.get('cashier_name'))}</div>")
    if o.get("customer_name"):
        meta.append(f"<div><strong>Customer:</strong> {e(o.get('customer_name'))}</div>")
    if mode == "no_order" and c.get("title"):
        meta.append(f"<div><strong>Title:</strong> {e(c.get('title'))}</div>")

    items = o.get("items") or []
    item_rows = "".join(
        f"<tr><td>{e(i.get('name'))}</td>"
        f'<td style="text-align:right">{e(i.get("qty"))} x {e(fmt_money(i.get("unit")))}</td>'
        f'<td style="text-align:right">{e(fmt_money(i.get("total")))}</td></tr>'
        for i in items
    )
    items_table = (
        f'<table style="width:100%;font-size:12px;margin-bottom:8px"><tbody>{item_rows}</tbody></table>' if items else ""
    )
    raw_lines = c.get("lines") or []
    if isinstance(raw_lines, str):
        raw_lines = [raw_lines]
    custom_lines = "".join(f"<div>{e(ln)}</div>" for ln in raw_lines)

    total = o.get("total") if o.get("total") is not None else c.get("total")
    tender_rows = []
    for p in o.get("payments") or []:
        label = PAYMENT_METHOD_LABELS.get(p.get("method"), p.get("method"))
        tender_rows.append(
            f'<div style="display:flex;justify-content:space-between;font-size:12px">'
            f"<span>{e(label)}</span><span>{e(fmt_money(p.get('amount')))}</span></div>"
        )
    if tender_rows and o.get("change") is not None and fmt_money(o.get("change")) != "0.00":
        tender_rows.append(
            f'<div style="display:flex;justify-content:space-between;font-size:12px">'
            f"<span>Change</span><span>{e(fmt_money(o.get('change')))}</span></div>"
        )

    footer = (
        f'<div style="text-align:center;margin-top:10px;font-size:11px;color:#6b7280">{e(s.footer_note)}</div>'
        if s.footer_note
        else ""
    )

    return f"""
  <div style="width:{width}mm;max-width:{width}mm;margin:0 auto;padding:12px;line-height:1.2">
    <div style="text-align:center;border-bottom:1px dashed #e5e7eb;padding-bottom:8px;margin-bottom:8px">
      {''.join(head)}
    </div>
    <div style="font-size:12px;color:#374151;margin-bottom:8px">
      {''.join(meta)}
    </div>
    {items_table}
    {custom_lines}
    <div style="border-top:1px dashed #e5e7eb;padding-top:8px;margin-top:8px;font-weight:700;display:flex;justify-content:space-between">
      <span>Total</span>
      <span>{e(fmt_money(total))}</span>
    </div>
    {''.join(tender_rows)}
    {footer}
  </div>"""


def printable_document(body: str, paper_width_mm: int = 80) -> str:
    """Wrap a receipt fragment into a standalone page sized for a thermal printer."""
    try:
        width = int(paper_width_mm or 80)
    except (TypeError, ValueError):
        width = 80
    return f"""<!doctype html>
<html>
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Receipt</title>
    <style>
      @page {{ size: {width}mm auto; margin: 0; }}
      html, body {{ margin: 0; padding: 0; }}
      @media print {{ .no-print {{ display: none !important; }} }}
      /* Avoid external font fetches so receipt printing stays fast offline. */
      body {{ font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Arial, sans-serif; }}
    </style>
  </head>
  <body>{body}<div class="no-print" style="padding:12px;text-align:center"><button onclick="window.print();">Print</button></div></body>
</html>"""


def empty_receipt_document() -> str:
    return printable_document("<p>No receipt yet.</p>")
