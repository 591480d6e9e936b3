from decimal import Decimal
from typing import List

from billing import compute_total, to_decimal
from models import Bill, Order, StoreSettings

RECEIPT_WIDTH = 32


def _money(value, currency: str) -> str:
    return f"{currency} {to_decimal(value).quantize(Decimal('0.01'))}"


def _pair(left: str, right: str, width: int) -> str:
    room = width - len(right) - 1
    if room < 1:
        return (left + " " + right)[:width]
    return left[:room].ljust(room) + " " + right


def _center(text: str, width: int) -> str:
    return text[:width].center(width).rstrip()


def render_receipt(bill: Bill, order: Order, settings: StoreSettings, width: int = RECEIPT_WIDTH) -> str:
    """Plain-text receipt body for a thermal printer, no line wider than width."""
    currency = settings.currency or ""
    sep = "-" * width
    lines: List[str] = [_center(settings.store_name or "", width)]
    for extra in (settings.address, settings.phone):
        if extra:
            lines.append(_center(extra, width))
    lines.append(sep)
    lines.append(f"Order: {order.id[:8]}"[:width])
    lines.append(f"Customer: {order.customer_name}"[:width])
    lines.append(f"Date: {bill.created_at:%Y-%m-%d %H:%M}"[:width])
    lines.append(sep)

    for line in order.lines:
        lines.append(line.name[:width])
        extension = to_decimal(line.price) * line.quantity
        lines.append(_pair(f"  {line.quantity} x {to_decimal(line.price):.2f}", f"{extension:.2f}", width))

    subtotal = compute_total(order.lines)
    total = to_decimal(bill.total_amount) + to_decimal(bill.taxes)
    lines.append(sep)
    if to_decimal(bill.total_amount) != subtotal:
        lines.append(_pair("Items", _money(subtotal, currency), width))
    lines.append(_pair("Subtotal", _money(bill.total_amount, currency), width))
    lines.append(_pair("Tax", _money(bill.taxes, currency), width))
    lines.append(_pair("TOTAL", _money(total, currency), width))
    lines.append(_pair("Paid by", bill.payment_method, width))
    if order.custom_message:
        lines.append(sep)
        lines.append(order.custom_message[:width])
    if settings.footer:
        lines.append(sep)
        lines.append(_center(settings.footer, width))
    return "\n".join(lines) + "\n"
