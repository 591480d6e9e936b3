from dataclasses import dataclass
from decimal import Decimal

import pytest

from billing import BillingGenerator, compute_taxes, compute_total
from errors import DuplicateBillError, NotFoundError, ValidationError
from orders import OrderEngine


@dataclass
class Line:
    quantity: int
    price: Decimal


@pytest.mark.parametrize(
    "lines, expected",
    [
        ([], Decimal("0")),
        ([Line(3, Decimal("100"))], Decimal("300")),
        ([Line(3, Decimal("0.10")), Line(1, Decimal("0.20"))], Decimal("0.50")),
        ([Line(7, Decimal("19.99")), Line(2, Decimal("4.05"))], Decimal("148.03")),
    ],
)
def test_compute_total_is_exact(lines, expected):
    assert compute_total(lines) == expected


@pytest.mark.parametrize(
    "total, rate, expected",
    [
        ("300", "0.10", Decimal("30.00")),
        ("148.03", "0.10", Decimal("14.80")),
        ("0.50", "0.07", Decimal("0.04")),
        ("19.99", "0.0825", Decimal("1.65")),
        ("100", "0", Decimal("0.00")),
    ],
)
def test_compute_taxes_rounds_to_cents(total, rate, expected):
    assert compute_taxes(Decimal(total), Decimal(rate)) == expected


def test_float_rate_does_not_drift():
    assert compute_taxes(Decimal("0.30"), 0.1) == Decimal("0.03")


def test_create_bill_for_unknown_order(repo):
    with pytest.raises(NotFoundError):
        BillingGenerator(repo).create_bill("missing", "10", Decimal("0.1"), "Cash")


def test_create_bill_once_per_order(repo, widget):
    order = OrderEngine(repo).create_order("A", [{"item_id": widget.id, "quantity": 1}])
    billing = BillingGenerator(repo)

    bill = billing.create_bill(order.id, "100", Decimal("0.1"), "Cash")
    assert bill.taxes == Decimal("10.00")
    assert bill.is_paid is False

    with pytest.raises(DuplicateBillError):
        billing.create_bill(order.id, "100", Decimal("0.1"), "Cash")
    assert len(billing.list_bills()) == 1


def test_explicit_taxes_override_rate(repo, widget):
    order = OrderEngine(repo).create_order("A", [{"item_id": widget.id, "quantity": 1}])
    bill = BillingGenerator(repo).create_bill(order.id, "100", Decimal("0.1"), "Card", taxes="7.25")
    assert bill.taxes == Decimal("7.25")


@pytest.mark.parametrize(
    "total, method, taxes",
    [("10", "", None), ("-1", "Cash", None), ("10", "Cash", "-0.01")],
)
def test_create_bill_validation(repo, widget, total, method, taxes):
    order = OrderEngine(repo).create_order("A", [{"item_id": widget.id, "quantity": 1}])
    with pytest.raises(ValidationError):
        BillingGenerator(repo).create_bill(order.id, total, Decimal("0.1"), method, taxes=taxes)


def test_mark_paid(repo, widget):
    order = OrderEngine(repo).create_order("A", [{"item_id": widget.id, "quantity": 1}])
    billing = BillingGenerator(repo)
    bill = billing.create_bill(order.id, "100", Decimal("0.1"), "Cash")

    assert billing.mark_paid(bill.id).is_paid is True
    assert billing.get_bill(bill.id).is_paid is True
    with pytest.raises(NotFoundError):
        billing.mark_paid("missing")
