from decimal import Decimal

import pytest

from errors import (
    DuplicateBillError,
    InsufficientStockError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from models import Bill, Item, Order, OrderStatus
from orders import LineRequest, OrderEngine
from repository import Repository


@pytest.fixture
def engine_(repo: Repository) -> OrderEngine:
    return OrderEngine(repo)


def _bill_count(repo: Repository) -> int:
    return len(repo.list(Bill))


def test_create_order_reserves_stock_and_snapshots_price(engine_, repo, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 3}])

    assert order.status == OrderStatus.PENDING.value
    assert repo.get(Item, widget.id).quantity == 7
    assert len(order.lines) == 1
    assert order.lines[0].price == Decimal("100")
    assert order.lines[0].name == "Widget"


def test_captured_price_survives_catalog_change(engine_, inventory, widget):
    order = engine_.create_order("A", [LineRequest(item_id=widget.id, quantity=1)])
    inventory.update_item(widget.id, price="150")

    assert engine_.get_order(order.id).lines[0].price == Decimal("100")


def test_explicit_line_price_is_kept(engine_, widget):
    order = engine_.create_order("A", [{"itemId": widget.id, "quantity": 2, "price": "80.50"}])
    assert order.lines[0].price == Decimal("80.50")


def test_decrements_match_ordered_quantities(engine_, repo, widget, gadget):
    engine_.create_order(
        "A",
        [
            {"item_id": widget.id, "quantity": 2},
            {"item_id": gadget.id, "quantity": 4},
            {"item_id": widget.id, "quantity": 1},
        ],
    )
    assert repo.get(Item, widget.id).quantity == 7
    gadget_row = repo.get(Item, gadget.id)
    assert gadget_row.quantity == 0
    assert gadget_row.in_stock is False


def test_unknown_item_rolls_back_every_line(engine_, repo, widget, gadget):
    with pytest.raises(NotFoundError):
        engine_.create_order(
            "A",
            [
                {"item_id": widget.id, "quantity": 3},
                {"item_id": gadget.id, "quantity": 1},
                {"item_id": "missing", "quantity": 1},
            ],
        )

    assert repo.get(Item, widget.id).quantity == 10
    assert repo.get(Item, gadget.id).quantity == 4
    assert repo.list(Order) == []


def test_insufficient_stock_rejects_without_going_negative(engine_, repo, widget, gadget):
    with pytest.raises(InsufficientStockError) as excinfo:
        engine_.create_order(
            "A",
            [{"item_id": widget.id, "quantity": 5}, {"item_id": gadget.id, "quantity": 5}],
        )

    assert excinfo.value.available == 4
    assert repo.get(Item, widget.id).quantity == 10
    assert repo.get(Item, gadget.id).quantity == 4


def test_out_of_stock_flag_blocks_reservation(engine_, inventory, widget):
    inventory.update_item(widget.id, in_stock=False)
    with pytest.raises(InsufficientStockError):
        engine_.create_order("A", [{"item_id": widget.id, "quantity": 1}])


@pytest.mark.parametrize(
    "customer, lines",
    [
        ("", [{"item_id": "x", "quantity": 1}]),
        ("   ", [{"item_id": "x", "quantity": 1}]),
        ("A", []),
        ("A", [{"item_id": "x", "quantity": 0}]),
        ("A", [{"item_id": "x", "quantity": 2.9}]),
        ("A", [{"item_id": "x", "quantity": "1.5"}]),
        ("A", [{"item_id": "x", "quantity": True}]),
        ("A", [{"item_id": "x", "quantity": "many"}]),
        ("A", [{"item_id": "x"}]),
        ("A", [{"item_id": "x", "quantity": 1, "price": "-1"}]),
    ],
)
def test_create_order_validation(engine_, customer, lines):
    with pytest.raises(ValidationError):
        engine_.create_order(customer, lines)


def test_fractional_quantity_takes_no_stock(engine_, repo, widget):
    with pytest.raises(ValidationError):
        engine_.create_order("A", [{"item_id": widget.id, "quantity": 2.9}])
    assert repo.get(Item, widget.id).quantity == 10

    order = engine_.create_order(
        "A", [{"item_id": widget.id, "quantity": "2"}, LineRequest(item_id=widget.id, quantity=3.0)]
    )

    assert [line.quantity for line in order.lines] == [2, 3]
    assert repo.get(Item, widget.id).quantity == 5


def test_complete_creates_one_bill_and_keeps_stock(engine_, repo, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 3}])

    completed = engine_.update_order_status(order.id, "COMPLETED")

    assert completed.status == OrderStatus.COMPLETED.value
    assert completed.bill is not None
    assert completed.bill.total_amount == Decimal("300")
    assert completed.bill.taxes == Decimal("30.00")
    assert completed.bill.payment_method == "Cash"
    assert completed.bill.is_paid is True
    assert repo.get(Item, widget.id).quantity == 7
    assert _bill_count(repo) == 1


def test_second_completion_is_a_duplicate_bill(engine_, repo, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 3}])
    engine_.update_order_status(order.id, OrderStatus.COMPLETED, payment_method="Card")

    with pytest.raises(DuplicateBillError):
        engine_.update_order_status(order.id, OrderStatus.COMPLETED)

    assert _bill_count(repo) == 1
    assert repo.get(Item, widget.id).quantity == 7


def test_cancel_restores_stock_once(engine_, repo, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 3}])

    cancelled = engine_.update_order_status(order.id, "cancelled")
    assert cancelled.status == OrderStatus.CANCELLED.value
    assert repo.get(Item, widget.id).quantity == 10
    assert cancelled.bill is None

    with pytest.raises(InvalidTransitionError):
        engine_.update_order_status(order.id, "CANCELLED")
    assert repo.get(Item, widget.id).quantity == 10
    assert _bill_count(repo) == 0


def test_cannot_complete_a_cancelled_order(engine_, repo, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 1}])
    engine_.update_order_status(order.id, "CANCELLED")

    with pytest.raises(InvalidTransitionError):
        engine_.update_order_status(order.id, "COMPLETED")
    assert _bill_count(repo) == 0


def test_cannot_cancel_a_completed_order(engine_, repo, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 2}])
    engine_.update_order_status(order.id, "COMPLETED")

    with pytest.raises(InvalidTransitionError):
        engine_.update_order_status(order.id, "CANCELLED")
    assert repo.get(Item, widget.id).quantity == 8


@pytest.mark.parametrize("status", ["PENDING", "SHIPPED", "", None])
def test_invalid_requested_status(engine_, widget, status):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 1}])
    with pytest.raises(InvalidStatusError):
        engine_.update_order_status(order.id, status)


def test_status_update_on_missing_order(engine_):
    with pytest.raises(NotFoundError):
        engine_.update_order_status("nope", "COMPLETED")


def test_failed_completion_leaves_order_pending(engine_, repo, widget, monkeypatch):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 2}])

    def boom(*_args, **_kwargs):
        raise RuntimeError("printer on fire")

    monkeypatch.setattr(engine_.billing, "create_bill", boom)
    with pytest.raises(RuntimeError):
        engine_.update_order_status(order.id, "COMPLETED")

    assert repo.get(Order, order.id).status == OrderStatus.PENDING.value
    assert _bill_count(repo) == 0


def test_failed_cancellation_does_not_credit_stock(engine_, repo, widget, gadget, monkeypatch):
    order = engine_.create_order(
        "A", [{"item_id": widget.id, "quantity": 2}, {"item_id": gadget.id, "quantity": 1}]
    )
    real_release = engine_.inventory.release
    calls = []

    def flaky_release(item_id, quantity):
        calls.append(item_id)
        if len(calls) == 2:
            raise RuntimeError("connection lost")
        return real_release(item_id, quantity)

    monkeypatch.setattr(engine_.inventory, "release", flaky_release)
    with pytest.raises(RuntimeError):
        engine_.update_order_status(order.id, "CANCELLED")

    assert repo.get(Item, widget.id).quantity == 8
    assert repo.get(Order, order.id).status == OrderStatus.PENDING.value


def test_delete_removes_bill_without_restoring_stock(engine_, repo, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 3}])
    engine_.update_order_status(order.id, "COMPLETED")

    engine_.delete_order(order.id)

    assert repo.get(Order, order.id) is None
    assert _bill_count(repo) == 0
    assert repo.get(Item, widget.id).quantity == 7


def test_delete_missing_order(engine_):
    with pytest.raises(NotFoundError):
        engine_.delete_order("nope")


def test_bill_order_completes_with_explicit_amounts(engine_, repo, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 1}])

    bill = engine_.bill_order(order.id, "Card", total_amount="90", taxes="4.50")

    assert bill.total_amount == Decimal("90")
    assert bill.taxes == Decimal("4.50")
    assert repo.get(Order, order.id).status == OrderStatus.COMPLETED.value
    with pytest.raises(DuplicateBillError):
        engine_.bill_order(order.id, "Card")


def test_update_order_metadata(engine_, widget):
    order = engine_.create_order("A", [{"item_id": widget.id, "quantity": 1}])

    updated = engine_.update_order(order.id, customer_name="  Bea ", custom_message="no onions")

    assert updated.customer_name == "Bea"
    assert updated.custom_message == "no onions"
    with pytest.raises(ValidationError):
        engine_.update_order(order.id, customer_name=" ")


def test_list_orders_filters_by_status(engine_, widget):
    first = engine_.create_order("A", [{"item_id": widget.id, "quantity": 1}])
    engine_.create_order("B", [{"item_id": widget.id, "quantity": 1}])
    engine_.update_order_status(first.id, "CANCELLED")

    assert [o.id for o in engine_.list_orders(status="cancelled")] == [first.id]
    assert len(engine_.list_orders()) == 2
    with pytest.raises(InvalidStatusError):
        engine_.list_orders(status="LOST")
