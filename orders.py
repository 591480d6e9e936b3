"""
Order Engine: order creation, the PENDING -> COMPLETED | CANCELLED state
machine, and deletion.

Stock is reserved when an order is created and released when it is
cancelled. Completing an order creates its bill. Each of these runs inside a
single Repository.transaction(), so a failure at any step rolls back every
stock mutation made before it.
"""

import logging
from dataclasses import dataclass
from decimal import InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Union

from billing import BillingGenerator, compute_total, to_decimal
from errors import (
    DuplicateBillError,
    InvalidStatusError,
    InvalidTransitionError,
    ValidationError,
)
from inventory import InventoryStore
from models import TERMINAL_STATUSES, Bill, Order, OrderItem, OrderStatus
from repository import Repository
from store_settings import tax_fraction

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHOD = "Cash"
REQUESTABLE_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


@dataclass
class LineRequest:
    item_id: str
    quantity: int
    price: Optional[Any] = None


def _as_line(raw: Union[LineRequest, Dict[str, Any]]) -> LineRequest:
    if isinstance(raw, LineRequest):
        return raw
    item_id = raw.get("item_id") or raw.get("itemId")
    return LineRequest(item_id=item_id, quantity=raw.get("quantity"), price=raw.get("price"))


def _as_quantity(value: Any) -> int:
    # Whole units only, never truncated
    if value is None or isinstance(value, bool):
        raise ValidationError("Invalid item quantity")
    try:
        number = to_decimal(value)
    except (InvalidOperation, ValueError):
        raise ValidationError("Invalid item quantity")
    if not number.is_finite() or number != number.to_integral_value() or number <= 0:
        raise ValidationError("Invalid item quantity")
    return int(number)


def _parse_status(status: Union[str, OrderStatus, None]) -> OrderStatus:
    value = status.value if isinstance(status, OrderStatus) else str(status or "").strip().upper()
    try:
        parsed = OrderStatus(value)
    except ValueError:
        raise InvalidStatusError(f"Invalid order status: {status}")
    if parsed not in REQUESTABLE_STATUSES:
        raise InvalidStatusError(f"Orders can only be moved to COMPLETED or CANCELLED, not {parsed.value}")
    return parsed


class OrderEngine:
    def __init__(self, repo: Repository):
        self.repo = repo
        self.inventory = InventoryStore(repo)
        self.billing = BillingGenerator(repo)

    # -------------------- reads --------------------

    def get_order(self, order_id: str) -> Order:
        return self.repo.require(Order, order_id)

    def list_orders(self, status: Optional[str] = None, limit: Optional[int] = 100) -> List[Order]:
        criteria = []
        if status:
            try:
                criteria.append(Order.status == OrderStatus(status.upper()).value)
            except ValueError:
                raise InvalidStatusError(f"Invalid order status: {status}")
        return self.repo.list(Order, *criteria, order_by=Order.created_at.desc(), limit=limit)

    # -------------------- create --------------------

    def create_order(
        self,
        customer_name: str,
        lines: Iterable[Union[LineRequest, Dict[str, Any]]],
        custom_message: Optional[str] = None,
    ) -> Order:
        customer_name = (customer_name or "").strip()
        requests = [_as_line(raw) for raw in (lines or [])]
        if not customer_name or not requests:
            raise ValidationError("Customer name and at least one item are required")
        quantities = []
        for req in requests:
            if not req.item_id:
                raise ValidationError("Every order line needs an item id")
            quantities.append(_as_quantity(req.quantity))
            if req.price is not None and to_decimal(req.price) < 0:
                raise ValidationError("Invalid item price")

        with self.repo.transaction():
            order = Order(
                customer_name=customer_name,
                custom_message=custom_message,
                status=OrderStatus.PENDING.value,
            )
            for position, (req, quantity) in enumerate(zip(requests, quantities)):
                item = self.inventory.reserve(req.item_id, quantity)
                price = item.price if req.price is None else to_decimal(req.price)
                order.lines.append(
                    OrderItem(
                        item_id=item.id,
                        position=position,
                        name=item.name,
                        quantity=quantity,
                        price=price,
                    )
                )
            self.repo.create(order)

        logger.info(
            "order %s created for %s with %d line(s)", order.id, customer_name, len(order.lines)
        )
        return order

    # -------------------- state machine --------------------

    def update_order_status(
        self,
        order_id: str,
        status: Union[str, OrderStatus],
        payment_method: Optional[str] = None,
    ) -> Order:
        target = _parse_status(status)

        with self.repo.transaction():
            order = self.repo.require(Order, order_id, for_update=True)
            self._check_transition(order, target)
            if target is OrderStatus.COMPLETED:
                total = compute_total(order.lines)
                self.billing.create_bill(
                    order.id,
                    total_amount=total,
                    tax_rate=tax_fraction(self.repo),
                    payment_method=payment_method or DEFAULT_PAYMENT_METHOD,
                    is_paid=True,
                )
            else:
                for line in order.lines:
                    self.inventory.release(line.item_id, line.quantity)
            self.repo.update(order, status=target.value)

        logger.info("order %s moved to %s", order_id, target.value)
        return order

    def bill_order(
        self,
        order_id: str,
        payment_method: str,
        total_amount=None,
        taxes=None,
        tax_rate=None,
        is_paid: bool = True,
    ) -> Bill:
        """Complete a PENDING order with an explicitly priced bill.

        total_amount defaults to the sum of the order lines and tax_rate (a
        fraction) to the store setting; taxes overrides the computed tax.
        """
        with self.repo.transaction():
            order = self.repo.require(Order, order_id, for_update=True)
            self._check_transition(order, OrderStatus.COMPLETED)
            bill = self.billing.create_bill(
                order.id,
                total_amount=compute_total(order.lines) if total_amount is None else total_amount,
                tax_rate=tax_fraction(self.repo) if tax_rate is None else tax_rate,
                payment_method=payment_method,
                taxes=taxes,
                is_paid=is_paid,
            )
            self.repo.update(order, status=OrderStatus.COMPLETED.value)

        logger.info("order %s billed and completed", order_id)
        return bill

    def _check_transition(self, order: Order, target: OrderStatus) -> None:
        if target is OrderStatus.COMPLETED and order.bill is not None:
            logger.warning("order %s already has bill %s", order.id, order.bill.id)
            raise DuplicateBillError(order.id)
        if order.status in TERMINAL_STATUSES:
            logger.warning("rejected %s -> %s for order %s", order.status, target.value, order.id)
            raise InvalidTransitionError(
                f"Order {order.id} is {order.status}; only PENDING orders can change status"
            )

    # -------------------- edits / delete --------------------

    def update_order(
        self,
        order_id: str,
        customer_name: Optional[str] = None,
        custom_message: Optional[str] = None,
    ) -> Order:
        changes: Dict[str, Any] = {}
        if customer_name is not None:
            customer_name = customer_name.strip()
            if not customer_name:
                raise ValidationError("Customer name must not be empty")
            changes["customer_name"] = customer_name
        if custom_message is not None:
            changes["custom_message"] = custom_message

        with self.repo.transaction():
            order = self.repo.require(Order, order_id, for_update=True)
            if changes:
                self.repo.update(order, **changes)
        return order

    def delete_order(self, order_id: str) -> None:
        # Deleting never touches stock; cancel first to give reserved units back
        with self.repo.transaction():
            order = self.repo.require(Order, order_id, for_update=True)
            self.repo.delete(order)
        logger.info("order %s deleted", order_id)
