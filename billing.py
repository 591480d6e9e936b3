import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from errors import DuplicateBillError, ValidationError
from models import Bill, Order
from repository import Repository

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so floats like 0.1 keep their printed value
    return Decimal(str(value))


def compute_total(lines: Iterable) -> Decimal:
    """Sum of quantity x price over order lines, using each line's captured price."""
    total = Decimal("0")
    for line in lines:
        total += to_decimal(line.price) * int(line.quantity)
    return total


def compute_taxes(total: Decimal, tax_rate: Decimal) -> Decimal:
    return (to_decimal(total) * to_decimal(tax_rate)).quantize(CENT, rounding=ROUND_HALF_UP)


class BillingGenerator:
    def __init__(self, repo: Repository):
        self.repo = repo

    def create_bill(
        self,
        order_id: str,
        total_amount,
        tax_rate,
        payment_method: str,
        taxes=None,
        is_paid: bool = False,
    ) -> Bill:
        """Create the one bill an order may have.

        taxes, when given, is taken as-is instead of total_amount x tax_rate.
        Raises NotFoundError for an unknown order and DuplicateBillError when
        the order already has a bill.
        """
        payment_method = (payment_method or "").strip()
        if not payment_method:
            raise ValidationError("Payment method is required")
        total = to_decimal(total_amount)
        if total < 0:
            raise ValidationError("Total amount must not be negative")
        tax_amount = compute_taxes(total, tax_rate) if taxes is None else to_decimal(taxes)
        if tax_amount < 0:
            raise ValidationError("Taxes must not be negative")

        with self.repo.transaction():
            order = self.repo.require(Order, order_id)
            if order.bill is not None:
                raise DuplicateBillError(order_id)
            bill = Bill(
                order_id=order.id,
                total_amount=total,
                taxes=tax_amount,
                payment_method=payment_method,
                is_paid=is_paid,
            )
            try:
                self.repo.create(bill)
            except IntegrityError:
                # A concurrent request won the unique(order_id) race
                raise DuplicateBillError(order_id)
            order.bill = bill

        logger.info("bill %s created for order %s: total=%s taxes=%s", bill.id, order_id, total, tax_amount)
        return bill

    def get_bill(self, bill_id: str) -> Bill:
        return self.repo.require(Bill, bill_id)

    def list_bills(self, limit: Optional[int] = None) -> List[Bill]:
        return self.repo.list(Bill, order_by=Bill.created_at.desc(), limit=limit)

    def mark_paid(self, bill_id: str, is_paid: bool = True) -> Bill:
        with self.repo.transaction():
            bill = self.repo.require(Bill, bill_id, for_update=True)
            self.repo.update(bill, is_paid=is_paid)
        return bill
