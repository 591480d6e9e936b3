"""
Analytics Aggregator: read-only reductions over orders and bills.

All day boundaries are UTC. Sales figures come from order lines (captured
price x quantity) of orders created in the window; CANCELLED orders are left
out of sales, order counts and top items but still show up in the status
breakdown.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from billing import CENT, compute_total, to_decimal
from database import utcnow
from errors import ValidationError
from inventory import stock_value
from models import Bill, Item, Order, OrderStatus
from repository import Repository

logger = logging.getLogger(__name__)

TOP_ITEMS_LIMIT = 5
RECENT_ORDERS_LIMIT = 5
DEFAULT_WINDOW_DAYS = 30

DateLike = Union[date, datetime, str]


@dataclass
class DailySales:
    date: str
    total_sales: Decimal
    order_count: int


@dataclass
class TopItem:
    id: str
    name: str
    quantity: int
    revenue: Decimal


@dataclass
class Metrics:
    total_orders: int
    total_sales: Decimal
    average_order_value: Decimal
    orders_trend: float
    revenue_trend: float
    top_selling_items: List[TopItem] = field(default_factory=list)
    payment_method_distribution: Dict[str, int] = field(default_factory=dict)
    order_status_breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass
class TodayStats:
    orders_count: int
    revenue: Decimal
    average_order_value: Decimal


@dataclass
class Dashboard:
    total_revenue: Decimal
    pending_orders: int
    completed_orders: int
    cancelled_orders: int
    items_in_stock: int
    items_out_of_stock: int
    stock_value: Decimal
    recent_orders: List[Order] = field(default_factory=list)


def parse_day(value: Optional[DateLike], name: str = "date") -> date:
    """Accept a date, a datetime or an ISO 8601 string and return the UTC calendar day."""
    if value is None or value == "":
        raise ValidationError(f"{name} is required")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return value
    else:
        text = str(value).strip()
        try:
            if len(text) <= 10:
                return date.fromisoformat(text)
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid {name}: {value}")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.date()


def trend(current, previous) -> float:
    """Percent change from previous to current; 0 when there is no previous baseline."""
    previous = to_decimal(previous)
    if previous == 0:
        return 0.0
    change = (to_decimal(current) - previous) / previous * 100
    return float(change.quantize(CENT, rounding=ROUND_HALF_UP))


def _average(total: Decimal, count: int) -> Decimal:
    if count == 0:
        return Decimal("0")
    return (total / count).quantize(CENT, rounding=ROUND_HALF_UP)


class AnalyticsAggregator:
    def __init__(self, repo: Repository):
        self.repo = repo

    def _orders_between(self, start: datetime, end: datetime, include_cancelled: bool = False) -> List[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.lines))
            .where(Order.created_at >= start, Order.created_at <= end)
            .order_by(Order.created_at)
        )
        if not include_cancelled:
            stmt = stmt.where(Order.status != OrderStatus.CANCELLED.value)
        return list(self.repo.execute(stmt).scalars())

    def daily_sales(self, start_date: DateLike, end_date: DateLike) -> List[DailySales]:
        start = parse_day(start_date, "startDate")
        end = parse_day(end_date, "endDate")
        if start > end:
            return []

        days: Dict[str, DailySales] = {}
        day = start
        while day <= end:
            key = day.isoformat()
            days[key] = DailySales(date=key, total_sales=Decimal("0"), order_count=0)
            day += timedelta(days=1)

        window_end = datetime.combine(end, time.max)
        for order in self._orders_between(datetime.combine(start, time.min), window_end):
            entry = days.get(order.created_at.date().isoformat())
            if entry is None:
                continue
            entry.total_sales += compute_total(order.lines)
            entry.order_count += 1

        return [days[key] for key in sorted(days)]

    def metrics(self, start_date: Optional[DateLike] = None, end_date: Optional[DateLike] = None) -> Metrics:
        today = utcnow().date()
        end = parse_day(end_date, "endDate") if end_date else today
        start = parse_day(start_date, "startDate") if start_date else end - timedelta(days=DEFAULT_WINDOW_DAYS)
        if start > end:
            raise ValidationError("startDate must not be after endDate")

        start_dt = datetime.combine(start, time.min)
        end_dt = datetime.combine(end, time.max)
        period_days = math.ceil((end_dt - start_dt) / timedelta(days=1))
        prev_start = start_dt - timedelta(days=period_days)
        prev_end = start_dt - timedelta(microseconds=1)

        all_orders = self._orders_between(start_dt, end_dt, include_cancelled=True)
        orders = [o for o in all_orders if o.status != OrderStatus.CANCELLED.value]
        total_sales = sum((compute_total(o.lines) for o in orders), Decimal("0"))

        previous = self._orders_between(prev_start, prev_end)
        prev_sales = sum((compute_total(o.lines) for o in previous), Decimal("0"))

        breakdown = {status.value.lower(): 0 for status in OrderStatus}
        for order in all_orders:
            breakdown[order.status.lower()] += 1

        result = Metrics(
            total_orders=len(orders),
            total_sales=total_sales,
            average_order_value=_average(total_sales, len(orders)),
            orders_trend=trend(len(orders), len(previous)),
            revenue_trend=trend(total_sales, prev_sales),
            top_selling_items=self._top_items(orders),
            payment_method_distribution=self._payment_methods(start_dt, end_dt),
            order_status_breakdown=breakdown,
        )
        logger.debug(
            "metrics %s..%s: orders=%d sales=%s prev_orders=%d prev_sales=%s",
            start, end, result.total_orders, total_sales, len(previous), prev_sales,
        )
        return result

    def _top_items(self, orders: List[Order]) -> List[TopItem]:
        quantities: Dict[str, int] = defaultdict(int)
        revenue: Dict[str, Decimal] = defaultdict(Decimal)
        names: Dict[str, str] = {}
        for order in orders:
            for line in order.lines:
                quantities[line.item_id] += line.quantity
                revenue[line.item_id] += to_decimal(line.price) * line.quantity
                names[line.item_id] = line.name

        ranked = sorted(quantities, key=lambda item_id: (-quantities[item_id], -revenue[item_id], names[item_id]))
        return [
            TopItem(id=item_id, name=names[item_id], quantity=quantities[item_id], revenue=revenue[item_id])
            for item_id in ranked[:TOP_ITEMS_LIMIT]
        ]

    def _payment_methods(self, start: datetime, end: datetime) -> Dict[str, int]:
        rows = self.repo.execute(
            select(Bill.payment_method, func.count())
            .where(Bill.created_at >= start, Bill.created_at <= end)
            .group_by(Bill.payment_method)
        )
        return {method: count for method, count in rows}

    def today_stats(self, now: Optional[datetime] = None) -> TodayStats:
        day = (now or utcnow()).date()
        orders = self._orders_between(datetime.combine(day, time.min), datetime.combine(day, time.max))
        revenue = sum((compute_total(o.lines) for o in orders), Decimal("0"))
        return TodayStats(orders_count=len(orders), revenue=revenue, average_order_value=_average(revenue, len(orders)))

    def dashboard(self) -> Dashboard:
        total_revenue = self.repo.execute(select(func.sum(Bill.total_amount))).scalar()
        counts = dict(self.repo.execute(select(Order.status, func.count()).group_by(Order.status)).all())
        items = self.repo.list(Item)
        in_stock = [i for i in items if i.in_stock and i.quantity > 0]
        recent = self.repo.list(Order, order_by=Order.created_at.desc(), limit=RECENT_ORDERS_LIMIT)
        return Dashboard(
            total_revenue=to_decimal(total_revenue or 0),
            pending_orders=counts.get(OrderStatus.PENDING.value, 0),
            completed_orders=counts.get(OrderStatus.COMPLETED.value, 0),
            cancelled_orders=counts.get(OrderStatus.CANCELLED.value, 0),
            items_in_stock=len(in_stock),
            items_out_of_stock=len(items) - len(in_stock),
            stock_value=stock_value(items),
            recent_orders=recent,
        )
