"""
API Schemas for the Store Manager

Request and response bodies for the HTTP layer. Database tables live in
models.py; these models only describe what goes over the wire. Field names
are snake_case in Python and camelCase on the wire:
- CreateOrderRequest -> {"customerName": ..., "items": [{"itemId": ..., "quantity": ...}]}
- Money is stored as Decimal and rendered as float
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from analytics import Dashboard, DailySales, Metrics, TodayStats, TopItem
from models import Bill, Category, Item, Order, OrderItem, StoreSettings, User


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _money(value) -> float:
    return float(value or 0)


# -------------------- requests --------------------

class OrderLineIn(ApiModel):
    item_id: str = Field(..., description="Catalog item id")
    quantity: int = Field(..., ge=1)
    price: Optional[float] = Field(None, ge=0, description="Unit price; defaults to the catalog price")


class CreateOrderRequest(ApiModel):
    customer_name: str = Field(..., description="Customer name")
    items: List[OrderLineIn]
    custom_message: Optional[str] = None


class UpdateOrderRequest(ApiModel):
    status: Optional[str] = Field(None, description="COMPLETED | CANCELLED")
    payment_method: Optional[str] = None
    customer_name: Optional[str] = None
    custom_message: Optional[str] = None


class CreateBillRequest(ApiModel):
    order_id: str
    payment_method: str = "Cash"
    total_amount: Optional[float] = Field(None, ge=0, description="Defaults to the order's line total")
    taxes: Optional[float] = Field(None, ge=0, description="Explicit tax amount")
    tax_rate: Optional[float] = Field(None, ge=0, le=100, description="Percent; defaults to the store setting")


class UpdateBillRequest(ApiModel):
    is_paid: bool


class ItemCreate(ApiModel):
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(0, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    in_stock: Optional[bool] = None


class ItemUpdate(ApiModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    in_stock: Optional[bool] = None


class CategoryCreate(ApiModel):
    name: str
    color: Optional[str] = None
    sort_order: Optional[int] = Field(None, alias="order")


class CategoryUpdate(ApiModel):
    name: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = Field(None, alias="order")


class CategoryItemsRequest(ApiModel):
    item_ids: List[str]


class SettingsUpdate(ApiModel):
    store_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    tax_rate: Optional[float] = Field(None, ge=0, le=100)
    currency: Optional[str] = None
    footer: Optional[str] = None


class InitializeRequest(ApiModel):
    password: str
    name: str = "Admin"
    email: str = ""


class LoginRequest(ApiModel):
    password: str = ""
    session_type: str = "prod"


# -------------------- responses --------------------

class ItemOut(ApiModel):
    id: str
    name: str
    price: float
    quantity: int
    weight: Optional[float] = None
    in_stock: bool
    created_at: datetime
    category_ids: List[str] = []

    @classmethod
    def from_model(cls, item: Item) -> "ItemOut":
        return cls(
            id=item.id,
            name=item.name,
            price=_money(item.price),
            quantity=item.quantity,
            weight=float(item.weight) if item.weight is not None else None,
            in_stock=item.in_stock,
            created_at=item.created_at,
            category_ids=[c.id for c in item.categories],
        )


class OrderLineOut(ApiModel):
    id: str
    item_id: str
    name: str
    quantity: int
    price: float
    subtotal: float

    @classmethod
    def from_model(cls, line: OrderItem) -> "OrderLineOut":
        return cls(
            id=line.id,
            item_id=line.item_id,
            name=line.name,
            quantity=line.quantity,
            price=_money(line.price),
            subtotal=_money(line.price * line.quantity),
        )


class BillOut(ApiModel):
    id: str
    order_id: str
    total_amount: float
    taxes: float
    payment_method: str
    is_paid: bool
    created_at: datetime
    order: Optional["OrderOut"] = None

    @classmethod
    def from_model(cls, bill: Bill, with_order: bool = False) -> "BillOut":
        return cls(
            id=bill.id,
            order_id=bill.order_id,
            total_amount=_money(bill.total_amount),
            taxes=_money(bill.taxes),
            payment_method=bill.payment_method,
            is_paid=bill.is_paid,
            created_at=bill.created_at,
            order=OrderOut.from_model(bill.order, with_bill=False) if with_order else None,
        )


class OrderOut(ApiModel):
    id: str
    customer_name: str
    custom_message: Optional[str] = None
    status: str
    created_at: datetime
    items: List[OrderLineOut]
    total: float
    bill: Optional[BillOut] = None

    @classmethod
    def from_model(cls, order: Order, with_bill: bool = True) -> "OrderOut":
        lines = [OrderLineOut.from_model(line) for line in order.lines]
        return cls(
            id=order.id,
            customer_name=order.customer_name,
            custom_message=order.custom_message,
            status=order.status,
            created_at=order.created_at,
            items=lines,
            total=round(sum(line.subtotal for line in lines), 2),
            bill=BillOut.from_model(order.bill) if with_bill and order.bill is not None else None,
        )


BillOut.model_rebuild()


class CategoryOut(ApiModel):
    id: str
    name: str
    color: str
    sort_order: int = Field(..., alias="order")
    item_count: int

    @classmethod
    def from_model(cls, category: Category, item_count: Optional[int] = None) -> "CategoryOut":
        return cls(
            id=category.id,
            name=category.name,
            color=category.color,
            sort_order=category.sort_order,
            item_count=len(category.items) if item_count is None else item_count,
        )


class DailySalesOut(ApiModel):
    date: str
    total_sales: float
    order_count: int
    sales: float

    @classmethod
    def from_result(cls, day: DailySales) -> "DailySalesOut":
        return cls(date=day.date, total_sales=_money(day.total_sales), order_count=day.order_count, sales=_money(day.total_sales))


class TopItemOut(ApiModel):
    id: str
    name: str
    quantity: int
    revenue: float

    @classmethod
    def from_result(cls, item: TopItem) -> "TopItemOut":
        return cls(id=item.id, name=item.name, quantity=item.quantity, revenue=_money(item.revenue))


class MetricsOut(ApiModel):
    total_orders: int
    total_sales: float
    average_order_value: float
    orders_trend: float
    revenue_trend: float
    top_selling_items: List[TopItemOut]
    payment_method_distribution: Dict[str, int]
    order_status_breakdown: Dict[str, int]

    @classmethod
    def from_result(cls, m: Metrics) -> "MetricsOut":
        return cls(
            total_orders=m.total_orders,
            total_sales=_money(m.total_sales),
            average_order_value=_money(m.average_order_value),
            orders_trend=m.orders_trend,
            revenue_trend=m.revenue_trend,
            top_selling_items=[TopItemOut.from_result(i) for i in m.top_selling_items],
            payment_method_distribution=m.payment_method_distribution,
            order_status_breakdown=m.order_status_breakdown,
        )


class TodayStatsOut(ApiModel):
    orders_count: int
    revenue: float
    average_order_value: float

    @classmethod
    def from_result(cls, s: TodayStats) -> "TodayStatsOut":
        return cls(orders_count=s.orders_count, revenue=_money(s.revenue), average_order_value=_money(s.average_order_value))


class DashboardOut(ApiModel):
    total_revenue: float
    pending_orders: int
    completed_orders: int
    cancelled_orders: int
    items_in_stock: int
    items_out_of_stock: int
    stock_value: float
    recent_orders: List[OrderOut]

    @classmethod
    def from_result(cls, d: Dashboard) -> "DashboardOut":
        return cls(
            total_revenue=_money(d.total_revenue),
            pending_orders=d.pending_orders,
            completed_orders=d.completed_orders,
            cancelled_orders=d.cancelled_orders,
            items_in_stock=d.items_in_stock,
            items_out_of_stock=d.items_out_of_stock,
            stock_value=_money(d.stock_value),
            recent_orders=[OrderOut.from_model(o) for o in d.recent_orders],
        )


class SettingsOut(ApiModel):
    store_name: str
    address: str
    phone: str
    email: str
    tax_rate: float
    currency: str
    footer: str

    @classmethod
    def from_model(cls, s: StoreSettings) -> "SettingsOut":
        return cls(
            store_name=s.store_name,
            address=s.address,
            phone=s.phone,
            email=s.email,
            tax_rate=float(s.tax_rate),
            currency=s.currency,
            footer=s.footer,
        )


class UserOut(ApiModel):
    id: str
    name: str
    email: str
    session_type: Optional[str] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            session_type=user.session_type,
            last_login_at=user.last_login_at,
        )


class SessionOut(ApiModel):
    is_valid: bool
    user: Optional[UserOut] = None


class CsrfOut(ApiModel):
    csrf_token: str
