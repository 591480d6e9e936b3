import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select

from billing import to_decimal
from errors import ConflictError, InsufficientStockError, ValidationError
from models import Category, Item, OrderItem, item_categories
from repository import Repository

logger = logging.getLogger(__name__)

ITEM_FIELDS = ("name", "price", "quantity", "weight", "in_stock")
CATEGORY_FIELDS = ("name", "color", "sort_order")


def _clean_item_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in fields.items():
        if key not in ITEM_FIELDS:
            raise ValidationError(f"Unknown item field: {key}")
        if value is None and key != "weight":
            continue
        if key == "name":
            value = str(value).strip()
            if not value:
                raise ValidationError("Item name is required")
        elif key == "price":
            value = to_decimal(value)
            if value < 0:
                raise ValidationError("Item price must not be negative")
        elif key == "quantity":
            value = int(value)
            if value < 0:
                raise ValidationError("Item quantity must not be negative")
        elif key == "weight" and value is not None:
            value = to_decimal(value)
        cleaned[key] = value
    return cleaned


class InventoryStore:
    """Item and category catalog plus the stock mutations used by orders."""

    def __init__(self, repo: Repository):
        self.repo = repo

    # -------------------- items --------------------

    def create_item(self, name: str, price, quantity: int = 0, weight=None, in_stock: Optional[bool] = None) -> Item:
        fields = _clean_item_fields({"name": name, "price": price, "quantity": quantity, "weight": weight})
        if "name" not in fields:
            raise ValidationError("Item name is required")
        if in_stock is None:
            in_stock = fields.get("quantity", 0) > 0
        with self.repo.transaction():
            item = self.repo.create(Item(in_stock=in_stock, **fields))
        logger.info("item %s created: %s", item.id, item.name)
        return item

    def get_item(self, item_id: str) -> Item:
        return self.repo.require(Item, item_id)

    def list_items(self, search: Optional[str] = None, in_stock: Optional[bool] = None) -> List[Item]:
        criteria = []
        if search:
            criteria.append(Item.name.ilike(f"%{search.strip()}%"))
        if in_stock is not None:
            criteria.append(Item.in_stock == in_stock)
        return self.repo.list(Item, *criteria, order_by=Item.name)

    def update_item(self, item_id: str, **fields: Any) -> Item:
        changes = _clean_item_fields(fields)
        if "quantity" in changes and "in_stock" not in changes:
            changes["in_stock"] = changes["quantity"] > 0
        with self.repo.transaction():
            item = self.repo.require(Item, item_id, for_update=True)
            self.repo.update(item, **changes)
        return item

    def delete_item(self, item_id: str) -> None:
        with self.repo.transaction():
            item = self.repo.require(Item, item_id, for_update=True)
            referenced = self.repo.execute(
                select(func.count()).select_from(OrderItem).where(OrderItem.item_id == item_id)
            ).scalar_one()
            if referenced:
                raise ConflictError(f"Item {item_id} is referenced by {referenced} order line(s)")
            self.repo.delete(item)
        logger.info("item %s deleted", item_id)

    # -------------------- stock --------------------

    def reserve(self, item_id: str, quantity: int) -> Item:
        """Take quantity units out of stock. Callers own the transaction."""
        item = self.repo.require(Item, item_id, for_update=True)
        if not item.in_stock or item.quantity < quantity:
            available = item.quantity if item.in_stock else 0
            raise InsufficientStockError(item_id, quantity, available)
        item.quantity -= quantity
        item.in_stock = item.quantity > 0
        self.repo.session.flush()
        return item

    def release(self, item_id: str, quantity: int) -> Item:
        item = self.repo.require(Item, item_id, for_update=True)
        item.quantity += quantity
        item.in_stock = item.quantity > 0
        self.repo.session.flush()
        return item

    # -------------------- categories --------------------

    def create_category(self, name: str, color: Optional[str] = None, sort_order: Optional[int] = None) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        with self.repo.transaction():
            if self.repo.first(Category, Category.name == name) is not None:
                raise ConflictError("Category with this name already exists")
            category = self.repo.create(
                Category(name=name, color=color or "#6B7280", sort_order=sort_order or 0)
            )
        return category

    def get_category(self, category_id: str) -> Category:
        return self.repo.require(Category, category_id)

    def list_categories(self) -> List[Category]:
        return self.repo.list(Category, order_by=(Category.sort_order, Category.name))

    def update_category(self, category_id: str, **fields: Any) -> Category:
        changes = {k: v for k, v in fields.items() if v is not None}
        unknown = set(changes) - set(CATEGORY_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown category field(s): {', '.join(sorted(unknown))}")
        with self.repo.transaction():
            category = self.repo.require(Category, category_id, for_update=True)
            if "name" in changes:
                changes["name"] = str(changes["name"]).strip()
                if not changes["name"]:
                    raise ValidationError("Category name is required")
                clash = self.repo.first(Category, Category.name == changes["name"], Category.id != category_id)
                if clash is not None:
                    raise ConflictError("Category with this name already exists")
            self.repo.update(category, **changes)
        return category

    def delete_category(self, category_id: str) -> None:
        with self.repo.transaction():
            category = self.repo.require(Category, category_id)
            self.repo.delete(category)

    def set_category_items(self, category_id: str, item_ids: Iterable[str]) -> Category:
        with self.repo.transaction():
            category = self.repo.require(Category, category_id)
            items = [self.repo.require(Item, item_id) for item_id in dict.fromkeys(item_ids)]
            category.items = items
            self.repo.session.flush()
        return category

    def uncategorized_items(self) -> List[Item]:
        categorized = select(item_categories.c.item_id)
        return self.repo.list(Item, Item.id.not_in(categorized), order_by=Item.name)

    def category_item_counts(self) -> Dict[str, int]:
        rows = self.repo.execute(
            select(item_categories.c.category_id, func.count()).group_by(item_categories.c.category_id)
        )
        return {category_id: count for category_id, count in rows}


def stock_value(items: Iterable[Item]) -> Decimal:
    return sum((to_decimal(i.price) * i.quantity for i in items), Decimal("0"))
