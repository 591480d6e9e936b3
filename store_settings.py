import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from config import get_settings
from errors import ValidationError
from models import StoreSettings
from repository import Repository

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("store_name", "address", "phone", "email", "tax_rate", "currency", "footer")


def get_store_settings(repo: Repository) -> StoreSettings:
    """Return the settings singleton, creating the default row on first use."""
    row = repo.first(StoreSettings)
    if row is None:
        with repo.transaction():
            row = repo.create(StoreSettings(tax_rate=Decimal(str(get_settings().default_tax_rate))))
        logger.info("created default store settings")
    return row


def update_store_settings(repo: Repository, **fields: Any) -> StoreSettings:
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")

    changes: Dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    if "tax_rate" in changes:
        try:
            rate = Decimal(str(changes["tax_rate"]))
        except InvalidOperation:
            raise ValidationError("Tax rate must be a number")
        if rate < 0 or rate > 100:
            raise ValidationError("Tax rate must be between 0 and 100")
        changes["tax_rate"] = rate

    row = get_store_settings(repo)
    with repo.transaction():
        repo.update(row, **changes)
    return row


def tax_fraction(repo: Repository) -> Decimal:
    # Settings keep a percent (10 means 10%)
    return Decimal(get_store_settings(repo).tax_rate) / Decimal("100")
