"""
Error taxonomy for the store API.

Every business failure raised by the engines derives from StoreError.
STATUS_CODES is the one table the HTTP layer uses to turn an error kind into
a response status; lookup walks the exception's MRO so subclasses inherit the
status of their parent unless they are listed themselves.
"""

from typing import Dict, Optional, Type


class StoreError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    pass


class NotFoundError(StoreError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(StoreError):
    pass


class DuplicateBillError(ConflictError):
    def __init__(self, order_id: str):
        super().__init__(f"A bill already exists for order {order_id}")
        self.order_id = order_id


class InsufficientStockError(StoreError):
    def __init__(self, item_id: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for item {item_id}: requested {requested}, available {available}"
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available


class InvalidStatusError(StoreError):
    pass


class InvalidTransitionError(StoreError):
    pass


class AuthenticationError(StoreError):
    pass


class CsrfError(StoreError):
    pass


class RateLimitError(StoreError):
    def __init__(self, retry_after: int):
        super().__init__(f"Too many attempts, retry in {retry_after} seconds")
        self.retry_after = retry_after


STATUS_CODES: Dict[Type[StoreError], int] = {
    ValidationError: 400,
    InvalidStatusError: 400,
    InvalidTransitionError: 400,
    AuthenticationError: 401,
    CsrfError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    InsufficientStockError: 409,
    RateLimitError: 429,
}


def status_code_for(exc: StoreError) -> int:
    for cls in type(exc).__mro__:
        code: Optional[int] = STATUS_CODES.get(cls)
        if code is not None:
            return code
    return 500
