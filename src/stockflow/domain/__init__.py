from .models import (
    Customer,
    PaymentType,
    Principal,
    ReceiptLine,
    ReceiptStatus,
    ReceiptTransaction,
    ReturnLine,
    ReturnTransaction,
    Role,
    SaleLine,
    SaleTransaction,
    StockItem,
)
from .errors import (
    AppError,
    AuthorizationError,
    InsufficientStockError,
    NotFoundError,
    ReceiptStateError,
    TransientStoreError,
    ValidationError,
)

__all__ = [
    "Customer",
    "PaymentType",
    "Principal",
    "ReceiptLine",
    "ReceiptStatus",
    "ReceiptTransaction",
    "ReturnLine",
    "ReturnTransaction",
    "Role",
    "SaleLine",
    "SaleTransaction",
    "StockItem",
    "AppError",
    "AuthorizationError",
    "InsufficientStockError",
    "NotFoundError",
    "ReceiptStateError",
    "TransientStoreError",
    "ValidationError",
]
