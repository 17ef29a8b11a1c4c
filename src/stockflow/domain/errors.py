class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class ReceiptStateError(ValidationError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    def __init__(self, item_id: int, available: int, requested: int, item_code: str | None = None):
        self.item_id = int(item_id)
        self.available = int(available)
        self.requested = int(requested)
        self.item_code = item_code
        label = item_code or f"item {item_id}"
        super().__init__(f"Insufficient stock for {label}. Available: {available}, Requested: {requested}")


class AuthorizationError(AppError):
    pass


class TransientStoreError(AppError):
    """Lock timeout or lost connection; nothing was committed, safe to retry."""
