from __future__ import annotations

from stockflow.domain.errors import InsufficientStockError, NotFoundError
from stockflow.domain.money import to_quantity
from stockflow.repositories.unit_of_work import UnitOfWork


class StockLedger:
    """Quantity mutations for stock items.

    Works inside a unit of work supplied by the caller and never commits
    or rolls back on its own.
    """

    def increase(self, uow: UnitOfWork, item_id: int, quantity: int) -> int:
        qty = to_quantity(quantity)
        new_quantity = uow.add_quantity(int(item_id), qty)
        if new_quantity is None:
            raise NotFoundError(f"Stock item not found: {item_id}")
        return new_quantity

    def decrease(self, uow: UnitOfWork, item_id: int, quantity: int) -> int:
        qty = to_quantity(quantity)
        item = uow.get_stock_item(int(item_id))
        if item is None:
            raise NotFoundError(f"Stock item not found: {item_id}")
        if qty > item.quantity_on_hand:
            raise InsufficientStockError(item.id, item.quantity_on_hand, qty, item_code=item.item_code)

        new_quantity = uow.subtract_quantity(item.id, qty)
        if new_quantity is None:
            current = uow.get_stock_item(item.id)
            available = current.quantity_on_hand if current else 0
            raise InsufficientStockError(item.id, available, qty, item_code=item.item_code)
        return new_quantity
