from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, Iterable

from stockflow.domain.errors import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from stockflow.domain.models import (
    CheckoutLine,
    CheckoutRequest,
    MovementType,
    PaymentType,
    Principal,
    SaleLine,
    SaleTransaction,
    StockItem,
)
from stockflow.domain.money import ZERO, quantize_money, to_int, to_money, to_quantity
from stockflow.domain.result import Err, Ok, Result
from stockflow.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork, now_iso
from stockflow.services.authorization import AuthorizationGuard, Requirement
from stockflow.services.ledger import StockLedger

log = logging.getLogger("stockflow.sales")


def _checkout_lines(raw_lines: Iterable[CheckoutLine | dict]) -> tuple[CheckoutLine, ...]:
    lines = []
    for raw in raw_lines:
        if isinstance(raw, CheckoutLine):
            item_id, qty = raw.item_id, raw.quantity
        else:
            item_id, qty = raw.get("item_id"), raw.get("qty")
        lines.append(CheckoutLine(item_id=to_int(item_id, field="Item id"), quantity=to_quantity(qty)))
    return tuple(lines)


def _payment_type(value: PaymentType | str) -> PaymentType:
    if isinstance(value, PaymentType):
        return value
    try:
        return PaymentType(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown payment type: {value}") from exc


class SalesService:
    def __init__(
        self,
        repo,
        guard: AuthorizationGuard | None = None,
        ledger: StockLedger | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.guard = guard or AuthorizationGuard()
        self.ledger = ledger or StockLedger()
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))

    def checkout(self, principal: Principal, request: CheckoutRequest) -> SaleTransaction:
        """
        Sells every line or none of them.

        Unit prices are read from the stock item inside the unit of work and
        stored on each line. The discount is an absolute amount taken off the
        subtotal and is not capped by it.
        """
        self.guard.authorize(principal, Requirement.ANY_AUTHENTICATED)

        lines = _checkout_lines(request.lines)
        if not lines:
            raise ValidationError("Cart is empty.")
        discount = to_money(request.discount_amount, field="Discount")
        if discount < 0:
            raise ValidationError("Discount must be >= 0.")
        payment_type = _payment_type(request.payment_type)
        cashier_ref = (request.cashier_ref or "").strip() or principal.user_ref
        customer_id = to_int(request.customer_id, field="Customer id") if request.customer_id is not None else None

        # Aggregate qty by item so a repeated line cannot oversell
        qty_by_item: Counter[int] = Counter()
        for line in lines:
            qty_by_item[int(line.item_id)] += int(line.quantity)

        def work(uow: UnitOfWork) -> Result[SaleTransaction]:
            items: dict[int, StockItem] = {}
            for item_id, requested in qty_by_item.items():
                item = uow.get_stock_item(item_id)
                if item is None:
                    return Err(NotFoundError(f"Stock item not found: {item_id}"))
                if requested > item.quantity_on_hand:
                    return Err(InsufficientStockError(item.id, item.quantity_on_hand, requested, item_code=item.item_code))
                items[item_id] = item
            if customer_id is not None and uow.get_customer(customer_id) is None:
                return Err(NotFoundError(f"Customer not found: {customer_id}"))

            sale_lines = tuple(
                SaleLine(
                    item_id=int(line.item_id),
                    quantity_sold=int(line.quantity),
                    unit_price_at_sale=items[int(line.item_id)].unit_selling_price,
                )
                for line in lines
            )
            subtotal = quantize_money(sum((ln.line_total for ln in sale_lines), ZERO))
            total_amount = quantize_money(subtotal - discount)

            ts = now_iso()
            sale_id = uow.insert_sale(ts, cashier_ref, customer_id, payment_type, discount, subtotal, total_amount)

            for line in sale_lines:
                new_qty = self.ledger.decrease(uow, line.item_id, line.quantity_sold)
                uow.insert_sale_line(sale_id, line)
                uow.record_movement(
                    ts,
                    line.item_id,
                    MovementType.SALE,
                    -line.quantity_sold,
                    new_qty,
                    line.unit_price_at_sale,
                    sale_id,
                    principal.user_ref,
                )

            if customer_id is not None:
                uow.record_customer_visit(customer_id, total_amount)

            return Ok(
                SaleTransaction(
                    id=sale_id,
                    timestamp=ts,
                    cashier_ref=cashier_ref,
                    customer_id=customer_id,
                    payment_type=payment_type,
                    discount_amount=quantize_money(discount),
                    subtotal=subtotal,
                    total_amount=total_amount,
                    lines=sale_lines,
                )
            )

        outcome = self.uow_factory().run(work)
        if not outcome.ok:
            log.warning("checkout_rolled_back lines=%s actor=%s error=%s", len(lines), principal.user_ref, outcome.error)
        sale = outcome.unwrap()
        log.info(
            "sale_created sale_id=%s items=%s total=%s payment=%s actor=%s",
            sale.id, len(sale.lines), sale.total_amount, sale.payment_type.value, principal.user_ref,
        )
        return sale

    def check_stock_availability(self, item_id: int, requested_quantity: int) -> bool:
        item = self.repo.get_stock_item(int(item_id))
        if not item:
            raise NotFoundError(f"Stock item not found: {item_id}")
        return item.quantity_on_hand >= to_int(requested_quantity, field="Qty")

    def get_sale(self, sale_id: int) -> SaleTransaction:
        sale = self.repo.get_sale(int(sale_id))
        if not sale:
            raise NotFoundError(f"Sale not found: {sale_id}")
        return sale

    def list_sales_between(self, start_iso: str, end_iso: str) -> list[SaleTransaction]:
        return self.repo.list_sales_between(start_iso, end_iso)
