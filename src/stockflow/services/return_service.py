from __future__ import annotations

import logging
from collections import Counter
from decimal import Decimal
from typing import Callable, Iterable

from stockflow.domain.errors import NotFoundError, ValidationError
from stockflow.domain.models import (
    MovementType,
    Principal,
    ReturnLine,
    ReturnRequestLine,
    ReturnTransaction,
)
from stockflow.domain.money import ZERO, quantize_money, to_int, to_quantity
from stockflow.domain.result import Err, Ok, Result
from stockflow.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork, now_iso
from stockflow.services.authorization import AuthorizationGuard, Requirement
from stockflow.services.ledger import StockLedger

log = logging.getLogger("stockflow.returns")


def _requested_by_item(raw_lines: Iterable[ReturnRequestLine | dict]) -> Counter[int]:
    requested: Counter[int] = Counter()
    for raw in raw_lines:
        if isinstance(raw, ReturnRequestLine):
            item_id, qty = raw.item_id, raw.quantity_returned
        else:
            item_id, qty = raw.get("item_id"), raw.get("qty")
        requested[to_int(item_id, field="Item id")] += to_quantity(qty)
    return requested


class ReturnService:
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

    def process_return(
        self, principal: Principal, sale_id: int, lines: Iterable[ReturnRequestLine | dict]
    ) -> ReturnTransaction:
        """
        lines: ReturnRequestLine or {item_id, qty}

        Puts returned quantities back into stock and stores the return as its
        own record. The quantity still returnable per item (sold minus earlier
        returns) is re-read inside the same unit of work. The original sale
        and its totals are not changed; ``refund_amount`` is informational.
        """
        self.guard.authorize(principal, Requirement.ADMIN_ONLY)

        sale_id = to_int(sale_id, field="Sale id")
        requested = _requested_by_item(lines)
        if not requested:
            raise ValidationError("Return has no lines.")

        def work(uow: UnitOfWork) -> Result[ReturnTransaction]:
            sale = uow.get_sale(sale_id)
            if sale is None:
                return Err(NotFoundError(f"Sale not found: {sale_id}"))

            sold: Counter[int] = Counter()
            prices: dict[int, Decimal] = {}
            for line in sale.lines:
                sold[line.item_id] += line.quantity_sold
                prices.setdefault(line.item_id, line.unit_price_at_sale)
            already_returned = uow.returned_quantities(sale.id)

            for item_id, qty in requested.items():
                if item_id not in sold:
                    return Err(ValidationError(f"Item {item_id} was not sold in sale {sale.id}."))
                remaining = sold[item_id] - already_returned.get(item_id, 0)
                if qty > remaining:
                    return Err(
                        ValidationError(
                            f"Cannot return {qty} of item {item_id}. Sold: {sold[item_id]}, returnable: {remaining}"
                        )
                    )

            return_lines = tuple(
                ReturnLine(item_id=item_id, quantity_returned=qty, unit_price_at_sale=prices[item_id])
                for item_id, qty in requested.items()
            )
            refund = quantize_money(sum((ln.refund_total for ln in return_lines), ZERO))

            ts = now_iso()
            return_id = uow.insert_return(sale.id, ts, principal.user_ref, refund)
            for line in return_lines:
                new_qty = self.ledger.increase(uow, line.item_id, line.quantity_returned)
                uow.insert_return_line(return_id, line)
                uow.record_movement(
                    ts,
                    line.item_id,
                    MovementType.RETURN,
                    line.quantity_returned,
                    new_qty,
                    line.unit_price_at_sale,
                    return_id,
                    principal.user_ref,
                )

            return Ok(
                ReturnTransaction(
                    id=return_id,
                    sale_id=sale.id,
                    timestamp=ts,
                    processed_by=principal.user_ref,
                    refund_amount=refund,
                    lines=return_lines,
                )
            )

        outcome = self.uow_factory().run(work)
        if not outcome.ok:
            log.warning("return_rolled_back sale_id=%s actor=%s error=%s", sale_id, principal.user_ref, outcome.error)
        processed = outcome.unwrap()
        log.info(
            "return_processed return_id=%s sale_id=%s items=%s refund=%s actor=%s",
            processed.id, processed.sale_id, len(processed.lines), processed.refund_amount, principal.user_ref,
        )
        return processed

    def returnable_quantities(self, sale_id: int) -> dict[int, int]:
        sale = self.repo.get_sale(int(sale_id))
        if not sale:
            raise NotFoundError(f"Sale not found: {sale_id}")
        sold: Counter[int] = Counter()
        for line in sale.lines:
            sold[line.item_id] += line.quantity_sold
        returned = self.repo.returned_quantities(sale.id)
        return {item_id: qty - returned.get(item_id, 0) for item_id, qty in sold.items()}

    def returns_for_sale(self, sale_id: int) -> list[ReturnTransaction]:
        return self.repo.returns_for_sale(int(sale_id))
