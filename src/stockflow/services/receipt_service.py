from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Callable, Iterable, Optional

from stockflow.domain.errors import NotFoundError, ReceiptStateError, ValidationError
from stockflow.domain.models import (
    MovementType,
    Principal,
    ReceiptLine,
    ReceiptStatus,
    ReceiptTransaction,
)
from stockflow.domain.money import to_int, to_money, to_quantity
from stockflow.domain.result import Err, Ok, Result
from stockflow.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork, now_iso
from stockflow.services.authorization import AuthorizationGuard, Requirement
from stockflow.services.ledger import StockLedger

log = logging.getLogger("stockflow.receipts")


def _receipt_line(raw: ReceiptLine | dict) -> ReceiptLine:
    if isinstance(raw, ReceiptLine):
        item_id, qty, unit_cost = raw.item_id, raw.quantity_received, raw.unit_cost_price
    else:
        item_id, qty, unit_cost = raw.get("item_id"), raw.get("qty"), raw.get("unit_cost")
    line = ReceiptLine(
        item_id=to_int(item_id, field="Item id"),
        quantity_received=to_quantity(qty),
        unit_cost_price=to_money(unit_cost, field="Unit cost"),
    )
    if line.unit_cost_price < 0:
        raise ValidationError("Unit cost must be >= 0.")
    return line


class ReceiptService:
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

    def new_draft(
        self, supplier_ref: str, invoice_ref: Optional[str], lines: Iterable[ReceiptLine | dict]
    ) -> ReceiptTransaction:
        """
        lines: ReceiptLine or {item_id, qty, unit_cost}

        The draft lives in memory only; nothing reaches the store until it is confirmed.
        """
        supplier = (supplier_ref or "").strip()
        if not supplier:
            raise ValidationError("Supplier is required.")
        parsed = tuple(_receipt_line(ln) for ln in lines)
        if not parsed:
            raise ValidationError("Receipt has no lines.")
        invoice = (invoice_ref or "").strip() or None
        return ReceiptTransaction(
            id=None,
            supplier_ref=supplier,
            invoice_ref=invoice,
            status=ReceiptStatus.DRAFT,
            lines=parsed,
            draft_key=uuid.uuid4().hex,
        )

    def confirm_receipt(
        self,
        principal: Principal,
        supplier_ref: str,
        invoice_ref: Optional[str],
        lines: Iterable[ReceiptLine | dict],
    ) -> ReceiptTransaction:
        self.guard.authorize(principal, Requirement.ADMIN_ONLY)
        return self.confirm(principal, self.new_draft(supplier_ref, invoice_ref, lines))

    def confirm(self, principal: Principal, receipt: ReceiptTransaction) -> ReceiptTransaction:
        """
        Adds every received quantity to stock and records the cost price of
        each line in one unit of work. Returns a new CONFIRMED receipt; the
        draft passed in is left untouched, even on failure.
        """
        self.guard.authorize(principal, Requirement.ADMIN_ONLY)

        if receipt.is_confirmed:
            raise ReceiptStateError(f"Receipt {receipt.id} is already confirmed.")
        if not receipt.lines:
            raise ValidationError("Receipt has no lines.")
        if not receipt.draft_key:
            raise ValidationError("Receipt draft has no key; build it with new_draft().")
        receipt = replace(receipt, lines=tuple(_receipt_line(line) for line in receipt.lines))

        def work(uow: UnitOfWork) -> Result[ReceiptTransaction]:
            if receipt.id is not None:
                stored = uow.get_receipt(receipt.id)
                if stored is not None and stored.is_confirmed:
                    return Err(ReceiptStateError(f"Receipt {receipt.id} is already confirmed."))
            existing = uow.receipt_id_for_draft(receipt.draft_key)
            if existing is not None:
                return Err(ReceiptStateError(f"Draft already confirmed as receipt {existing}."))

            ts = now_iso()
            confirmed = replace(
                receipt,
                status=ReceiptStatus.CONFIRMED,
                timestamp=ts,
                confirmed_by=principal.user_ref,
            )
            receipt_id = uow.insert_receipt(confirmed, ts, principal.user_ref)

            for line in confirmed.lines:
                if uow.get_stock_item(line.item_id) is None:
                    return Err(NotFoundError(f"Stock item not found: {line.item_id}"))
                new_qty = self.ledger.increase(uow, line.item_id, line.quantity_received)
                uow.insert_receipt_line(receipt_id, line)
                uow.record_movement(
                    ts,
                    line.item_id,
                    MovementType.RECEIPT,
                    line.quantity_received,
                    new_qty,
                    line.unit_cost_price,
                    receipt_id,
                    principal.user_ref,
                )
                log.debug(
                    "receipt_line item_id=%s qty=%s unit_cost=%s stock_after=%s",
                    line.item_id, line.quantity_received, line.unit_cost_price, new_qty,
                )

            return Ok(replace(confirmed, id=receipt_id))

        outcome = self.uow_factory().run(work)
        if not outcome.ok:
            log.warning("receipt_rolled_back supplier=%s error=%s", receipt.supplier_ref, outcome.error)
        confirmed = outcome.unwrap()
        log.info(
            "receipt_confirmed receipt_id=%s lines=%s total_cost=%s actor=%s",
            confirmed.id, len(confirmed.lines), confirmed.total_cost, principal.user_ref,
        )
        return confirmed

    def get_receipt(self, receipt_id: int) -> ReceiptTransaction:
        receipt = self.repo.get_receipt(int(receipt_id))
        if not receipt:
            raise NotFoundError(f"Receipt not found: {receipt_id}")
        return receipt

    def list_receipts(self, principal: Principal, status: ReceiptStatus | None = None) -> list[ReceiptTransaction]:
        self.guard.authorize(principal, Requirement.ADMIN_ONLY)
        return self.repo.list_receipts(status)

    def list_receipts_between(self, principal: Principal, start_iso: str, end_iso: str) -> list[ReceiptTransaction]:
        self.guard.authorize(principal, Requirement.ADMIN_ONLY)
        return self.repo.list_receipts_between(start_iso, end_iso)
