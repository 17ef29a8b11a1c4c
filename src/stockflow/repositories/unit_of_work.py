from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Protocol, TypeVar

from stockflow.domain.errors import AppError, TransientStoreError, ValidationError
from stockflow.domain.models import (
    Customer,
    MovementType,
    PaymentType,
    ReceiptLine,
    ReceiptStatus,
    ReceiptTransaction,
    ReturnLine,
    SaleLine,
    SaleTransaction,
    StockItem,
)
from stockflow.domain.result import Err, Result
from stockflow.repositories.sqlite_repo import SqliteRepository, money_text

log = logging.getLogger(__name__)

T = TypeVar("T")


def now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


def translate_store_error(exc: sqlite3.Error) -> AppError:
    if isinstance(exc, sqlite3.IntegrityError):
        return ValidationError(f"Store rejected the write: {exc}")
    return TransientStoreError(f"Store unavailable, nothing was committed: {exc}")


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def run(self, work: Callable[["UnitOfWork"], Result[T]]) -> Result[T]: ...
    def rollback(self) -> None: ...
    def get_stock_item(self, item_id: int) -> Optional[StockItem]: ...
    def add_quantity(self, item_id: int, quantity: int) -> Optional[int]: ...
    def subtract_quantity(self, item_id: int, quantity: int) -> Optional[int]: ...


class SqliteUnitOfWork:
    """One SQLite transaction holding the database write lock.

    ``BEGIN IMMEDIATE`` takes the write lock before the first read, so a
    stock check and the write that follows it cannot interleave with another
    unit of work. Leaving the ``with`` block normally commits; an exception
    or an explicit :meth:`rollback` discards everything.
    """

    def __init__(self, repo: SqliteRepository):
        self.repo = repo
        self._conn: sqlite3.Connection | None = None
        self._cur: sqlite3.Cursor | None = None
        self._finished = False

    def __enter__(self) -> "SqliteUnitOfWork":
        conn = self.repo._conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error:
            conn.close()
            raise
        self._conn = conn
        self._cur = conn.cursor()
        self._finished = False
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self._conn
        if conn is None:
            return None
        try:
            if not self._finished:
                if exc_type is None:
                    conn.execute("COMMIT")
                else:
                    self._rollback_quietly(conn)
        finally:
            self._finished = True
            conn.close()
            self._conn = None
            self._cur = None
        return None

    def _rollback_quietly(self, conn: sqlite3.Connection) -> None:
        # an error is already propagating; closing the connection discards the transaction anyway
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            log.warning("rollback_failed error=%s", exc)

    def rollback(self) -> None:
        if self._conn is not None and not self._finished:
            self._conn.execute("ROLLBACK")
            self._finished = True

    def run(self, work: Callable[["SqliteUnitOfWork"], Result[T]]) -> Result[T]:
        """Execute ``work`` inside this unit of work.

        ``Ok`` commits, ``Err`` rolls back. Engine errors raised by the work
        and low-level store failures come back as ``Err`` as well; anything
        else rolls back and propagates.
        """
        try:
            with self as uow:
                outcome = work(uow)
                if not outcome.ok:
                    uow.rollback()
                return outcome
        except AppError as exc:
            return Err(exc)
        except sqlite3.Error as exc:
            return Err(translate_store_error(exc))

    @property
    def cur(self) -> sqlite3.Cursor:
        if self._cur is None:
            raise RuntimeError("Unit of work is not active.")
        return self._cur

    # ---------- Stock ----------
    def get_stock_item(self, item_id: int) -> Optional[StockItem]:
        return self.repo.fetch_stock_item(self.cur, item_id)

    def _quantity(self, item_id: int) -> int:
        self.cur.execute("SELECT quantity_on_hand FROM stock_items WHERE id=?", (int(item_id),))
        return int(self.cur.fetchone()[0])

    def add_quantity(self, item_id: int, quantity: int) -> Optional[int]:
        self.cur.execute(
            "UPDATE stock_items SET quantity_on_hand = quantity_on_hand + ? WHERE id = ? AND active=1",
            (int(quantity), int(item_id)),
        )
        if self.cur.rowcount == 0:
            return None
        return self._quantity(item_id)

    def subtract_quantity(self, item_id: int, quantity: int) -> Optional[int]:
        """Conditional decrement; ``None`` when the row is missing or short."""
        self.cur.execute(
            """
            UPDATE stock_items
            SET quantity_on_hand = quantity_on_hand - ?
            WHERE id = ? AND active=1 AND quantity_on_hand >= ?
            """,
            (int(quantity), int(item_id), int(quantity)),
        )
        if self.cur.rowcount == 0:
            return None
        return self._quantity(item_id)

    def record_movement(
        self,
        timestamp: str,
        item_id: int,
        movement_type: MovementType,
        quantity_delta: int,
        quantity_after: int,
        unit_value: Decimal,
        reference_id: int,
        actor_ref: Optional[str],
    ) -> None:
        self.cur.execute(
            """
            INSERT INTO stock_movements (
                timestamp, item_id, movement_type, quantity_delta, quantity_after,
                unit_value, reference_id, actor_ref
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                timestamp,
                int(item_id),
                MovementType(movement_type).value,
                int(quantity_delta),
                int(quantity_after),
                money_text(unit_value),
                int(reference_id),
                actor_ref,
            ),
        )

    # ---------- Receipts ----------
    def get_receipt(self, receipt_id: int) -> Optional[ReceiptTransaction]:
        return self.repo.fetch_receipt(self.cur, receipt_id)

    def receipt_id_for_draft(self, draft_key: str) -> Optional[int]:
        self.cur.execute("SELECT id FROM receipts WHERE draft_key = ?", (draft_key,))
        r = self.cur.fetchone()
        return int(r[0]) if r else None

    def insert_receipt(self, receipt: ReceiptTransaction, timestamp: str, confirmed_by: Optional[str]) -> int:
        self.cur.execute(
            """
            INSERT INTO receipts (supplier_ref, invoice_ref, timestamp, status, total_cost, confirmed_by, draft_key)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                receipt.supplier_ref,
                receipt.invoice_ref,
                timestamp,
                ReceiptStatus(receipt.status).value,
                money_text(receipt.total_cost),
                confirmed_by,
                receipt.draft_key,
            ),
        )
        return int(self.cur.lastrowid)

    def insert_receipt_line(self, receipt_id: int, line: ReceiptLine) -> None:
        self.cur.execute(
            """
            INSERT INTO receipt_lines (receipt_id, item_id, quantity_received, unit_cost_price)
            VALUES (?, ?, ?, ?)
            """,
            (int(receipt_id), int(line.item_id), int(line.quantity_received), money_text(line.unit_cost_price)),
        )

    # ---------- Sales ----------
    def get_sale(self, sale_id: int) -> Optional[SaleTransaction]:
        return self.repo.fetch_sale(self.cur, sale_id)

    def insert_sale(
        self,
        timestamp: str,
        cashier_ref: str,
        customer_id: Optional[int],
        payment_type: PaymentType,
        discount_amount: Decimal,
        subtotal: Decimal,
        total_amount: Decimal,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO sales (timestamp, cashier_ref, customer_id, payment_type, discount_amount, subtotal, total_amount)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                timestamp,
                cashier_ref,
                customer_id,
                PaymentType(payment_type).value,
                money_text(discount_amount),
                money_text(subtotal),
                money_text(total_amount),
            ),
        )
        return int(self.cur.lastrowid)

    def insert_sale_line(self, sale_id: int, line: SaleLine) -> None:
        self.cur.execute(
            """
            INSERT INTO sale_lines (sale_id, item_id, quantity_sold, unit_price_at_sale)
            VALUES (?, ?, ?, ?)
            """,
            (int(sale_id), int(line.item_id), int(line.quantity_sold), money_text(line.unit_price_at_sale)),
        )

    # ---------- Customers ----------
    def get_customer(self, customer_id: int) -> Optional[Customer]:
        return self.repo.fetch_customer(self.cur, customer_id)

    def record_customer_visit(self, customer_id: int, amount: Decimal) -> Optional[Customer]:
        customer = self.get_customer(customer_id)
        if customer is None:
            return None
        total = customer.total_purchases + amount
        self.cur.execute(
            "UPDATE customers SET visit_count = visit_count + 1, total_purchases = ? WHERE id = ?",
            (money_text(total), int(customer_id)),
        )
        return self.get_customer(customer_id)

    # ---------- Returns ----------
    def returned_quantities(self, sale_id: int) -> dict[int, int]:
        return self.repo.fetch_returned_quantities(self.cur, sale_id)

    def insert_return(self, sale_id: int, timestamp: str, processed_by: str, refund_amount: Decimal) -> int:
        self.cur.execute(
            """
            INSERT INTO returns (sale_id, timestamp, processed_by, refund_amount)
            VALUES (?, ?, ?, ?)
            """,
            (int(sale_id), timestamp, processed_by, money_text(refund_amount)),
        )
        return int(self.cur.lastrowid)

    def insert_return_line(self, return_id: int, line: ReturnLine) -> None:
        self.cur.execute(
            """
            INSERT INTO return_lines (return_id, item_id, quantity_returned, unit_price_at_sale)
            VALUES (?, ?, ?, ?)
            """,
            (int(return_id), int(line.item_id), int(line.quantity_returned), money_text(line.unit_price_at_sale)),
        )
