from __future__ import annotations

import sqlite3
import shutil
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from stockflow.domain.errors import ValidationError
from stockflow.domain.models import (
    Customer,
    MovementType,
    PaymentType,
    ReceiptLine,
    ReceiptStatus,
    ReceiptTransaction,
    ReturnLine,
    ReturnTransaction,
    SaleLine,
    SaleTransaction,
    StockItem,
    StockMovement,
)
from stockflow.domain.money import quantize_money

STOCK_ITEM_COLUMNS = (
    "id, item_code, name, unit_selling_price, quantity_on_hand, low_stock_threshold, size, color, active"
)


def money_text(amount: Decimal) -> str:
    return str(quantize_money(amount))


def stock_item_from_row(r) -> StockItem:
    return StockItem(
        id=int(r[0]),
        item_code=str(r[1]),
        name=str(r[2]),
        unit_selling_price=Decimal(r[3]),
        quantity_on_hand=int(r[4]),
        low_stock_threshold=int(r[5]),
        size=(r[6] if r[6] is not None else None),
        color=(r[7] if r[7] is not None else None),
        active=int(r[8]),
    )


def customer_from_row(r) -> Customer:
    return Customer(
        id=int(r[0]),
        name=str(r[1]),
        phone=(r[2] if r[2] is not None else None),
        email=(r[3] if r[3] is not None else None),
        total_purchases=Decimal(r[4]),
        visit_count=int(r[5]),
    )


class SqliteRepository:
    def __init__(self, db_path: Path | str, lock_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.lock_timeout = float(lock_timeout)

    def _conn(self) -> sqlite3.Connection:
        # transactions are opened explicitly (BEGIN / BEGIN IMMEDIATE)
        conn = sqlite3.connect(self.db_path, timeout=self.lock_timeout, isolation_level=None)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_returns_and_movements),
                (3, self._migration_v3_receipt_draft_keys),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            cur.execute("COMMIT")
        except Exception as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            conn.close()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS stock_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_code TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            size TEXT,
            color TEXT,
            unit_selling_price TEXT NOT NULL,
            quantity_on_hand INTEGER NOT NULL DEFAULT 0 CHECK(quantity_on_hand >= 0),
            low_stock_threshold INTEGER NOT NULL DEFAULT 5 CHECK(low_stock_threshold >= 0),
            active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1))
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS customers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            phone TEXT UNIQUE,
            email TEXT,
            total_purchases TEXT NOT NULL DEFAULT '0.00',
            visit_count INTEGER NOT NULL DEFAULT 0 CHECK(visit_count >= 0)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS receipts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            supplier_ref TEXT NOT NULL,
            invoice_ref TEXT,
            timestamp TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('DRAFT','CONFIRMED')),
            total_cost TEXT NOT NULL,
            confirmed_by TEXT
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS receipt_lines (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            receipt_id INTEGER NOT NULL,
            item_id INTEGER NOT NULL,
            quantity_received INTEGER NOT NULL CHECK(quantity_received > 0),
            unit_cost_price TEXT NOT NULL,
            FOREIGN KEY(receipt_id) REFERENCES receipts(id) ON DELETE CASCADE,
            FOREIGN KEY(item_id) REFERENCES stock_items(id)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sales (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            cashier_ref TEXT NOT NULL,
            customer_id INTEGER,
            payment_type TEXT NOT NULL CHECK(payment_type IN ('CASH','CARD','SPLIT')),
            discount_amount TEXT NOT NULL,
            subtotal TEXT NOT NULL,
            total_amount TEXT NOT NULL,
            FOREIGN KEY(customer_id) REFERENCES customers(id)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sale_lines (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sale_id INTEGER NOT NULL,
            item_id INTEGER NOT NULL,
            quantity_sold INTEGER NOT NULL CHECK(quantity_sold > 0),
            unit_price_at_sale TEXT NOT NULL,
            FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
            FOREIGN KEY(item_id) REFERENCES stock_items(id)
        )
        """
        )

        cur.execute("CREATE INDEX IF NOT EXISTS idx_receipt_lines_item ON receipt_lines(item_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sale_lines_sale ON sale_lines(sale_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_timestamp ON sales(timestamp)")

    def _migration_v2_returns_and_movements(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS returns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                timestamp TEXT NOT NULL,
                processed_by TEXT NOT NULL,
                refund_amount TEXT NOT NULL,
                FOREIGN KEY(sale_id) REFERENCES sales(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS return_lines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                return_id INTEGER NOT NULL,
                item_id INTEGER NOT NULL,
                quantity_returned INTEGER NOT NULL CHECK(quantity_returned > 0),
                unit_price_at_sale TEXT NOT NULL,
                FOREIGN KEY(return_id) REFERENCES returns(id) ON DELETE CASCADE,
                FOREIGN KEY(item_id) REFERENCES stock_items(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                item_id INTEGER NOT NULL,
                movement_type TEXT NOT NULL CHECK(movement_type IN ('receipt','sale','return')),
                quantity_delta INTEGER NOT NULL,
                quantity_after INTEGER NOT NULL CHECK(quantity_after >= 0),
                unit_value TEXT NOT NULL,
                reference_id INTEGER NOT NULL,
                actor_ref TEXT,
                FOREIGN KEY(item_id) REFERENCES stock_items(id)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_returns_sale ON returns(sale_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_item ON stock_movements(item_id)")

    def _migration_v3_receipt_draft_keys(self, cur: sqlite3.Cursor) -> None:
        cur.execute("PRAGMA table_info(receipts)")
        if "draft_key" not in {str(r[1]) for r in cur.fetchall()}:
            cur.execute("ALTER TABLE receipts ADD COLUMN draft_key TEXT")
        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_receipts_draft_key ON receipts(draft_key)")

    # ---------- Row readers shared with the unit of work ----------
    def fetch_stock_item(
        self, cur: sqlite3.Cursor, item_id: int, include_inactive: bool = False
    ) -> Optional[StockItem]:
        active_clause = "" if include_inactive else "active=1 AND "
        cur.execute(
            f"SELECT {STOCK_ITEM_COLUMNS} FROM stock_items WHERE {active_clause}id=?",
            (int(item_id),),
        )
        r = cur.fetchone()
        return stock_item_from_row(r) if r else None

    def fetch_customer(self, cur: sqlite3.Cursor, customer_id: int) -> Optional[Customer]:
        cur.execute(
            "SELECT id, name, phone, email, total_purchases, visit_count FROM customers WHERE id=?",
            (int(customer_id),),
        )
        r = cur.fetchone()
        return customer_from_row(r) if r else None

    def fetch_receipt(self, cur: sqlite3.Cursor, receipt_id: int) -> Optional[ReceiptTransaction]:
        cur.execute(
            """
            SELECT id, supplier_ref, invoice_ref, timestamp, status, confirmed_by, draft_key
            FROM receipts
            WHERE id = ?
            """,
            (int(receipt_id),),
        )
        r = cur.fetchone()
        if not r:
            return None
        cur.execute(
            """
            SELECT item_id, quantity_received, unit_cost_price
            FROM receipt_lines
            WHERE receipt_id = ?
            ORDER BY id
            """,
            (int(receipt_id),),
        )
        lines = tuple(
            ReceiptLine(item_id=int(ln[0]), quantity_received=int(ln[1]), unit_cost_price=Decimal(ln[2]))
            for ln in cur.fetchall()
        )
        return ReceiptTransaction(
            id=int(r[0]),
            supplier_ref=str(r[1]),
            invoice_ref=(r[2] if r[2] is not None else None),
            timestamp=str(r[3]),
            status=ReceiptStatus(r[4]),
            lines=lines,
            confirmed_by=(r[5] if r[5] is not None else None),
            draft_key=(r[6] if r[6] is not None else None),
        )

    def fetch_sale(self, cur: sqlite3.Cursor, sale_id: int) -> Optional[SaleTransaction]:
        cur.execute(
            """
            SELECT id, timestamp, cashier_ref, customer_id, payment_type,
                   discount_amount, subtotal, total_amount
            FROM sales
            WHERE id = ?
            """,
            (int(sale_id),),
        )
        r = cur.fetchone()
        if not r:
            return None
        return SaleTransaction(
            id=int(r[0]),
            timestamp=str(r[1]),
            cashier_ref=str(r[2]),
            customer_id=(int(r[3]) if r[3] is not None else None),
            payment_type=PaymentType(r[4]),
            discount_amount=Decimal(r[5]),
            subtotal=Decimal(r[6]),
            total_amount=Decimal(r[7]),
            lines=self.fetch_sale_lines(cur, int(r[0])),
        )

    def fetch_sale_lines(self, cur: sqlite3.Cursor, sale_id: int) -> tuple[SaleLine, ...]:
        cur.execute(
            """
            SELECT item_id, quantity_sold, unit_price_at_sale
            FROM sale_lines
            WHERE sale_id = ?
            ORDER BY id
            """,
            (int(sale_id),),
        )
        return tuple(
            SaleLine(item_id=int(ln[0]), quantity_sold=int(ln[1]), unit_price_at_sale=Decimal(ln[2]))
            for ln in cur.fetchall()
        )

    def fetch_returned_quantities(self, cur: sqlite3.Cursor, sale_id: int) -> dict[int, int]:
        cur.execute(
            """
            SELECT rl.item_id, COALESCE(SUM(rl.quantity_returned), 0)
            FROM return_lines rl
            JOIN returns r ON r.id = rl.return_id
            WHERE r.sale_id = ?
            GROUP BY rl.item_id
            """,
            (int(sale_id),),
        )
        return {int(r[0]): int(r[1]) for r in cur.fetchall()}

    # ---------- Stock items ----------
    def add_stock_item(
        self,
        item_code: str,
        name: str,
        unit_selling_price: Decimal,
        quantity_on_hand: int = 0,
        low_stock_threshold: int = 5,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> int:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO stock_items (item_code, name, size, color, unit_selling_price, quantity_on_hand, low_stock_threshold)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (item_code, name, size, color, money_text(unit_selling_price), int(quantity_on_hand), int(low_stock_threshold)),
            )
            return int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Stock item rejected ({item_code}): {exc}") from exc
        finally:
            conn.close()

    def get_stock_item(self, item_id: int, include_inactive: bool = False) -> Optional[StockItem]:
        """Active items only unless ``include_inactive``; history readers need deactivated ones too."""
        conn = self._conn()
        item = self.fetch_stock_item(conn.cursor(), item_id, include_inactive=include_inactive)
        conn.close()
        return item

    def get_stock_item_by_code(self, item_code: str) -> Optional[StockItem]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {STOCK_ITEM_COLUMNS} FROM stock_items WHERE active=1 AND item_code=?",
            (item_code,),
        )
        r = cur.fetchone()
        conn.close()
        return stock_item_from_row(r) if r else None

    def list_stock_items(self) -> list[StockItem]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {STOCK_ITEM_COLUMNS} FROM stock_items WHERE active=1 ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [stock_item_from_row(r) for r in rows]

    def list_low_stock_items(self) -> list[StockItem]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {STOCK_ITEM_COLUMNS}
            FROM stock_items
            WHERE active=1 AND quantity_on_hand <= low_stock_threshold
            ORDER BY quantity_on_hand ASC, name ASC
            """
        )
        rows = cur.fetchall()
        conn.close()
        return [stock_item_from_row(r) for r in rows]

    def deactivate_stock_item(self, item_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("UPDATE stock_items SET active=0 WHERE id=? AND active=1", (int(item_id),))
        changed = cur.rowcount > 0
        conn.close()
        return bool(changed)

    # ---------- Customers ----------
    def add_customer(self, name: str, phone: Optional[str] = None, email: Optional[str] = None) -> int:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO customers (name, phone, email) VALUES (?, ?, ?)",
                (name, phone, email),
            )
            return int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Customer rejected ({name}): {exc}") from exc
        finally:
            conn.close()

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        conn = self._conn()
        customer = self.fetch_customer(conn.cursor(), customer_id)
        conn.close()
        return customer

    def list_customers(self) -> list[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name, phone, email, total_purchases, visit_count FROM customers ORDER BY id")
        rows = cur.fetchall()
        conn.close()
        return [customer_from_row(r) for r in rows]

    # ---------- Receipts ----------
    def get_receipt(self, receipt_id: int) -> Optional[ReceiptTransaction]:
        conn = self._conn()
        receipt = self.fetch_receipt(conn.cursor(), receipt_id)
        conn.close()
        return receipt

    def list_receipts(self, status: Optional[ReceiptStatus] = None) -> list[ReceiptTransaction]:
        conn = self._conn()
        cur = conn.cursor()
        if status is None:
            cur.execute("SELECT id FROM receipts ORDER BY timestamp DESC, id DESC")
        else:
            cur.execute(
                "SELECT id FROM receipts WHERE status=? ORDER BY timestamp DESC, id DESC",
                (ReceiptStatus(status).value,),
            )
        ids = [int(r[0]) for r in cur.fetchall()]
        receipts = [self.fetch_receipt(cur, rid) for rid in ids]
        conn.close()
        return [r for r in receipts if r is not None]

    def list_receipts_between(self, start_iso: str, end_iso: str) -> list[ReceiptTransaction]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id FROM receipts
            WHERE timestamp >= ? AND timestamp < ?
            ORDER BY timestamp DESC, id DESC
            """,
            (start_iso, end_iso),
        )
        ids = [int(r[0]) for r in cur.fetchall()]
        receipts = [self.fetch_receipt(cur, rid) for rid in ids]
        conn.close()
        return [r for r in receipts if r is not None]

    def confirmed_receipt_costs(self, item_id: int) -> list[tuple[int, Decimal]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT rl.quantity_received, rl.unit_cost_price
            FROM receipt_lines rl
            JOIN receipts r ON r.id = rl.receipt_id
            WHERE rl.item_id = ? AND r.status = 'CONFIRMED'
            ORDER BY rl.id
            """,
            (int(item_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [(int(r[0]), Decimal(r[1])) for r in rows]

    # ---------- Sales ----------
    def get_sale(self, sale_id: int) -> Optional[SaleTransaction]:
        conn = self._conn()
        sale = self.fetch_sale(conn.cursor(), sale_id)
        conn.close()
        return sale

    def list_sales_between(self, start_iso: str, end_iso: str) -> list[SaleTransaction]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id FROM sales
            WHERE timestamp >= ? AND timestamp < ?
            ORDER BY timestamp DESC, id DESC
        """,
            (start_iso, end_iso),
        )
        ids = [int(r[0]) for r in cur.fetchall()]
        sales = [self.fetch_sale(cur, sid) for sid in ids]
        conn.close()
        return [s for s in sales if s is not None]

    # ---------- Returns ----------
    def returned_quantities(self, sale_id: int) -> dict[int, int]:
        conn = self._conn()
        quantities = self.fetch_returned_quantities(conn.cursor(), sale_id)
        conn.close()
        return quantities

    def returns_for_sale(self, sale_id: int) -> list[ReturnTransaction]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, sale_id, timestamp, processed_by, refund_amount
            FROM returns
            WHERE sale_id = ?
            ORDER BY id
            """,
            (int(sale_id),),
        )
        headers = cur.fetchall()
        out: list[ReturnTransaction] = []
        for h in headers:
            cur.execute(
                """
                SELECT item_id, quantity_returned, unit_price_at_sale
                FROM return_lines
                WHERE return_id = ?
                ORDER BY id
                """,
                (int(h[0]),),
            )
            lines = tuple(
                ReturnLine(item_id=int(ln[0]), quantity_returned=int(ln[1]), unit_price_at_sale=Decimal(ln[2]))
                for ln in cur.fetchall()
            )
            out.append(
                ReturnTransaction(
                    id=int(h[0]),
                    sale_id=int(h[1]),
                    timestamp=str(h[2]),
                    processed_by=str(h[3]),
                    refund_amount=Decimal(h[4]),
                    lines=lines,
                )
            )
        conn.close()
        return out

    # ---------- Movements ----------
    def movements_for_item(self, item_id: int) -> list[StockMovement]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, timestamp, item_id, movement_type, quantity_delta, quantity_after,
                   unit_value, reference_id, actor_ref
            FROM stock_movements
            WHERE item_id = ?
            ORDER BY id
            """,
            (int(item_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            StockMovement(
                id=int(r[0]),
                timestamp=str(r[1]),
                item_id=int(r[2]),
                movement_type=MovementType(r[3]),
                quantity_delta=int(r[4]),
                quantity_after=int(r[5]),
                unit_value=Decimal(r[6]),
                reference_id=int(r[7]),
                actor_ref=(r[8] if r[8] is not None else None),
            )
            for r in rows
        ]

    def list_top_customers(self, limit: int = 10) -> list[Customer]:
        customers = self.list_customers()
        # total_purchases is stored as text, sort in Python to keep Decimal ordering
        customers.sort(key=lambda c: (-c.total_purchases, c.name))
        return customers[: int(limit)]
