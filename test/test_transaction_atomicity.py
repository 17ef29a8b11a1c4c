import sqlite3
import threading
from decimal import Decimal

import pytest
from conftest import add_item

from stockflow.domain.errors import InsufficientStockError, TransientStoreError
from stockflow.domain.models import CheckoutLine, CheckoutRequest, ReceiptLine
from stockflow.domain.result import Ok
from stockflow.repositories.sqlite_repo import SqliteRepository
from stockflow.repositories.unit_of_work import SqliteUnitOfWork
from stockflow.services.receipt_service import ReceiptService
from stockflow.services.return_service import ReturnService
from stockflow.services.sales_service import SalesService


class FailingUnitOfWork(SqliteUnitOfWork):
    """Fails on the n-th line insert, after earlier writes already ran."""

    def __init__(self, repo, error: Exception, fail_on: int = 2):
        super().__init__(repo)
        self.error = error
        self.fail_on = fail_on
        self.calls = 0

    def _maybe_fail(self):
        self.calls += 1
        if self.calls == self.fail_on:
            raise self.error

    def insert_sale_line(self, sale_id, line):
        super().insert_sale_line(sale_id, line)
        self._maybe_fail()

    def insert_receipt_line(self, receipt_id, line):
        super().insert_receipt_line(receipt_id, line)
        self._maybe_fail()

    def insert_return_line(self, return_id, line):
        super().insert_return_line(return_id, line)
        self._maybe_fail()


def test_checkout_rolls_back_when_a_line_write_fails(repo, cashier):
    a = add_item(repo, code="A", qty=10)
    b = add_item(repo, code="B", qty=10)
    sales = SalesService(repo, uow_factory=lambda: FailingUnitOfWork(repo, RuntimeError("boom")))

    with pytest.raises(RuntimeError, match="boom"):
        sales.checkout(cashier, CheckoutRequest("c", (CheckoutLine(a, 2), CheckoutLine(b, 3))))

    assert repo.get_stock_item(a).quantity_on_hand == 10
    assert repo.get_stock_item(b).quantity_on_hand == 10
    assert repo.list_sales_between("2000-01-01", "2100-01-01") == []
    assert repo.movements_for_item(a) == []


def test_store_failure_mid_receipt_is_transient_and_rolled_back(repo, admin):
    a = add_item(repo, code="A")
    b = add_item(repo, code="B")
    receipts = ReceiptService(
        repo, uow_factory=lambda: FailingUnitOfWork(repo, sqlite3.OperationalError("disk I/O error"))
    )

    with pytest.raises(TransientStoreError):
        receipts.confirm_receipt(
            admin, "ACME", None, [ReceiptLine(a, 5, Decimal("2.00")), ReceiptLine(b, 5, Decimal("2.00"))]
        )

    assert repo.get_stock_item(a).quantity_on_hand == 0
    assert repo.list_receipts() == []


def test_return_rolls_back_when_the_last_line_write_fails(repo, admin, cashier):
    a = add_item(repo, code="A", qty=10)
    b = add_item(repo, code="B", qty=10)
    sale = SalesService(repo).checkout(cashier, CheckoutRequest("c", (CheckoutLine(a, 2), CheckoutLine(b, 3))))
    moves_before = len(repo.movements_for_item(a)) + len(repo.movements_for_item(b))
    returns = ReturnService(repo, uow_factory=lambda: FailingUnitOfWork(repo, RuntimeError("boom")))

    with pytest.raises(RuntimeError, match="boom"):
        returns.process_return(admin, sale.id, [{"item_id": a, "qty": 2}, {"item_id": b, "qty": 3}])

    assert repo.get_stock_item(a).quantity_on_hand == 8
    assert repo.get_stock_item(b).quantity_on_hand == 7
    assert returns.returns_for_sale(sale.id) == []
    assert len(repo.movements_for_item(a)) + len(repo.movements_for_item(b)) == moves_before
    assert returns.returnable_quantities(sale.id) == {a: 2, b: 3}


def test_held_write_lock_gives_transient_error(tmp_path, cashier):
    db = tmp_path / "locked.db"
    SqliteRepository(db).init_db()
    repo = SqliteRepository(db, lock_timeout=0.1)
    pid = add_item(repo, qty=5)

    blocker = sqlite3.connect(str(db), isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(TransientStoreError):
            SalesService(repo).checkout(cashier, CheckoutRequest("c", (CheckoutLine(pid, 1),)))
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()

    assert repo.get_stock_item(pid).quantity_on_hand == 5


def test_err_result_rolls_back_writes(repo):
    pid = add_item(repo, qty=5)

    class Boom(Exception):
        pass

    def work(uow):
        uow.subtract_quantity(pid, 5)
        raise Boom()

    with pytest.raises(Boom):
        SqliteUnitOfWork(repo).run(work)
    assert repo.get_stock_item(pid).quantity_on_hand == 5

    outcome = SqliteUnitOfWork(repo).run(lambda uow: Ok(uow.subtract_quantity(pid, 2)))
    assert outcome.unwrap() == 3


def test_conditional_decrement_refuses_to_go_negative(repo):
    pid = add_item(repo, qty=2)

    with SqliteUnitOfWork(repo) as uow:
        assert uow.subtract_quantity(pid, 3) is None
        assert uow.subtract_quantity(pid, 2) == 0

    assert repo.get_stock_item(pid).quantity_on_hand == 0


def test_concurrent_checkouts_never_oversell(tmp_path, cashier):
    db = tmp_path / "race.db"
    repo = SqliteRepository(db, lock_timeout=10.0)
    repo.init_db()
    pid = add_item(repo, qty=5)

    successes = []
    failures = []
    lock = threading.Lock()

    def buyer():
        sales = SalesService(SqliteRepository(db, lock_timeout=10.0))
        try:
            sale = sales.checkout(cashier, CheckoutRequest("c", (CheckoutLine(pid, 1),)))
        except InsufficientStockError as exc:
            with lock:
                failures.append(exc)
        else:
            with lock:
                successes.append(sale.id)

    threads = [threading.Thread(target=buyer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(successes) == 5
    assert len(failures) == 3
    assert repo.get_stock_item(pid).quantity_on_hand == 0
