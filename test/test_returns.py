from decimal import Decimal

import pytest
from conftest import add_item

from stockflow.domain.errors import NotFoundError, ValidationError
from stockflow.domain.models import CheckoutLine, CheckoutRequest, MovementType, ReturnRequestLine
from stockflow.services.return_service import ReturnService
from stockflow.services.sales_service import SalesService


def _sell(repo, cashier, *lines):
    request = CheckoutRequest("cashier-1", tuple(CheckoutLine(pid, qty) for pid, qty in lines))
    return SalesService(repo).checkout(cashier, request)


def test_checkout_then_full_return_restores_quantity(repo, admin, cashier):
    pid = add_item(repo, price="30.00", qty=20)
    sale = _sell(repo, cashier, (pid, 5))
    assert repo.get_stock_item(pid).quantity_on_hand == 15

    ret = ReturnService(repo).process_return(admin, sale.id, [ReturnRequestLine(pid, 5)])

    assert repo.get_stock_item(pid).quantity_on_hand == 20
    assert ret.refund_amount == Decimal("150.00")
    assert ret.processed_by == "admin-1"

    kinds = [(m.movement_type, m.quantity_delta) for m in repo.movements_for_item(pid)]
    assert kinds == [(MovementType.SALE, -5), (MovementType.RETURN, 5)]


def test_return_uses_price_at_sale_not_current_price(repo, admin, cashier):
    pid = add_item(repo, price="10.00", qty=5)
    sale = _sell(repo, cashier, (pid, 2))

    conn = repo._conn()
    conn.execute("UPDATE stock_items SET unit_selling_price='99.00' WHERE id=?", (pid,))
    conn.close()

    ret = ReturnService(repo).process_return(admin, sale.id, [{"item_id": pid, "qty": 1}])

    assert ret.refund_amount == Decimal("10.00")


def test_original_sale_is_left_unchanged(repo, admin, cashier):
    pid = add_item(repo, price="8.00", qty=5)
    sale = _sell(repo, cashier, (pid, 3))

    ReturnService(repo).process_return(admin, sale.id, [{"item_id": pid, "qty": 2}])

    stored = SalesService(repo).get_sale(sale.id)
    assert stored.total_amount == Decimal("24.00")
    assert stored.lines[0].quantity_sold == 3


def test_over_return_is_rejected(repo, admin, cashier):
    pid = add_item(repo, qty=10)
    sale = _sell(repo, cashier, (pid, 2))
    returns = ReturnService(repo)

    with pytest.raises(ValidationError, match="returnable: 2"):
        returns.process_return(admin, sale.id, [{"item_id": pid, "qty": 3}])

    assert repo.get_stock_item(pid).quantity_on_hand == 8
    assert returns.returns_for_sale(sale.id) == []


def test_over_return_is_counted_across_returns(repo, admin, cashier):
    pid = add_item(repo, qty=10)
    sale = _sell(repo, cashier, (pid, 3))
    returns = ReturnService(repo)

    returns.process_return(admin, sale.id, [{"item_id": pid, "qty": 2}])
    assert returns.returnable_quantities(sale.id) == {pid: 1}

    with pytest.raises(ValidationError):
        returns.process_return(admin, sale.id, [{"item_id": pid, "qty": 1}, {"item_id": pid, "qty": 1}])

    returns.process_return(admin, sale.id, [{"item_id": pid, "qty": 1}])
    assert returns.returnable_quantities(sale.id) == {pid: 0}
    assert repo.get_stock_item(pid).quantity_on_hand == 10
    assert len(returns.returns_for_sale(sale.id)) == 2


def test_return_of_item_not_on_sale(repo, admin, cashier):
    a = add_item(repo, code="A", qty=5)
    b = add_item(repo, code="B", qty=5)
    sale = _sell(repo, cashier, (a, 1))

    with pytest.raises(ValidationError, match="was not sold"):
        ReturnService(repo).process_return(admin, sale.id, [{"item_id": b, "qty": 1}])

    assert repo.get_stock_item(b).quantity_on_hand == 5


def test_return_for_unknown_sale(repo, admin):
    returns = ReturnService(repo)

    with pytest.raises(NotFoundError):
        returns.process_return(admin, 404, [{"item_id": 1, "qty": 1}])

    with pytest.raises(ValidationError, match="Return has no lines"):
        returns.process_return(admin, 404, [])


@pytest.mark.parametrize("line", [{"item_id": 1, "qty": 0.5}, {"item_id": 1, "qty": "x"}, {"qty": 1}])
def test_malformed_return_line_is_a_validation_error(repo, admin, cashier, line):
    pid = add_item(repo, qty=5)
    sale = _sell(repo, cashier, (pid, 2))

    with pytest.raises(ValidationError):
        ReturnService(repo).process_return(admin, sale.id, [line])

    assert repo.get_stock_item(pid).quantity_on_hand == 3
