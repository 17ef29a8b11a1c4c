from decimal import Decimal

import pytest
from conftest import add_item

from stockflow.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from stockflow.domain.models import CheckoutLine, CheckoutRequest, MovementType, PaymentType
from stockflow.services.sales_service import SalesService


def _request(*lines, **kwargs):
    return CheckoutRequest("cashier-1", tuple(CheckoutLine(pid, qty) for pid, qty in lines), **kwargs)


def test_insufficient_stock_leaves_quantity_untouched(repo, cashier):
    pid = add_item(repo, code="SHIRT-1", qty=3)
    sales = SalesService(repo)

    with pytest.raises(InsufficientStockError) as info:
        sales.checkout(cashier, _request((pid, 5)))

    assert info.value.available == 3
    assert info.value.requested == 5
    assert "SHIRT-1" in str(info.value)
    assert repo.get_stock_item(pid).quantity_on_hand == 3
    assert sales.list_sales_between("2000-01-01", "2100-01-01") == []


def test_multi_line_checkout_is_all_or_nothing(repo, cashier):
    a = add_item(repo, code="A", qty=10)
    b = add_item(repo, code="B", qty=1)
    sales = SalesService(repo)

    with pytest.raises(InsufficientStockError):
        sales.checkout(cashier, _request((a, 4), (b, 2)))

    assert repo.get_stock_item(a).quantity_on_hand == 10
    assert repo.get_stock_item(b).quantity_on_hand == 1
    assert repo.movements_for_item(a) == []


def test_repeated_lines_are_checked_against_their_sum(repo, cashier):
    pid = add_item(repo, qty=5)

    with pytest.raises(InsufficientStockError) as info:
        SalesService(repo).checkout(cashier, _request((pid, 3), (pid, 3)))

    assert info.value.requested == 6
    assert repo.get_stock_item(pid).quantity_on_hand == 5


def test_checkout_snapshots_price_and_totals(repo, cashier):
    a = add_item(repo, code="A", price="19.99", qty=10)
    b = add_item(repo, code="B", price="5.50", qty=10)
    sales = SalesService(repo)

    sale = sales.checkout(cashier, _request((a, 2), (b, 3), payment_type="card", discount_amount="4.00"))

    assert sale.payment_type is PaymentType.CARD
    assert sale.subtotal == Decimal("56.48")
    assert sale.discount_amount == Decimal("4.00")
    assert sale.total_amount == Decimal("52.48")
    assert repo.get_stock_item(a).quantity_on_hand == 8
    assert repo.get_stock_item(b).quantity_on_hand == 7

    stored = sales.get_sale(sale.id)
    assert stored.total_amount == Decimal("52.48")
    assert [(ln.item_id, ln.quantity_sold, ln.unit_price_at_sale) for ln in stored.lines] == [
        (a, 2, Decimal("19.99")),
        (b, 3, Decimal("5.50")),
    ]

    moves = repo.movements_for_item(a)
    assert [(m.movement_type, m.quantity_delta, m.quantity_after) for m in moves] == [(MovementType.SALE, -2, 8)]


def test_discount_is_not_capped_by_subtotal(repo, cashier):
    pid = add_item(repo, price="10.00", qty=2)

    sale = SalesService(repo).checkout(cashier, _request((pid, 1), discount_amount=Decimal("15.00")))

    assert sale.total_amount == Decimal("-5.00")


@pytest.mark.parametrize(
    "lines,kwargs,match",
    [
        ((), {}, "Cart is empty"),
        (((1, 0),), {}, "Qty must be >= 1"),
        (((1, 1),), {"discount_amount": "-1"}, "Discount must be >= 0"),
        (((1, 1),), {"discount_amount": "abc"}, "Discount must be a number"),
        (((1, 1),), {"payment_type": "CHEQUE"}, "Unknown payment type"),
    ],
)
def test_checkout_rejects_invalid_requests(repo, cashier, lines, kwargs, match):
    add_item(repo, qty=5)

    with pytest.raises(ValidationError, match=match):
        SalesService(repo).checkout(cashier, _request(*lines, **kwargs))


def test_unknown_item_and_customer(repo, cashier):
    pid = add_item(repo, qty=5)
    sales = SalesService(repo)

    with pytest.raises(NotFoundError):
        sales.checkout(cashier, _request((999, 1)))

    with pytest.raises(NotFoundError, match="Customer"):
        sales.checkout(cashier, _request((pid, 1), customer_id=42))

    assert repo.get_stock_item(pid).quantity_on_hand == 5


def test_checkout_updates_customer_stats(repo, cashier):
    pid = add_item(repo, price="12.50", qty=10)
    cid = repo.add_customer("Ana", phone="555-0101")
    sales = SalesService(repo)

    sales.checkout(cashier, _request((pid, 2), customer_id=cid))
    sales.checkout(cashier, _request((pid, 1), customer_id=cid))

    customer = repo.get_customer(cid)
    assert customer.visit_count == 2
    assert customer.total_purchases == Decimal("37.50")


def test_check_stock_availability(repo):
    pid = add_item(repo, qty=3)
    sales = SalesService(repo)

    assert sales.check_stock_availability(pid, 3)
    assert not sales.check_stock_availability(pid, 4)
    with pytest.raises(NotFoundError):
        sales.check_stock_availability(999, 1)


@pytest.mark.parametrize("qty", ["two", 1.5, None])
def test_malformed_checkout_quantity_is_a_validation_error(repo, cashier, qty):
    pid = add_item(repo, qty=5)

    with pytest.raises(ValidationError):
        SalesService(repo).checkout(cashier, CheckoutRequest("c", ({"item_id": pid, "qty": qty},)))

    assert repo.get_stock_item(pid).quantity_on_hand == 5
