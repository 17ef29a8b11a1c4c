from decimal import Decimal
from pathlib import Path

from conftest import add_item, receive
from openpyxl import load_workbook

from stockflow.domain.models import CheckoutLine, CheckoutRequest
from stockflow.services.receipt_service import ReceiptService
from stockflow.services.reporting_service import ReportingService
from stockflow.services.sales_service import SalesService

WINDOW = ("2000-01-01 00:00:00", "2100-01-01 00:00:00")


def _setup(repo, cashier):
    shirt = add_item(repo, code="SHIRT", price="20.00")
    cap = add_item(repo, code="CAP", price="10.00", qty=4)
    receive(ReceiptService(repo), shirt, 10, "12.00")

    sales = SalesService(repo)
    cid = repo.add_customer("Ana")
    sales.checkout(cashier, CheckoutRequest("cashier-1", (CheckoutLine(shirt, 3),), customer_id=cid))
    sales.checkout(
        cashier,
        CheckoutRequest("cashier-2", (CheckoutLine(cap, 2),), payment_type="CARD", discount_amount=Decimal("1.00")),
    )
    return shirt, cap, cid


def test_profit_report_uses_average_cost_and_flags_estimates(repo, admin, cashier):
    shirt, cap, _ = _setup(repo, cashier)

    report = ReportingService(repo).profit_report(admin, *WINDOW)

    # shirt: 3 x 20.00 revenue, 3 x 12.00 cost; cap has no receipts, cost falls back to 10.00
    assert report.total_revenue == Decimal("80.00")
    assert report.total_cost == Decimal("56.00")
    assert report.total_profit == Decimal("24.00")
    assert report.profit_margin_pct == Decimal("30.00")
    assert report.has_estimates

    by_item = {ln.item_id: ln for ln in report.lines}
    assert by_item[shirt].cost_is_estimate is False
    assert by_item[cap].cost_is_estimate is True
    assert by_item[shirt].profit == Decimal("24.00")


def test_profit_report_empty_window(repo, admin):
    report = ReportingService(repo).profit_report(admin, "1990-01-01", "1990-02-01")

    assert report.total_revenue == Decimal("0")
    assert report.profit_margin_pct == Decimal("0")
    assert report.lines == ()
    assert not report.has_estimates


def test_sales_summary_groups_totals(repo, cashier):
    _setup(repo, cashier)

    summary = ReportingService(repo).sales_summary(cashier, *WINDOW)

    assert summary.transaction_count == 2
    assert summary.total_sales == Decimal("79.00")
    assert summary.total_discount == Decimal("1.00")
    assert summary.by_cashier == {"cashier-1": (1, Decimal("60.00")), "cashier-2": (1, Decimal("19.00"))}
    assert summary.by_payment_type == {"CASH": Decimal("60.00"), "CARD": Decimal("19.00")}
    assert summary.by_customer == {"Ana": (1, Decimal("60.00"))}


def test_low_stock_and_top_customers(repo, cashier):
    shirt, cap, cid = _setup(repo, cashier)
    reporting = ReportingService(repo)

    low = reporting.low_stock_report(cashier)
    assert [i.id for i in low] == [cap]
    assert low[0].quantity_on_hand == 2

    top = reporting.top_customers(cashier, limit=5)
    assert [c.id for c in top] == [cid]
    assert top[0].visit_count == 1


def test_export_profit_report_excel(repo, admin, cashier, tmp_path: Path):
    _setup(repo, cashier)
    out = tmp_path / "profit.xlsx"

    report = ReportingService(repo).export_profit_report_excel(admin, str(out), *WINDOW)

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Profit Detail"]
    summary = wb["Summary"]
    assert summary["A5"].value == "Revenue"
    assert summary["B5"].value == float(report.total_revenue)
    assert summary["B9"].value == "yes"

    detail = wb["Profit Detail"]
    assert detail.max_row == 1 + len(report.lines)
    assert "ProfitDetail" in detail.tables


def test_profit_report_keeps_lines_of_deactivated_items(repo, admin, cashier):
    shirt, cap, _ = _setup(repo, cashier)
    repo.deactivate_stock_item(shirt)

    report = ReportingService(repo).profit_report(admin, *WINDOW)

    by_item = {ln.item_id: ln for ln in report.lines}
    assert by_item[shirt].item_code == "SHIRT"
    assert by_item[shirt].cost == Decimal("36.00")
    assert report.total_revenue == Decimal("80.00")
