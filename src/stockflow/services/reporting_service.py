from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from stockflow.domain.models import (
    CostBasis,
    Customer,
    Principal,
    ProfitLine,
    ProfitReport,
    SalesSummary,
    StockItem,
)
from stockflow.domain.money import ZERO, quantize_money
from stockflow.services.authorization import AuthorizationGuard, Requirement
from stockflow.services.valuation_service import CostValuationService


class ReportingService:
    def __init__(self, repo, valuation: CostValuationService | None = None, guard: AuthorizationGuard | None = None):
        self.repo = repo
        self.valuation = valuation or CostValuationService(repo)
        self.guard = guard or AuthorizationGuard()

    def low_stock_report(self, principal: Principal) -> list[StockItem]:
        self.guard.authorize(principal, Requirement.ANY_AUTHENTICATED)
        return self.repo.list_low_stock_items()

    def top_customers(self, principal: Principal, limit: int = 10) -> list[Customer]:
        self.guard.authorize(principal, Requirement.ANY_AUTHENTICATED)
        return self.repo.list_top_customers(limit)

    def sales_summary(self, principal: Principal, start_iso: str, end_iso: str) -> SalesSummary:
        self.guard.authorize(principal, Requirement.ANY_AUTHENTICATED)
        sales = self.repo.list_sales_between(start_iso, end_iso)

        by_cashier: dict[str, tuple[int, Decimal]] = {}
        by_payment: dict[str, Decimal] = {}
        by_customer: dict[str, tuple[int, Decimal]] = {}
        customers: dict[int, Customer | None] = {}

        for s in sales:
            count, total = by_cashier.get(s.cashier_ref, (0, ZERO))
            by_cashier[s.cashier_ref] = (count + 1, total + s.total_amount)
            by_payment[s.payment_type.value] = by_payment.get(s.payment_type.value, ZERO) + s.total_amount
            if s.customer_id is None:
                continue
            if s.customer_id not in customers:
                customers[s.customer_id] = self.repo.get_customer(s.customer_id)
            customer = customers[s.customer_id]
            label = customer.name if customer else f"customer {s.customer_id}"
            count, total = by_customer.get(label, (0, ZERO))
            by_customer[label] = (count + 1, total + s.total_amount)

        return SalesSummary(
            start=start_iso,
            end=end_iso,
            total_sales=sum((s.total_amount for s in sales), ZERO),
            total_discount=sum((s.discount_amount for s in sales), ZERO),
            transaction_count=len(sales),
            by_cashier=by_cashier,
            by_payment_type=by_payment,
            by_customer=by_customer,
        )

    def profit_report(self, principal: Principal, start_iso: str, end_iso: str) -> ProfitReport:
        """
        Revenue uses the price stored on each sale line; cost uses the
        item's weighted-average receipt cost.
        """
        self.guard.authorize(principal, Requirement.ADMIN_ONLY)
        sales = self.repo.list_sales_between(start_iso, end_iso)

        bases: dict[int, CostBasis] = {}
        items: dict[int, StockItem | None] = {}
        lines: list[ProfitLine] = []
        total_revenue = ZERO
        total_cost = ZERO

        for sale in sales:
            for sl in sale.lines:
                if sl.item_id not in bases:
                    bases[sl.item_id] = self.valuation.cost_basis(sl.item_id)
                    items[sl.item_id] = self.repo.get_stock_item(sl.item_id, include_inactive=True)
                basis = bases[sl.item_id]
                item = items[sl.item_id]

                revenue = quantize_money(sl.unit_price_at_sale * sl.quantity_sold)
                cost = quantize_money(basis.unit_cost * sl.quantity_sold)
                total_revenue += revenue
                total_cost += cost
                lines.append(
                    ProfitLine(
                        sale_id=sale.id,
                        timestamp=sale.timestamp,
                        item_id=sl.item_id,
                        item_code=item.item_code if item else "",
                        description=item.description if item else "",
                        quantity=sl.quantity_sold,
                        unit_cost=basis.unit_cost,
                        unit_price=sl.unit_price_at_sale,
                        revenue=revenue,
                        cost=cost,
                        profit=revenue - cost,
                        cost_is_estimate=basis.is_estimate,
                    )
                )

        total_profit = total_revenue - total_cost
        if total_revenue > 0:
            margin = (total_profit / total_revenue).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP) * 100
        else:
            margin = ZERO

        return ProfitReport(
            start=start_iso,
            end=end_iso,
            total_revenue=total_revenue,
            total_cost=total_cost,
            total_profit=total_profit,
            profit_margin_pct=margin,
            lines=tuple(lines),
        )

    def export_profit_report_excel(self, principal: Principal, path: str, start_iso: str, end_iso: str) -> ProfitReport:
        report = self.profit_report(principal, start_iso, end_iso)
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Profit Summary"
        ws["A1"].font = Font(bold=True, size=14)

        ws["A3"] = "Window"
        ws["B3"] = f"{start_iso}  ->  {end_iso}"

        rows = [
            ("Revenue", float(report.total_revenue), "money"),
            ("Cost", float(report.total_cost), "money"),
            ("Gross Profit", float(report.total_profit), "money"),
            ("Margin %", float(report.profit_margin_pct), "pct"),
            ("Includes estimated costs", "yes" if report.has_estimates else "no", "text"),
        ]

        start_row = 5
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
            elif kind == "pct":
                ws[f"B{r}"].number_format = "0.00"

        set_widths(ws, {"A": 28, "B": 34})

        # -------- 2) Profit Detail --------
        ws2 = wb.create_sheet("Profit Detail")
        ws2.append([
            "Sale ID", "Datetime", "Item Code", "Description",
            "Qty", "Unit Cost", "Unit Price",
            "Revenue", "Cost", "Profit", "Estimated Cost",
        ])
        bold_row(ws2, 1)

        out_row = 2
        for ln in report.lines:
            ws2.append([
                ln.sale_id, ln.timestamp, ln.item_code, ln.description,
                ln.quantity, float(ln.unit_cost), float(ln.unit_price),
                float(ln.revenue), float(ln.cost), float(ln.profit),
                "yes" if ln.cost_is_estimate else "no",
            ])
            for col in "FGHIJ":
                money(ws2[f"{col}{out_row}"])
            out_row += 1

        ws2.freeze_panes = "A2"
        set_widths(ws2, {
            "A": 10, "B": 22, "C": 16, "D": 34,
            "E": 6, "F": 14, "G": 14,
            "H": 16, "I": 16, "J": 16, "K": 14,
        })
        if ws2.max_row >= 2:
            add_table(ws2, "ProfitDetail", 1, 1, ws2.max_row, 11)

        wb.save(path)
        return report
