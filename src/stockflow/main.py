from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from stockflow.application.container import EngineContainer, build_container
from stockflow.config import get_app_paths
from stockflow.domain.errors import AppError, ValidationError
from stockflow.domain.models import Principal, ReceiptLine, Role
from stockflow.domain.money import to_money
from stockflow.logging_config import setup_logging

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stockflow", description="Inventory transaction engine tools.")
    parser.add_argument("--db", default=None, help="SQLite database path (defaults to the app data dir).")
    parser.add_argument("--user", default="operator", help="Acting user reference.")
    parser.add_argument(
        "--role",
        default=Role.ADMIN.value,
        choices=[r.value for r in Role],
        help="Acting role.",
    )

    sub = parser.add_subparsers(dest="command", required=True, title="commands")

    sub.add_parser("init-db", help="Create or migrate the database.")

    add_item = sub.add_parser("add-item", help="Register a stock item with zero quantity.")
    add_item.add_argument("item_code")
    add_item.add_argument("name")
    add_item.add_argument("price", help="Unit selling price.")
    add_item.add_argument("--threshold", type=int, default=None, help="Low stock threshold.")
    add_item.add_argument("--size", default=None)
    add_item.add_argument("--color", default=None)

    receive = sub.add_parser("receive", help="Confirm a single-line goods receipt.")
    receive.add_argument("item_id", type=int)
    receive.add_argument("qty", type=int)
    receive.add_argument("unit_cost")
    receive.add_argument("--supplier", required=True)
    receive.add_argument("--invoice", default=None)

    cost = sub.add_parser("average-cost", help="Weighted-average unit cost of an item.")
    cost.add_argument("item_id", type=int)

    sub.add_parser("low-stock", help="Items at or below their low stock threshold.")

    profit = sub.add_parser("profit-report", help="Revenue, cost and profit between two timestamps.")
    profit.add_argument("--start", required=True, help="Inclusive, e.g. 2026-01-01")
    profit.add_argument("--end", required=True, help="Exclusive, e.g. 2026-02-01")
    profit.add_argument("--export", default=None, help="Write the report to this .xlsx path.")
    return parser


def _run(container: EngineContainer, principal: Principal, args: argparse.Namespace) -> None:
    if args.command == "init-db":
        print(f"Database ready: {container.repo.db_path}")

    elif args.command == "add-item":
        container.guard.require_action(principal, "manage_products")
        threshold = args.threshold if args.threshold is not None else container.settings.default_low_stock_threshold
        price = to_money(args.price, field="Price")
        if price <= 0:
            raise ValidationError("Price must be > 0.")
        item_id = container.repo.add_stock_item(
            args.item_code, args.name, price, low_stock_threshold=threshold, size=args.size, color=args.color
        )
        print(f"Item {item_id} created ({args.item_code})")

    elif args.command == "receive":
        line = ReceiptLine(args.item_id, args.qty, to_money(args.unit_cost, field="Unit cost"))
        receipt = container.receipts.confirm_receipt(principal, args.supplier, args.invoice, [line])
        print(f"Receipt {receipt.id} confirmed, total cost {receipt.total_cost}")

    elif args.command == "average-cost":
        basis = container.valuation.cost_basis(args.item_id)
        suffix = " (estimate: no confirmed receipts)" if basis.is_estimate else ""
        print(f"{basis.unit_cost}{suffix}")

    elif args.command == "low-stock":
        for item in container.reporting.low_stock_report(principal):
            print(f"{item.item_code}\t{item.quantity_on_hand}\t{item.low_stock_threshold}\t{item.description}")

    elif args.command == "profit-report":
        if args.export:
            report = container.reporting.export_profit_report_excel(principal, args.export, args.start, args.end)
        else:
            report = container.reporting.profit_report(principal, args.start, args.end)
        print(f"Revenue: {report.total_revenue}")
        print(f"Cost:    {report.total_cost}")
        print(f"Profit:  {report.total_profit} ({report.profit_margin_pct}%)")
        if report.has_estimates:
            print("Note: some costs are estimated from selling prices.")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    container = build_container(args.db or paths.db_path)
    principal = Principal(user_ref=args.user, role=Role(args.role))
    try:
        _run(container, principal, args)
    except AppError as exc:
        log.warning("command_failed command=%s error=%s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
