from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from stockflow.config import EngineSettings
from stockflow.repositories.sqlite_repo import SqliteRepository
from stockflow.services.authorization import AuthorizationGuard
from stockflow.services.ledger import StockLedger
from stockflow.services.receipt_service import ReceiptService
from stockflow.services.reporting_service import ReportingService
from stockflow.services.return_service import ReturnService
from stockflow.services.sales_service import SalesService
from stockflow.services.valuation_service import CostValuationService


@dataclass(frozen=True)
class EngineContainer:
    repo: SqliteRepository
    settings: EngineSettings
    guard: AuthorizationGuard
    ledger: StockLedger
    receipts: ReceiptService
    sales: SalesService
    returns: ReturnService
    valuation: CostValuationService
    reporting: ReportingService


def build_container(db_path: Path | str, settings: EngineSettings | None = None) -> EngineContainer:
    settings = settings or EngineSettings.from_env()
    repo = SqliteRepository(db_path, lock_timeout=settings.lock_timeout)
    repo.init_db()

    guard = AuthorizationGuard()
    ledger = StockLedger()
    receipts = ReceiptService(repo, guard=guard, ledger=ledger)
    sales = SalesService(repo, guard=guard, ledger=ledger)
    returns = ReturnService(repo, guard=guard, ledger=ledger)
    valuation = CostValuationService(repo)
    reporting = ReportingService(repo, valuation=valuation, guard=guard)

    return EngineContainer(
        repo=repo,
        settings=settings,
        guard=guard,
        ledger=ledger,
        receipts=receipts,
        sales=sales,
        returns=returns,
        valuation=valuation,
        reporting=reporting,
    )
