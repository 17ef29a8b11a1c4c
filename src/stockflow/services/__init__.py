from .authorization import AuthorizationGuard, Requirement
from .ledger import StockLedger
from .receipt_service import ReceiptService
from .sales_service import SalesService
from .return_service import ReturnService
from .valuation_service import CostValuationService
from .reporting_service import ReportingService

__all__ = [
    "AuthorizationGuard",
    "Requirement",
    "StockLedger",
    "ReceiptService",
    "SalesService",
    "ReturnService",
    "CostValuationService",
    "ReportingService",
]
