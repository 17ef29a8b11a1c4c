from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from stockflow.domain.money import ZERO, quantize_money


class Role(str, Enum):
    ADMIN = "ADMIN"
    CASHIER = "CASHIER"


class ReceiptStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"


class PaymentType(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    SPLIT = "SPLIT"


class MovementType(str, Enum):
    RECEIPT = "receipt"
    SALE = "sale"
    RETURN = "return"


@dataclass(frozen=True)
class Principal:
    user_ref: str
    role: Role


@dataclass(frozen=True)
class StockItem:
    id: int
    item_code: str
    name: str
    unit_selling_price: Decimal
    quantity_on_hand: int
    low_stock_threshold: int
    size: Optional[str] = None
    color: Optional[str] = None
    active: int = 1

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_on_hand <= self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity_on_hand == 0

    @property
    def description(self) -> str:
        parts = [self.name]
        if self.color:
            parts.append(self.color)
        if self.size:
            parts.append(f"({self.size})")
        return " ".join(parts)


@dataclass(frozen=True)
class Customer:
    id: int
    name: str
    phone: Optional[str]
    email: Optional[str]
    total_purchases: Decimal = ZERO
    visit_count: int = 0


@dataclass(frozen=True)
class ReceiptLine:
    item_id: int
    quantity_received: int
    unit_cost_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_cost_price * self.quantity_received


@dataclass(frozen=True)
class ReceiptTransaction:
    id: Optional[int]
    supplier_ref: str
    invoice_ref: Optional[str]
    status: ReceiptStatus
    lines: tuple[ReceiptLine, ...]
    timestamp: Optional[str] = None
    confirmed_by: Optional[str] = None
    draft_key: Optional[str] = None

    @property
    def total_cost(self) -> Decimal:
        return quantize_money(sum((ln.line_total for ln in self.lines), ZERO))

    @property
    def is_confirmed(self) -> bool:
        return self.status == ReceiptStatus.CONFIRMED


@dataclass(frozen=True)
class SaleLine:
    item_id: int
    quantity_sold: int
    unit_price_at_sale: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price_at_sale * self.quantity_sold


@dataclass(frozen=True)
class SaleTransaction:
    id: int
    timestamp: str
    cashier_ref: str
    customer_id: Optional[int]
    payment_type: PaymentType
    discount_amount: Decimal
    subtotal: Decimal
    total_amount: Decimal
    lines: tuple[SaleLine, ...] = ()


@dataclass(frozen=True)
class ReturnLine:
    item_id: int
    quantity_returned: int
    unit_price_at_sale: Decimal = ZERO

    @property
    def refund_total(self) -> Decimal:
        return self.unit_price_at_sale * self.quantity_returned


@dataclass(frozen=True)
class ReturnTransaction:
    id: int
    sale_id: int
    timestamp: str
    processed_by: str
    refund_amount: Decimal
    lines: tuple[ReturnLine, ...] = ()


@dataclass(frozen=True)
class StockMovement:
    id: int
    timestamp: str
    item_id: int
    movement_type: MovementType
    quantity_delta: int
    quantity_after: int
    unit_value: Decimal
    reference_id: int
    actor_ref: Optional[str]


# ---------- Requests ----------
@dataclass(frozen=True)
class CheckoutLine:
    item_id: int
    quantity: int


@dataclass(frozen=True)
class CheckoutRequest:
    cashier_ref: str
    lines: tuple[CheckoutLine, ...]
    payment_type: PaymentType = PaymentType.CASH
    discount_amount: Decimal = ZERO
    customer_id: Optional[int] = None


@dataclass(frozen=True)
class ReturnRequestLine:
    item_id: int
    quantity_returned: int


# ---------- Reports ----------
@dataclass(frozen=True)
class CostBasis:
    item_id: int
    unit_cost: Decimal
    is_estimate: bool


@dataclass(frozen=True)
class ProfitLine:
    sale_id: int
    timestamp: str
    item_id: int
    item_code: str
    description: str
    quantity: int
    unit_cost: Decimal
    unit_price: Decimal
    revenue: Decimal
    cost: Decimal
    profit: Decimal
    cost_is_estimate: bool


@dataclass(frozen=True)
class ProfitReport:
    start: str
    end: str
    total_revenue: Decimal
    total_cost: Decimal
    total_profit: Decimal
    profit_margin_pct: Decimal
    lines: tuple[ProfitLine, ...] = ()

    @property
    def has_estimates(self) -> bool:
        return any(ln.cost_is_estimate for ln in self.lines)


@dataclass(frozen=True)
class SalesSummary:
    start: str
    end: str
    total_sales: Decimal
    total_discount: Decimal
    transaction_count: int
    by_cashier: dict[str, tuple[int, Decimal]] = field(default_factory=dict)
    by_payment_type: dict[str, Decimal] = field(default_factory=dict)
    by_customer: dict[str, tuple[int, Decimal]] = field(default_factory=dict)
