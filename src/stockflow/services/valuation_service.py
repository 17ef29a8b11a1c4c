from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

from stockflow.domain.errors import NotFoundError
from stockflow.domain.models import CostBasis
from stockflow.domain.money import CENTS, ZERO

log = logging.getLogger(__name__)


class CostValuationService:
    """Weighted-average unit cost over confirmed receipts.

    Items never received fall back to their current selling price. That
    value overstates cost, so ``cost_basis`` flags it as an estimate.
    """

    def __init__(self, repo):
        self.repo = repo

    def cost_basis(self, item_id: int) -> CostBasis:
        item = self.repo.get_stock_item(int(item_id), include_inactive=True)
        if not item:
            raise NotFoundError(f"Stock item not found: {item_id}")

        history = self.repo.confirmed_receipt_costs(item.id)
        total_qty = sum(qty for qty, _cost in history)
        if total_qty <= 0:
            log.warning("cost_fallback_selling_price item_id=%s item_code=%s", item.id, item.item_code)
            return CostBasis(item_id=item.id, unit_cost=item.unit_selling_price, is_estimate=True)

        total_cost = sum((cost * qty for qty, cost in history), ZERO)
        average = (total_cost / Decimal(total_qty)).quantize(CENTS, rounding=ROUND_HALF_UP)
        return CostBasis(item_id=item.id, unit_cost=average, is_estimate=False)

    def average_unit_cost(self, item_id: int) -> Decimal:
        return self.cost_basis(item_id).unit_cost
