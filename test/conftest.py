import sys
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from stockflow.domain.models import Principal, ReceiptLine, Role  # noqa: E402
from stockflow.repositories.sqlite_repo import SqliteRepository  # noqa: E402

ADMIN = Principal(user_ref="admin-1", role=Role.ADMIN)
CASHIER = Principal(user_ref="cashier-1", role=Role.CASHIER)


@pytest.fixture
def repo(tmp_path: Path) -> SqliteRepository:
    r = SqliteRepository(tmp_path / "engine.db")
    r.init_db()
    return r


@pytest.fixture
def admin() -> Principal:
    return ADMIN


@pytest.fixture
def cashier() -> Principal:
    return CASHIER


def add_item(repo, code: str = "SKU-1", price: str = "50.00", qty: int = 0, threshold: int = 5) -> int:
    return repo.add_stock_item(code, f"Item {code}", Decimal(price), quantity_on_hand=qty, low_stock_threshold=threshold)


def receive(receipts, item_id: int, qty: int, unit_cost: str, supplier: str = "ACME"):
    return receipts.confirm_receipt(ADMIN, supplier, None, [ReceiptLine(item_id, qty, Decimal(unit_cost))])
