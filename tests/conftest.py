from __future__ import annotations

import json
from pathlib import Path

import pytest

from budget_scanner.data.db import BudgetDB
from budget_scanner.services.ledger import Ledger


@pytest.fixture
def db(tmp_path: Path):
    database = BudgetDB(tmp_path / "budget.db")
    yield database
    database.close()


@pytest.fixture
def ledger(db: BudgetDB) -> Ledger:
    for name in ("Food", "Household", "Other"):
        db.add_category("user-1", name)
    return Ledger(db, "user-1")


@pytest.fixture
def receipt_reply():
    def _reply(items, store="Corner Market", total=None, wrap=None):
        body = json.dumps({"storeName": store, "total": total, "items": items})
        return wrap.format(body) if wrap else body

    return _reply
