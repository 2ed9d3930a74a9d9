import logging
from typing import List, Optional

from budget_scanner.data.db import BudgetDB
from budget_scanner.domain.errors import CategoryNotFoundError
from budget_scanner.domain.models import BudgetProgress, Category, SpendingItem
from budget_scanner.services.budget_progress import budget_alerts, progress_for_budget

logger = logging.getLogger(__name__)


class Ledger:
    """
    One user's view of the store.

    Receipt items and manual entries both come in by category *name*; the
    name is resolved case-insensitively before anything is written.
    """

    def __init__(self, db: BudgetDB, user_id: str):
        self.db = db
        self.user_id = user_id

    def categories(self) -> List[Category]:
        return self.db.fetch_categories(self.user_id)

    def category_names(self) -> List[str]:
        return [c.name for c in self.categories()]

    def find_category(self, name: str) -> Optional[Category]:
        return self.db.find_category_by_name(self.user_id, name.strip())

    # Persist one spending item against a named category
    def add_spending_item(self, category_name: str, amount: float, item_name: str) -> SpendingItem:
        category = self.find_category(category_name)
        if category is None:
            raise CategoryNotFoundError(category_name)

        item = self.db.add_spending_item(self.user_id, category.id, item_name, amount)
        logger.info("Added %.2f to %s (%s)", amount, category.name, item_name)
        return item

    def budget_progress(self) -> List[BudgetProgress]:
        return [progress_for_budget(b) for b in self.db.fetch_active_budgets(self.user_id)]

    def budget_alerts(self) -> List[BudgetProgress]:
        return budget_alerts(self.budget_progress())
