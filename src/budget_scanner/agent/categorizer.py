from budget_scanner.data.db import BudgetDB
from budget_scanner.domain.models import Category

# "Tax" is where the receipt prompt sends tax lines; "Other" is its fallback
DEFAULT_CATEGORIES = [
    "Groceries",
    "Dining",
    "Transport",
    "Household",
    "Health",
    "Entertainment",
    "Shopping",
    "Subscriptions",
    "Bills",
    "Tax",
    "Other",
]


def seed_default_categories(db: BudgetDB, user_id: str, names: list[str] | None = None) -> list[Category]:
    """
    Create any default categories the user doesn't have yet.
    Returns the categories that were added.
    """
    added = []
    for name in names or DEFAULT_CATEGORIES:
        if db.find_category_by_name(user_id, name) is None:
            added.append(db.add_category(user_id, name))
    return added
