import math
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

from budget_scanner.domain.errors import (
    BudgetNotFoundError,
    CategoryNotFoundError,
    DuplicateCategoryError,
    PersistenceError,
)
from budget_scanner.domain.models import Budget, Category, SpendingItem

DB_PATH = Path("budget.db")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# NaN and +/-inf would poison every later read of the row
def _is_finite(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


class BudgetDB:
    """
    Categories, spending items and budgets, every row owned by a user id.

    Every query filters on user_id; a row belonging to someone else looks
    exactly like a missing row.
    """

    def __init__(self, db_path=DB_PATH):
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._create_tables()

    def close(self):
        self.conn.close()

    def _create_tables(self):
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL COLLATE NOCASE,
                total_spent REAL NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                UNIQUE (user_id, name)
            )
        """
        )

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS spending_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                category_id INTEGER NOT NULL REFERENCES categories(id),
                item_name TEXT NOT NULL,
                amount REAL NOT NULL,
                created_at TEXT NOT NULL
            )
        """
        )

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS budgets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                category_id INTEGER NOT NULL REFERENCES categories(id),
                budget_amount REAL NOT NULL,
                budget_type TEXT NOT NULL DEFAULT 'monthly',
                is_active INTEGER NOT NULL DEFAULT 1,
                start_date TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """
        )

        self.conn.commit()

    # ----------------------------
    # Categories
    # ----------------------------
    def fetch_categories(self, user_id: str) -> List[Category]:
        cur = self.conn.execute(
            """
            SELECT id, user_id, name, total_spent, created_at
            FROM categories
            WHERE user_id = ?
            ORDER BY name
            """,
            (user_id,),
        )
        return [Category(**dict(r)) for r in cur.fetchall()]

    def add_category(self, user_id: str, name: str) -> Category:
        try:
            with self.conn:
                cur = self.conn.execute(
                    "INSERT INTO categories (user_id, name, total_spent, created_at) VALUES (?, ?, 0, ?)",
                    (user_id, name, _now()),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateCategoryError(name) from e
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not add category: {e}") from e
        return self.get_category(user_id, cur.lastrowid)

    def get_category(self, user_id: str, category_id: int) -> Category:
        row = self.conn.execute(
            "SELECT id, user_id, name, total_spent, created_at FROM categories WHERE id = ? AND user_id = ?",
            (category_id, user_id),
        ).fetchone()
        if row is None:
            raise CategoryNotFoundError(category_id)
        return Category(**dict(row))

    # Case-insensitive exact match (the column is COLLATE NOCASE)
    def find_category_by_name(self, user_id: str, name: str) -> Optional[Category]:
        row = self.conn.execute(
            "SELECT id, user_id, name, total_spent, created_at FROM categories WHERE user_id = ? AND name = ?",
            (user_id, name),
        ).fetchone()
        return Category(**dict(row)) if row else None

    def set_category_total(self, user_id: str, category_id: int, amount: float) -> Category:
        if not _is_finite(amount) or amount < 0:
            raise ValueError(f"Invalid amount: {amount}")

        self._write(
            "UPDATE categories SET total_spent = ? WHERE id = ? AND user_id = ?",
            (round(amount, 2), category_id, user_id),
            missing=CategoryNotFoundError(category_id),
            action="update category amount",
        )
        return self.get_category(user_id, category_id)

    def adjust_category_total(self, user_id: str, category_id: int, delta: float) -> Category:
        if not _is_finite(delta):
            raise ValueError(f"Invalid adjustment: {delta}")

        current = self.get_category(user_id, category_id)
        new_total = round(current.total_spent + delta, 2)
        if new_total < 0:
            raise ValueError(f"Adjustment would make '{current.name}' negative ({new_total:.2f}).")
        return self.set_category_total(user_id, category_id, new_total)

    def reset_all_totals(self, user_id: str) -> int:
        try:
            with self.conn:
                cur = self.conn.execute("UPDATE categories SET total_spent = 0 WHERE user_id = ?", (user_id,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not reset category totals: {e}") from e
        return cur.rowcount

    # ----------------------------
    # Spending items
    # ----------------------------
    def add_spending_item(self, user_id: str, category_id: int, item_name: str, amount: float) -> SpendingItem:
        """
        Append the item and bump the category total in one transaction.
        Either both rows change or neither does.
        """
        if not _is_finite(amount):
            raise ValueError(f"Invalid amount: {amount}")

        created_at = _now()
        try:
            with self.conn:
                cur = self.conn.execute(
                    "UPDATE categories SET total_spent = ROUND(total_spent + ?, 2) WHERE id = ? AND user_id = ?",
                    (amount, category_id, user_id),
                )
                if cur.rowcount == 0:
                    raise CategoryNotFoundError(category_id)

                cur = self.conn.execute(
                    """
                    INSERT INTO spending_items (user_id, category_id, item_name, amount, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (user_id, category_id, item_name, amount, created_at),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not add spending item: {e}") from e

        return SpendingItem(
            id=cur.lastrowid,
            user_id=user_id,
            category_id=category_id,
            item_name=item_name,
            amount=amount,
            created_at=created_at,
        )

    def fetch_spending_items(self, user_id: str, category_id: int) -> List[SpendingItem]:
        cur = self.conn.execute(
            """
            SELECT id, user_id, category_id, item_name, amount, created_at
            FROM spending_items
            WHERE user_id = ? AND category_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (user_id, category_id),
        )
        return [SpendingItem(**dict(r)) for r in cur.fetchall()]

    def fetch_all_spending_items(self, user_id: str) -> List[SpendingItem]:
        cur = self.conn.execute(
            """
            SELECT s.id, s.user_id, s.category_id, s.item_name, s.amount, s.created_at,
                   c.name AS category_name
            FROM spending_items s
            JOIN categories c ON c.id = s.category_id
            WHERE s.user_id = ?
            ORDER BY s.created_at DESC, s.id DESC
            """,
            (user_id,),
        )
        return [SpendingItem(**dict(r)) for r in cur.fetchall()]

    # ----------------------------
    # Budgets
    # ----------------------------
    def create_budget(self, user_id: str, category_id: int, budget_amount: float) -> Budget:
        if not _is_finite(budget_amount) or budget_amount < 0:
            raise ValueError(f"Invalid budget amount: {budget_amount}")
        # raises CategoryNotFoundError for someone else's category
        self.get_category(user_id, category_id)

        now = _now()
        try:
            with self.conn:
                cur = self.conn.execute(
                    """
                    INSERT INTO budgets
                        (user_id, category_id, budget_amount, budget_type, is_active, start_date, created_at, updated_at)
                    VALUES (?, ?, ?, 'monthly', 1, ?, ?, ?)
                    """,
                    (user_id, category_id, budget_amount, date.today().isoformat(), now, now),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not create budget: {e}") from e
        return self.get_budget(user_id, cur.lastrowid)

    def update_budget(self, user_id: str, budget_id: int, budget_amount: float) -> Budget:
        if not _is_finite(budget_amount) or budget_amount < 0:
            raise ValueError(f"Invalid budget amount: {budget_amount}")
        self._write(
            """
            UPDATE budgets SET budget_amount = ?, budget_type = 'monthly', updated_at = ?
            WHERE id = ? AND user_id = ?
            """,
            (budget_amount, _now(), budget_id, user_id),
            missing=BudgetNotFoundError(budget_id),
            action="update budget",
        )
        return self.get_budget(user_id, budget_id)

    def delete_budget(self, user_id: str, budget_id: int) -> None:
        self._write(
            "DELETE FROM budgets WHERE id = ? AND user_id = ?",
            (budget_id, user_id),
            missing=BudgetNotFoundError(budget_id),
            action="delete budget",
        )

    def get_budget(self, user_id: str, budget_id: int) -> Budget:
        row = self.conn.execute(
            self._budget_select() + " WHERE b.id = ? AND b.user_id = ?",
            (budget_id, user_id),
        ).fetchone()
        if row is None:
            raise BudgetNotFoundError(budget_id)
        return self._row_to_budget(row)

    def fetch_active_budgets(self, user_id: str) -> List[Budget]:
        cur = self.conn.execute(
            self._budget_select() + " WHERE b.user_id = ? AND b.is_active = 1 ORDER BY b.created_at, b.id",
            (user_id,),
        )
        return [self._row_to_budget(r) for r in cur.fetchall()]

    @staticmethod
    def _budget_select() -> str:
        return """
            SELECT b.id, b.user_id, b.category_id, b.budget_amount, b.budget_type, b.is_active,
                   b.start_date, b.created_at, b.updated_at,
                   c.name AS category_name, c.total_spent AS category_total
            FROM budgets b
            JOIN categories c ON c.id = b.category_id
        """

    @staticmethod
    def _row_to_budget(row: sqlite3.Row) -> Budget:
        d = dict(row)
        d["is_active"] = bool(d["is_active"])
        d["category_total"] = d["category_total"] or 0.0
        return Budget(**d)

    def _write(self, sql: str, params: tuple, missing: Exception, action: str) -> None:
        try:
            with self.conn:
                cur = self.conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not {action}: {e}") from e
        if cur.rowcount == 0:
            raise missing
