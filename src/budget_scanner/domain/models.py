from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# A user-defined spending bucket with its running total
@dataclass
class Category:
    id: int
    user_id: str
    name: str
    total_spent: float = 0.0
    created_at: Optional[str] = None


# One line of the append-only trail behind a category total
@dataclass
class SpendingItem:
    id: int
    user_id: str
    category_id: int
    item_name: str
    amount: float
    created_at: str
    category_name: Optional[str] = None


@dataclass
class Budget:
    id: int
    user_id: str
    category_id: int
    budget_amount: float
    budget_type: str = "monthly"
    is_active: bool = True
    start_date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    # filled in when fetched together with the category row
    category_name: Optional[str] = None
    category_total: float = 0.0


@dataclass
class BudgetProgress:
    spent_amount: float
    budget_amount: float
    remaining_amount: float
    progress_percentage: float
    is_over_budget: bool
    alert_level: str  # "safe" | "info" | "warning" | "critical"
    budget_id: Optional[int] = None
    category_name: Optional[str] = None
    budget_type: Optional[str] = None


@dataclass
class ReceiptItem:
    description: Any = None
    price: Any = None
    category: Any = None


@dataclass
class StructuredReceipt:
    store_name: Optional[str]
    total: Any
    items: List[ReceiptItem] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AppliedItem:
    category_name: str
    amount: float
    item_name: str


@dataclass
class SkippedItem:
    description: Any
    price: Any
    category: Any
    reason: str


@dataclass
class ReceiptResult:
    ocr_text: str
    receipt: StructuredReceipt
    applied: List[AppliedItem] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)

    @property
    def total_applied(self) -> float:
        return round(sum(a.amount for a in self.applied), 2)
