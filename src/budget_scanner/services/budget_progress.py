from __future__ import annotations

from typing import Iterable, List, Optional

from budget_scanner.domain.models import Budget, BudgetProgress

# Percent-of-budget thresholds; hitting one exactly counts as the higher tier
INFO_AT = 60
WARNING_AT = 80
CRITICAL_AT = 90


def alert_level(percentage: float) -> str:
    if percentage >= CRITICAL_AT:
        return "critical"
    if percentage >= WARNING_AT:
        return "warning"
    if percentage >= INFO_AT:
        return "info"
    return "safe"


def compute_budget_progress(spent: Optional[float], budget_amount: Optional[float]) -> BudgetProgress:
    """
    Progress of one budget from its category's running total.

    A zero budget gives an all-zero "safe" result instead of dividing by zero.
    Percentage is not capped so overspending shows as e.g. 150.
    """
    spent = spent or 0.0
    budget_amount = budget_amount or 0.0

    if budget_amount == 0:
        return BudgetProgress(
            spent_amount=spent,
            budget_amount=budget_amount,
            remaining_amount=0.0,
            progress_percentage=0.0,
            is_over_budget=False,
            alert_level="safe",
        )

    percentage = spent * 100 / budget_amount
    return BudgetProgress(
        spent_amount=spent,
        budget_amount=budget_amount,
        remaining_amount=max(budget_amount - spent, 0.0),
        progress_percentage=percentage,
        is_over_budget=spent > budget_amount,
        alert_level=alert_level(percentage),
    )


def progress_for_budget(budget: Budget) -> BudgetProgress:
    progress = compute_budget_progress(budget.category_total, budget.budget_amount)
    progress.budget_id = budget.id
    progress.category_name = budget.category_name
    progress.budget_type = budget.budget_type
    return progress


def budget_alerts(progress: Iterable[BudgetProgress]) -> List[BudgetProgress]:
    return [p for p in progress if p.alert_level in ("warning", "critical")]
