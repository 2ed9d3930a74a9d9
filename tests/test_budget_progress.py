import pytest

from budget_scanner.domain.models import Budget
from budget_scanner.services.budget_progress import (
    budget_alerts,
    compute_budget_progress,
    progress_for_budget,
)


def test_zero_budget_is_safe():
    p = compute_budget_progress(0, 0)
    assert p.progress_percentage == 0
    assert p.remaining_amount == 0
    assert p.is_over_budget is False
    assert p.alert_level == "safe"


def test_zero_budget_with_spending_does_not_divide():
    p = compute_budget_progress(25.0, 0)
    assert p.progress_percentage == 0
    assert p.alert_level == "safe"


def test_ninety_percent_is_critical_but_not_over():
    p = compute_budget_progress(90, 100)
    assert p.progress_percentage == pytest.approx(90)
    assert p.remaining_amount == pytest.approx(10)
    assert p.alert_level == "critical"
    assert p.is_over_budget is False


def test_over_budget_is_unbounded_and_floors_remaining():
    p = compute_budget_progress(150, 100)
    assert p.progress_percentage == pytest.approx(150)
    assert p.remaining_amount == 0
    assert p.is_over_budget is True


@pytest.mark.parametrize(
    "spent, level",
    [(59.99, "safe"), (60, "info"), (79.9, "info"), (80, "warning"), (89.99, "warning"), (90, "critical")],
)
def test_thresholds(spent, level):
    assert compute_budget_progress(spent, 100).alert_level == level


def test_none_values_count_as_zero():
    p = compute_budget_progress(None, None)
    assert p.alert_level == "safe"
    assert p.spent_amount == 0


def test_progress_for_budget_and_alerts():
    groceries = Budget(id=1, user_id="u", category_id=1, budget_amount=200, category_name="Groceries", category_total=170)
    dining = Budget(id=2, user_id="u", category_id=2, budget_amount=100, category_name="Dining", category_total=20)

    progress = [progress_for_budget(groceries), progress_for_budget(dining)]

    assert progress[0].budget_id == 1
    assert progress[0].category_name == "Groceries"
    assert progress[0].budget_type == "monthly"
    assert progress[0].alert_level == "warning"
    assert [p.category_name for p in budget_alerts(progress)] == ["Groceries"]
