"""
Spending tips.

Takes the user's category totals (and budget progress, if any) and asks the
LLM for a few short, practical tips.
"""

from __future__ import annotations

import re
from typing import List, Sequence

from budget_scanner.domain.models import BudgetProgress, Category

_bullet_re = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def build_tips_prompt(categories: Sequence[Category], progress: Sequence[BudgetProgress] = ()) -> str:
    spent = [c for c in categories if c.total_spent]
    by_cat = "\n".join(f"- {c.name}: ${c.total_spent:.2f}" for c in spent) if spent else "- (no spending yet)"

    budget_lines = "\n".join(
        f"- {p.category_name}: ${p.spent_amount:.2f} of ${p.budget_amount:.2f} ({p.progress_percentage:.0f}%)"
        for p in progress
    ) or "- (no budgets set)"

    return f"""You are a friendly personal budgeting assistant.

Spending by category:
{by_cat}

Budgets this month:
{budget_lines}

Give 3 short, practical tips to help this person spend smarter.
Rules:
- One tip per line, starting with "- ".
- Refer to the actual categories above.
- No introduction or closing sentence."""


def parse_tips(reply: str, limit: int = 5) -> List[str]:
    tips = []
    for line in (reply or "").splitlines():
        tip = _bullet_re.sub("", line).strip()
        if tip:
            tips.append(tip)
    return tips[:limit]


def generate_spending_tips(llm, categories: Sequence[Category], progress: Sequence[BudgetProgress] = ()) -> List[str]:
    reply = llm.complete(build_tips_prompt(categories, progress), max_tokens=256)
    return parse_tips(reply)
