"""
Personal Finance Summary

Totals over a user's own transactions, and the spending alert rule:
the owner is told once, when cumulative expenses first reach the
configured share (80% by default) of cumulative income.
"""

from decimal import Decimal
from typing import Iterable, Optional

from splitledger.models.personal import (
    PersonalSummary,
    PersonalTransaction,
    TransactionType,
)


def summarize(user_id: str, transactions: Iterable[PersonalTransaction]) -> PersonalSummary:
    """Aggregate income, expense and per-category spending."""
    income = Decimal("0")
    expense = Decimal("0")
    by_category: dict[str, Decimal] = {}
    count = 0

    for transaction in transactions:
        count += 1
        if transaction.type == TransactionType.INCOME:
            income += transaction.amount
        else:
            expense += transaction.amount
            by_category[transaction.category] = (
                by_category.get(transaction.category, Decimal("0")) + transaction.amount
            )

    return PersonalSummary(
        user_id=user_id,
        total_income=income,
        total_expense=expense,
        transaction_count=count,
        expense_by_category=by_category,
    )


def _reached(summary: PersonalSummary, ratio: Decimal) -> bool:
    spend_ratio = summary.spend_ratio
    return spend_ratio is not None and spend_ratio >= ratio


def crossed_alert_threshold(
    before: PersonalSummary,
    after: PersonalSummary,
    ratio: Decimal,
) -> bool:
    """True when `after` is at or over ratio and `before` was not."""
    return _reached(after, ratio) and not _reached(before, ratio)


def build_alert_message(summary: PersonalSummary, currency: str) -> tuple[str, str]:
    """Subject and plain-text body of the spending alert."""
    percent = (summary.spend_ratio or Decimal("0")) * 100
    subject = "Spending alert: you have used {:.0f}% of your income".format(percent)
    lines = [
        f"Total income:   {currency} {summary.total_income:.2f}",
        f"Total expenses: {currency} {summary.total_expense:.2f}",
        f"Remaining:      {currency} {summary.net:.2f}",
    ]
    top = top_category(summary)
    if top is not None:
        lines.append(f"Largest category: {top}")
    return subject, "\n".join(lines)


def top_category(summary: PersonalSummary) -> Optional[str]:
    if not summary.expense_by_category:
        return None
    return max(summary.expense_by_category.items(), key=lambda item: item[1])[0]
