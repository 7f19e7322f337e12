"""
In-process filtering shared by backends that cannot query server-side.

Both the in-memory store and the Google Sheets store load rows and filter
in Python; keeping the predicates here guarantees they agree.
"""

from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from abaco.models.ledger import (
    Account,
    AccountRole,
    Budget,
    BudgetCategory,
    BudgetPeriod,
    Transaction,
    TransactionCategory,
    TransactionKind,
    ensure_utc,
)


def filter_accounts(
    accounts: Iterable[Account],
    role: Optional[AccountRole] = None,
    is_active: Optional[bool] = None,
) -> list[Account]:
    result = []
    for account in accounts:
        if role is not None and account.role != role:
            continue
        if is_active is not None and account.is_active != is_active:
            continue
        result.append(account)
    result.sort(key=lambda a: a.created_at)
    return result


def filter_budgets(
    budgets: Iterable[Budget],
    account_id: Optional[UUID] = None,
    category: Optional[BudgetCategory] = None,
    is_active: Optional[bool] = None,
    period: Optional[BudgetPeriod] = None,
) -> list[Budget]:
    result = []
    for budget in budgets:
        if account_id is not None and budget.account_id != account_id:
            continue
        if category is not None and budget.category != category:
            continue
        if is_active is not None and budget.is_active != is_active:
            continue
        if period is not None and budget.period != period:
            continue
        result.append(budget)
    # Newest first
    result.sort(key=lambda b: b.created_at, reverse=True)
    return result


def filter_transactions(
    transactions: Iterable[Transaction],
    account_id: Optional[UUID] = None,
    kind: Optional[TransactionKind] = None,
    category: Optional[TransactionCategory] = None,
    budget_id: Optional[UUID] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> list[Transaction]:
    date_from = ensure_utc(date_from) if date_from else None
    date_to = ensure_utc(date_to) if date_to else None

    result = []
    for tx in transactions:
        if account_id is not None and tx.account_id != account_id:
            continue
        if kind is not None and tx.kind != kind:
            continue
        if category is not None and tx.category != category:
            continue
        if budget_id is not None and tx.budget_id != budget_id:
            continue
        if date_from and tx.date < date_from:
            continue
        if date_to and tx.date > date_to:
            continue
        result.append(tx)

    # Newest first; created_at breaks ties between same-date entries
    result.sort(key=lambda t: (t.date, t.created_at), reverse=True)

    if limit is not None:
        return result[:limit]
    return result
