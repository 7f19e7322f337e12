"""
Shared fixtures.

Every test runs against the in-memory store; nothing touches the network.
Fixtures are synchronous; tests seed whatever data they need.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from tenacity import wait_none

from abaco.audit.logger import AuditLogger
from abaco.config import LedgerSettings
from abaco.ledger.accounts import AccountManager
from abaco.ledger.aggregates import BudgetAggregateMaintainer
from abaco.ledger.budgets import BudgetManager
from abaco.ledger.reconciliation import ReconciliationJob
from abaco.ledger.transactions import TransactionLifecycleManager
from abaco.models.ledger import (
    AccountRole,
    Actor,
    BudgetCategory,
    BudgetCreate,
    BudgetPeriod,
    TransactionCategory,
    TransactionCreate,
    TransactionKind,
)
from abaco.orchestrator import LedgerService
from abaco.queries.reports import ReportAggregator
from abaco.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


UTC = timezone.utc


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=UTC)


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        budget_warning_threshold=80.0,
        dashboard_recent_limit=5,
        stats_recent_limit=10,
        default_comparison_months=6,
        top_accounts_limit=10,
        spent_update_attempts=3,
        reconciliation_interval_seconds=3600,
    )


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def maintainer(store, audit_logger):
    return BudgetAggregateMaintainer(
        store,
        audit_logger=audit_logger,
        max_attempts=3,
        wait=wait_none(),
    )


@pytest.fixture
def transactions(store, maintainer, audit_logger):
    return TransactionLifecycleManager(store, maintainer, audit_logger=audit_logger)


@pytest.fixture
def budgets(store, maintainer, audit_logger):
    return BudgetManager(store, maintainer, audit_logger=audit_logger)


@pytest.fixture
def accounts(store, maintainer, audit_logger):
    return AccountManager(store, maintainer, audit_logger=audit_logger)


@pytest.fixture
def reports(store, ledger_settings, audit_logger):
    return ReportAggregator(store, settings=ledger_settings, audit_logger=audit_logger)


@pytest.fixture
def reconciliation(store, maintainer, audit_logger):
    return ReconciliationJob(store, maintainer, audit_logger=audit_logger)


@pytest.fixture
def service(store, audit_logger, maintainer, ledger_settings):
    return LedgerService(
        store,
        audit_logger=audit_logger,
        maintainer=maintainer,
        settings=ledger_settings,
    )


@pytest.fixture
def owner():
    return Actor(account_id=uuid4(), role=AccountRole.EMPLOYEE)


@pytest.fixture
def other():
    return Actor(account_id=uuid4(), role=AccountRole.EMPLOYEE)


@pytest.fixture
def admin():
    return Actor(account_id=uuid4(), role=AccountRole.ADMIN)


@pytest.fixture
def january_budget():
    """Factory for a food budget covering January 2025."""
    def make(amount: str = "1000", **overrides) -> BudgetCreate:
        data = {
            "name": "Groceries",
            "category": BudgetCategory.FOOD,
            "amount": Decimal(amount),
            "period": BudgetPeriod.MONTHLY,
            "start_date": utc(2025, 1, 1),
            "end_date": utc(2025, 1, 31, 23, 59, 59),
        }
        data.update(overrides)
        return BudgetCreate(**data)
    return make


@pytest.fixture
def expense():
    """Factory for an expense payload dated 15 January 2025."""
    def make(amount: str, budget_id=None, **overrides) -> TransactionCreate:
        data = {
            "kind": TransactionKind.EXPENSE,
            "category": TransactionCategory.FOOD,
            "amount": Decimal(amount),
            "description": "Supermarket",
            "date": utc(2025, 1, 15),
            "budget_id": budget_id,
        }
        data.update(overrides)
        return TransactionCreate(**data)
    return make


@pytest.fixture
def income():
    def make(amount: str, **overrides) -> TransactionCreate:
        data = {
            "kind": TransactionKind.INCOME,
            "category": TransactionCategory.SALARY,
            "amount": Decimal(amount),
            "description": "Salary",
            "date": utc(2025, 1, 1, 9),
        }
        data.update(overrides)
        return TransactionCreate(**data)
    return make
