"""
Data Models Package

This package contains all Pydantic models used by the ledger.
All data flowing through the system must conform to these schemas.
"""

from abaco.models.ledger import (
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    Account,
    AccountRole,
    AccountUpdate,
    Actor,
    Budget,
    BudgetCategory,
    BudgetCreate,
    BudgetHealth,
    BudgetPeriod,
    BudgetUpdate,
    PaymentMethod,
    RecurringFrequency,
    Transaction,
    TransactionCategory,
    TransactionCreate,
    TransactionKind,
    TransactionUpdate,
    utc_now,
)
from abaco.models.reports import (
    AccountActivity,
    AccountDetail,
    AdminOverview,
    BudgetDetail,
    BudgetReconciliation,
    BudgetStatus,
    BudgetSummaryReport,
    CategorySpendingReport,
    DashboardReport,
    MonthlyComparisonEntry,
    ReconciliationReport,
    TransactionStats,
)
from abaco.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "EXPENSE_CATEGORIES",
    "INCOME_CATEGORIES",
    "Account",
    "AccountRole",
    "AccountUpdate",
    "Actor",
    "Budget",
    "BudgetCategory",
    "BudgetCreate",
    "BudgetHealth",
    "BudgetPeriod",
    "BudgetUpdate",
    "PaymentMethod",
    "RecurringFrequency",
    "Transaction",
    "TransactionCategory",
    "TransactionCreate",
    "TransactionKind",
    "TransactionUpdate",
    "utc_now",
    # Report models
    "AccountActivity",
    "AccountDetail",
    "AdminOverview",
    "BudgetDetail",
    "BudgetReconciliation",
    "BudgetStatus",
    "BudgetSummaryReport",
    "CategorySpendingReport",
    "DashboardReport",
    "MonthlyComparisonEntry",
    "ReconciliationReport",
    "TransactionStats",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
