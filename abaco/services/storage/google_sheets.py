"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the persistent backend because:
1. Account holders can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data
- No multi-row transactions and no server-side atomic increment.
  Spent adjustments are serialised per budget inside this process
  (lock + read cell + write cell); writers in other processes are not
  coordinated, which is why the reconciliation job is the backstop.
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing ledger logic.
"""

import json
import threading
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from abaco.config import GoogleSheetsSettings, get_settings
from abaco.models.ledger import (
    Account,
    AccountRole,
    Budget,
    BudgetCategory,
    BudgetPeriod,
    PaymentMethod,
    RecurringFrequency,
    Transaction,
    TransactionCategory,
    TransactionKind,
    utc_now,
)
from abaco.models.audit import AuditEvent, AuditEventType, AuditSeverity
from abaco.services.storage.filters import (
    filter_accounts,
    filter_budgets,
    filter_transactions,
)
from abaco.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    SpentConflictError,
    StorageConnectionError,
    StorageError,
)


logger = structlog.get_logger(__name__)


# Column mappings for the Accounts sheet
ACCOUNT_COLUMNS = [
    "id",
    "name",
    "email",
    "role",
    "is_active",
    "department",
    "created_at",
]

# Column mappings for the Budgets sheet
BUDGET_COLUMNS = [
    "id",
    "account_id",
    "name",
    "description",
    "category",
    "amount",
    "period",
    "start_date",
    "end_date",
    "is_active",
    "spent",
    "created_at",
    "updated_at",
]

# Column mappings for the Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "account_id",
    "budget_id",
    "kind",
    "category",
    "amount",
    "description",
    "date",
    "payment_method",
    "notes",
    "tags_json",
    "is_recurring",
    "recurring_frequency",
    "created_at",
    "updated_at",
]

# Column mappings for the Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]

# 1-based sheet columns touched by partial updates
BUDGET_SPENT_COL = BUDGET_COLUMNS.index("spent") + 1
BUDGET_UPDATED_AT_COL = BUDGET_COLUMNS.index("updated_at") + 1
TRANSACTION_BUDGET_COL = TRANSACTION_COLUMNS.index("budget_id") + 1
TRANSACTION_UPDATED_AT_COL = TRANSACTION_COLUMNS.index("updated_at") + 1

sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
    reraise=True,
)


def _cell_getter(row: list):
    """Return a getter tolerant of short rows and empty cells."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _find_row(all_rows: list[list], entity_id: UUID) -> Optional[tuple[int, list]]:
    """Locate an entity by its ID column. Returns (sheet_row_number, row)."""
    for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is the header
        if row and row[0] == str(entity_id):
            return idx, row
    return None


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @sheets_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_accounts_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.accounts_sheet_name, ACCOUNT_COLUMNS)

    def get_budgets_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.budgets_sheet_name, BUDGET_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
            rows=5000,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    One worksheet per collection, one entity per row.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._budget_locks: defaultdict[UUID, threading.Lock] = defaultdict(threading.Lock)
        self._budget_locks_guard = threading.Lock()

    def _budget_lock(self, budget_id: UUID) -> threading.Lock:
        with self._budget_locks_guard:
            return self._budget_locks[budget_id]

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _account_to_row(self, account: Account) -> list:
        return [
            str(account.id),
            account.name,
            account.email,
            account.role.value,
            str(account.is_active),
            account.department or "",
            account.created_at.isoformat(),
        ]

    def _row_to_account(self, row: list) -> Account:
        safe_get = _cell_getter(row)
        return Account(
            id=UUID(safe_get(0)),
            name=safe_get(1),
            email=safe_get(2),
            role=AccountRole(safe_get(3)),
            is_active=safe_get(4).lower() == "true",
            department=safe_get(5) or None,
            created_at=datetime.fromisoformat(safe_get(6)),
        )

    def _budget_to_row(self, budget: Budget) -> list:
        return [
            str(budget.id),
            str(budget.account_id),
            budget.name,
            budget.description or "",
            budget.category.value,
            str(budget.amount),
            budget.period.value,
            budget.start_date.isoformat(),
            budget.end_date.isoformat(),
            str(budget.is_active),
            str(budget.spent),
            budget.created_at.isoformat(),
            budget.updated_at.isoformat(),
        ]

    def _row_to_budget(self, row: list) -> Budget:
        safe_get = _cell_getter(row)
        return Budget(
            id=UUID(safe_get(0)),
            account_id=UUID(safe_get(1)),
            name=safe_get(2),
            description=safe_get(3) or None,
            category=BudgetCategory(safe_get(4)),
            amount=Decimal(safe_get(5, "0")),
            period=BudgetPeriod(safe_get(6)),
            start_date=datetime.fromisoformat(safe_get(7)),
            end_date=datetime.fromisoformat(safe_get(8)),
            is_active=safe_get(9).lower() == "true",
            spent=Decimal(safe_get(10, "0")),
            created_at=datetime.fromisoformat(safe_get(11)),
            updated_at=datetime.fromisoformat(safe_get(12)),
        )

    def _transaction_to_row(self, tx: Transaction) -> list:
        return [
            str(tx.id),
            str(tx.account_id),
            str(tx.budget_id) if tx.budget_id else "",
            tx.kind.value,
            tx.category.value,
            str(tx.amount),
            tx.description,
            tx.date.isoformat(),
            tx.payment_method.value,
            tx.notes or "",
            json.dumps(tx.tags),
            str(tx.is_recurring),
            tx.recurring_frequency.value if tx.recurring_frequency else "",
            tx.created_at.isoformat(),
            tx.updated_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        safe_get = _cell_getter(row)
        return Transaction(
            id=UUID(safe_get(0)),
            account_id=UUID(safe_get(1)),
            budget_id=UUID(safe_get(2)) if safe_get(2) else None,
            kind=TransactionKind(safe_get(3)),
            category=TransactionCategory(safe_get(4)),
            amount=Decimal(safe_get(5)),
            description=safe_get(6),
            date=datetime.fromisoformat(safe_get(7)),
            payment_method=PaymentMethod(safe_get(8, PaymentMethod.CASH.value)),
            notes=safe_get(9) or None,
            tags=json.loads(safe_get(10, "[]")),
            is_recurring=safe_get(11).lower() == "true",
            recurring_frequency=RecurringFrequency(safe_get(12)) if safe_get(12) else None,
            created_at=datetime.fromisoformat(safe_get(13)),
            updated_at=datetime.fromisoformat(safe_get(14)),
        )

    def _load(self, sheet: gspread.Worksheet, parse) -> list:
        """Parse every data row, skipping blank and malformed rows."""
        items = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                items.append(parse(row))
            except Exception as e:
                logger.warning("sheets_row_skipped", sheet=sheet.title, row_id=row[0], error=str(e))
        return items

    def _append(self, sheet: gspread.Worksheet, entity_id: UUID, row: list, label: str) -> None:
        if _find_row(sheet.get_all_values(), entity_id):
            raise DuplicateError(f"{label} already exists: {entity_id}")
        sheet.append_row(row, value_input_option="RAW")

    def _replace_row(self, sheet: gspread.Worksheet, idx: int, row: list, skip_cols: tuple = ()) -> None:
        for col_idx, value in enumerate(row, start=1):
            if col_idx in skip_cols:
                continue
            sheet.update_cell(idx, col_idx, value)

    def _delete(self, sheet: gspread.Worksheet, entity_id: UUID) -> bool:
        found = _find_row(sheet.get_all_values(), entity_id)
        if not found:
            return False
        sheet.delete_rows(found[0])
        return True

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @sheets_retry
    async def save_account(self, account: Account) -> Account:
        try:
            self._append(
                self._client.get_accounts_sheet(),
                account.id,
                self._account_to_row(account),
                "Account",
            )
            return account
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save account: {e}")

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        try:
            found = _find_row(self._client.get_accounts_sheet().get_all_values(), account_id)
            return self._row_to_account(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get account: {e}")

    async def list_accounts(
        self,
        role: Optional[AccountRole] = None,
        is_active: Optional[bool] = None,
    ) -> list[Account]:
        try:
            accounts = self._load(self._client.get_accounts_sheet(), self._row_to_account)
        except Exception as e:
            raise StorageError(f"Failed to list accounts: {e}")
        return filter_accounts(accounts, role=role, is_active=is_active)

    async def update_account(self, account: Account) -> Account:
        try:
            sheet = self._client.get_accounts_sheet()
            found = _find_row(sheet.get_all_values(), account.id)
            if not found:
                raise NotFoundError(f"Account not found: {account.id}")
            self._replace_row(sheet, found[0], self._account_to_row(account))
            return account
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update account: {e}")

    async def delete_account(self, account_id: UUID) -> bool:
        try:
            return self._delete(self._client.get_accounts_sheet(), account_id)
        except Exception as e:
            raise StorageError(f"Failed to delete account: {e}")

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    @sheets_retry
    async def save_budget(self, budget: Budget) -> Budget:
        try:
            self._append(
                self._client.get_budgets_sheet(),
                budget.id,
                self._budget_to_row(budget),
                "Budget",
            )
            return budget
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save budget: {e}")

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        try:
            found = _find_row(self._client.get_budgets_sheet().get_all_values(), budget_id)
            return self._row_to_budget(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get budget: {e}")

    async def list_budgets(
        self,
        account_id: Optional[UUID] = None,
        category: Optional[BudgetCategory] = None,
        is_active: Optional[bool] = None,
        period: Optional[BudgetPeriod] = None,
    ) -> list[Budget]:
        try:
            budgets = self._load(self._client.get_budgets_sheet(), self._row_to_budget)
        except Exception as e:
            raise StorageError(f"Failed to list budgets: {e}")
        return filter_budgets(
            budgets,
            account_id=account_id,
            category=category,
            is_active=is_active,
            period=period,
        )

    async def update_budget(self, budget: Budget) -> Budget:
        with self._budget_lock(budget.id):
            try:
                sheet = self._client.get_budgets_sheet()
                found = _find_row(sheet.get_all_values(), budget.id)
                if not found:
                    raise NotFoundError(f"Budget not found: {budget.id}")
                idx, row = found
                current_spent = self._row_to_budget(row).spent
                self._replace_row(
                    sheet,
                    idx,
                    self._budget_to_row(budget),
                    skip_cols=(BUDGET_SPENT_COL,),
                )
                return budget.model_copy(update={"spent": current_spent})
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to update budget: {e}")

    async def delete_budget(self, budget_id: UUID) -> bool:
        try:
            return self._delete(self._client.get_budgets_sheet(), budget_id)
        except Exception as e:
            raise StorageError(f"Failed to delete budget: {e}")

    def _write_spent(self, budget_id: UUID, compute, expected: Optional[Decimal] = None) -> Budget:
        """
        Read the spent cell, compute the new value, write it back.

        CRITICAL: spent and updated_at go out in ONE range update. Two
        separate cell writes could leave spent written while the call
        fails, and the caller's retry would then apply the delta twice.
        """
        sheet = self._client.get_budgets_sheet()
        found = _find_row(sheet.get_all_values(), budget_id)
        if not found:
            raise NotFoundError(f"Budget not found: {budget_id}")
        idx, row = found
        budget = self._row_to_budget(row)
        if expected is not None and budget.spent != expected:
            raise SpentConflictError(
                f"Budget {budget_id} spent is {budget.spent}, expected {expected}"
            )
        updated = budget.model_copy(update={"spent": compute(budget.spent), "updated_at": utc_now()})
        sheet.update(
            range_name=f"{rowcol_to_a1(idx, BUDGET_SPENT_COL)}:{rowcol_to_a1(idx, BUDGET_UPDATED_AT_COL)}",
            values=[self._budget_to_row(updated)[BUDGET_SPENT_COL - 1:BUDGET_UPDATED_AT_COL]],
            value_input_option="RAW",
        )
        return updated

    async def increment_budget_spent(self, budget_id: UUID, delta: Decimal) -> Budget:
        with self._budget_lock(budget_id):
            try:
                return self._write_spent(budget_id, lambda spent: spent + delta)
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to adjust budget spent: {e}")

    async def set_budget_spent(
        self,
        budget_id: UUID,
        spent: Decimal,
        expected: Optional[Decimal] = None,
    ) -> Budget:
        with self._budget_lock(budget_id):
            try:
                return self._write_spent(budget_id, lambda _: spent, expected)
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to set budget spent: {e}")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @sheets_retry
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        try:
            self._append(
                self._client.get_transactions_sheet(),
                transaction.id,
                self._transaction_to_row(transaction),
                "Transaction",
            )
            return transaction
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            found = _find_row(
                self._client.get_transactions_sheet().get_all_values(),
                transaction_id,
            )
            return self._row_to_transaction(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        try:
            sheet = self._client.get_transactions_sheet()
            found = _find_row(sheet.get_all_values(), transaction.id)
            if not found:
                raise NotFoundError(f"Transaction not found: {transaction.id}")
            self._replace_row(sheet, found[0], self._transaction_to_row(transaction))
            return transaction
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            return self._delete(self._client.get_transactions_sheet(), transaction_id)
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        kind: Optional[TransactionKind] = None,
        category: Optional[TransactionCategory] = None,
        budget_id: Optional[UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        try:
            transactions = self._load(
                self._client.get_transactions_sheet(),
                self._row_to_transaction,
            )
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")
        return filter_transactions(
            transactions,
            account_id=account_id,
            kind=kind,
            category=category,
            budget_id=budget_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
        )

    async def detach_transactions(self, budget_id: UUID) -> int:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()
            now = utc_now().isoformat()
            detached = 0
            for idx, row in enumerate(all_rows[1:], start=2):
                if len(row) >= TRANSACTION_BUDGET_COL and row[TRANSACTION_BUDGET_COL - 1] == str(budget_id):
                    sheet.update_cell(idx, TRANSACTION_BUDGET_COL, "")
                    sheet.update_cell(idx, TRANSACTION_UPDATED_AT_COL, now)
                    detached += 1
            return detached
        except Exception as e:
            raise StorageError(f"Failed to detach transactions: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _cell_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            actor_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
        )

    def _events(self, predicate) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0] or not predicate(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception as e:
                logger.warning("audit_row_skipped", row_id=row[0], error=str(e))
        return events

    @sheets_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the ledger flow
            logger.error("audit_append_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = self._events(
                lambda row: len(row) > 7 and row[7] == str(correlation_id)
            )
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = self._events(
                lambda row: len(row) > 5 and row[4] == entity_type and row[5] == str(entity_id)
            )
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._events(lambda row: True)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
