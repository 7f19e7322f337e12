"""
Tests for the LedgerService boundary.

These check the response envelope: status codes, error codes and the
serialized shape of the returned entities.
"""

from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from abaco.orchestrator import ApiResponse, LedgerService, create_app_components
from abaco.services.storage import InMemoryLedgerStore, StorageError

from conftest import utc


BUDGET_PAYLOAD = {
    "name": "Groceries",
    "category": "food",
    "amount": "1000",
    "start_date": "2025-01-01T00:00:00Z",
    "end_date": "2025-01-31T23:59:59Z",
}


def expense_payload(amount, budget_id=None, **overrides):
    payload = {
        "kind": "expense",
        "category": "food",
        "amount": amount,
        "description": "Supermarket",
        "date": "2025-01-15T12:00:00Z",
        "budget_id": budget_id,
    }
    payload.update(overrides)
    return payload


class TestEnvelope:

    async def test_create_budget_returns_201_with_derived_fields(self, owner, service):
        response = await service.create_budget(owner, BUDGET_PAYLOAD)

        assert response.success
        assert response.status_code == 201
        assert response.data["spent"] == "0"
        assert Decimal(response.data["remaining"]) == Decimal("1000")
        assert response.data["percentage_used"] == 0.0

    async def test_scenario_through_the_boundary(self, owner, service):
        budget = (await service.create_budget(owner, BUDGET_PAYLOAD)).data

        created = await service.create_transaction(owner, expense_payload("200", budget["id"]))
        fetched = await service.get_budget(owner, UUID(budget["id"]))

        assert created.status_code == 201
        detail = fetched.data
        assert Decimal(detail["budget"]["spent"]) == Decimal("200")
        assert Decimal(detail["budget"]["remaining"]) == Decimal("800")
        assert detail["budget"]["percentage_used"] == 20.0
        assert detail["transaction_count"] == 1

    async def test_delete_returns_id(self, owner, service):
        tx = (await service.create_transaction(owner, expense_payload("5"))).data

        response = await service.delete_transaction(owner, UUID(tx["id"]))

        assert response.success
        assert response.data == {"id": tx["id"]}

    async def test_list_is_serialized(self, owner, service):
        await service.create_transaction(owner, expense_payload("5"))

        response = await service.list_transactions(owner)

        assert isinstance(response.data, list)
        assert response.data[0]["kind"] == "expense"


class TestErrorMapping:

    async def test_not_found(self, owner, service):
        response = await service.get_transaction(owner, uuid4())

        assert not response.success
        assert response.code == "NotFound"
        assert response.status_code == 404

    async def test_unauthorized(self, owner, other, service):
        budget = (await service.create_budget(other, BUDGET_PAYLOAD)).data

        response = await service.create_transaction(owner, expense_payload("10", budget["id"]))

        assert response.code == "Unauthorized"
        assert response.status_code == 403

    async def test_date_out_of_range(self, owner, service):
        budget = (await service.create_budget(owner, BUDGET_PAYLOAD)).data

        response = await service.create_transaction(
            owner, expense_payload("80", budget["id"], date="2025-02-05T00:00:00Z")
        )

        assert response.code == "DateOutOfRange"
        assert response.status_code == 400

    async def test_budget_inactive(self, owner, service):
        budget = (await service.create_budget(owner, BUDGET_PAYLOAD)).data
        await service.update_budget(owner, UUID(budget["id"]), {"is_active": False})

        response = await service.create_transaction(owner, expense_payload("10", budget["id"]))

        assert response.code == "BudgetInactive"

    async def test_invalid_period(self, owner, service):
        response = await service.create_budget(
            owner, {**BUDGET_PAYLOAD, "end_date": "2024-12-01T00:00:00Z"}
        )

        assert response.code == "InvalidPeriod"
        assert response.status_code == 400

    async def test_malformed_payload(self, owner, service):
        response = await service.create_transaction(owner, expense_payload("-3"))

        assert response.code == "ValidationFailed"
        assert response.status_code == 400
        assert response.details["issues"][0]["field"] == "amount"

    async def test_spent_is_not_accepted(self, owner, service):
        response = await service.create_budget(owner, {**BUDGET_PAYLOAD, "spent": "50"})

        assert response.code == "ValidationFailed"

    async def test_invalid_months(self, owner, service):
        response = await service.monthly_comparison(owner, months=0)

        assert response.code == "ValidationFailed"

    async def test_self_delete(self, admin, service):
        response = await service.delete_account(admin, admin.account_id)

        assert response.code == "InvalidOperation"
        assert response.message == "You cannot delete your own account"

    async def test_storage_failure_is_500(self, owner, audit_logger, audit_storage, ledger_settings):
        class DownStore(InMemoryLedgerStore):
            async def list_transactions(self, *args, **kwargs):
                raise StorageError("sheet unavailable")

        service = LedgerService(DownStore(), audit_logger=audit_logger, settings=ledger_settings)

        response = await service.list_transactions(owner)

        assert response.code == "StorageError"
        assert response.status_code == 500
        events = await audit_storage.get_recent_events()
        assert events[0].error_message == "sheet unavailable"


class TestReportsAndAdmin:

    async def test_dashboard(self, owner, service):
        await service.create_transaction(owner, expense_payload("12.50"))

        response = await service.dashboard(owner, now=utc(2025, 1, 20))

        assert response.success
        assert Decimal(response.data["summary"]["month_expense"]) == Decimal("12.50")

    async def test_reconcile_requires_admin(self, owner, admin, service):
        denied = await service.reconcile(owner)
        allowed = await service.reconcile(admin)

        assert denied.status_code == 403
        assert allowed.success
        assert allowed.data["budgets_checked"] == 0

    async def test_admin_overview_rejects_employee(self, owner, service):
        response = await service.admin_overview(owner)

        assert response.code == "Unauthorized"


class TestFactory:

    def test_memory_backend(self):
        service = create_app_components("memory")

        assert isinstance(service, LedgerService)
        assert isinstance(service.store, InMemoryLedgerStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_app_components("postgres")

    def test_fail_envelope(self):
        response = ApiResponse.fail("NotFound", "Budget not found", 404)

        assert not response.success
        assert response.details == {}
