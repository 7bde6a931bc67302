"""
Expense Reconciler Tests

Covers the expense write path, the budget expenditure bookkeeping and the
alert re-evaluation that follows every expenditure change.
"""

import logging
import threading
from decimal import Decimal
from unittest.mock import Mock

import pytest

from conftest import OWNER, STRANGER
from ledger.alerts import AlertEvaluator
from ledger.exceptions import (
    AuthenticationError,
    ForbiddenError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)
from ledger.models import ALERT_ACTIVE, ALERT_TRIGGERED
from ledger.reconciler import BudgetLocks, ExpenseReconciler
from ledger.storage import ALERTS, BUDGETS, EXPENSES, LedgerStore


def _expense(budget_id, amount, description="Weekly shop"):
    return {"budget_id": budget_id, "amount": amount, "description": description}


def _live_total(store, budget_id):
    return sum(
        (Decimal(record["amount"]) for record in store.find_many(EXPENSES, budget_id=budget_id)),
        start=Decimal("0.00"),
    )


class TestCreateExpense:
    """Tests for ExpenseReconciler.create_expense."""

    def test_adds_amount_to_expenditure(self, reconciler, budget, reload_budget):
        """Test the budget expenditure grows by the expense amount."""
        expense = reconciler.create_expense(_expense(budget.id, "12.50"), OWNER)

        assert expense.amount == Decimal("12.50")
        assert expense.budget_id == budget.id
        assert reload_budget(budget.id).expenditure == Decimal("12.50")

    def test_returns_persisted_expense(self, reconciler, budget, store):
        """Test the returned expense is the stored record."""
        expense = reconciler.create_expense(_expense(budget.id, "7"), OWNER)

        stored = store.find_by_id(EXPENSES, expense.id)
        assert stored is not None
        assert stored["amount"] == "7.00"
        assert stored["description"] == "Weekly shop"

    def test_missing_budget_is_not_found(self, reconciler, store):
        """Test an unknown budget reference fails without writing."""
        with pytest.raises(RecordNotFoundError, match="Budget not found"):
            reconciler.create_expense(_expense("no-such-budget", "5"), OWNER)

        assert store.find_many(EXPENSES) == []

    def test_foreign_budget_is_forbidden(self, reconciler, budget, store, feed, reload_budget):
        """Test a non-owner cannot log expenses and nothing is written."""
        with pytest.raises(ForbiddenError):
            reconciler.create_expense(_expense(budget.id, "500"), STRANGER)

        assert store.find_many(EXPENSES) == []
        assert reload_budget(budget.id).expenditure == Decimal("0.00")
        assert feed.list(OWNER) == []
        assert feed.list(STRANGER) == []

    @pytest.mark.parametrize("missing", ["description", "amount", "budget_id"])
    def test_missing_field_fails_before_store_access(self, missing):
        """Test required fields are checked before the store is touched."""
        store = Mock(spec=LedgerStore)
        reconciler = ExpenseReconciler(store, Mock(spec=AlertEvaluator))
        payload = _expense("budget-1", "10")
        del payload[missing]

        with pytest.raises(ValidationError, match=missing):
            reconciler.create_expense(payload, OWNER)

        assert store.method_calls == []

    @pytest.mark.parametrize("amount", ["0", "-3", "abc", "NaN", "1e30"])
    def test_rejects_non_positive_amounts(self, reconciler, budget, amount):
        """Test amounts must be positive numbers that fit the money precision."""
        with pytest.raises(ValidationError):
            reconciler.create_expense(_expense(budget.id, amount), OWNER)

    def test_unauthenticated_fails_before_store_access(self):
        """Test a missing user short-circuits before any store call."""
        store = Mock(spec=LedgerStore)
        reconciler = ExpenseReconciler(store, Mock(spec=AlertEvaluator))

        with pytest.raises(AuthenticationError):
            reconciler.create_expense(_expense("budget-1", "10"), None)

        assert store.method_calls == []

    def test_runs_alert_evaluation_with_new_expenditure(self, store, budget):
        """Test the evaluator receives the updated budget and expenditure."""
        evaluator = Mock(spec=AlertEvaluator)
        reconciler = ExpenseReconciler(store, evaluator)

        reconciler.create_expense(_expense(budget.id, "30"), OWNER)
        reconciler.create_expense(_expense(budget.id, "15"), OWNER)

        last_budget, expenditure, user_id = evaluator.reconcile.call_args.args
        assert expenditure == Decimal("45.00")
        assert last_budget.expenditure == Decimal("45.00")
        assert user_id == OWNER
        assert evaluator.reconcile.call_count == 2


class TestUpdateExpense:
    """Tests for ExpenseReconciler.update_expense."""

    def test_applies_amount_delta(self, reconciler, budget, reload_budget):
        """Test only the difference is applied to the budget."""
        expense = reconciler.create_expense(_expense(budget.id, "40"), OWNER)
        reconciler.create_expense(_expense(budget.id, "10"), OWNER)

        updated = reconciler.update_expense(expense.id, {"amount": "25"}, OWNER)

        assert updated.amount == Decimal("25.00")
        assert reload_budget(budget.id).expenditure == Decimal("35.00")

    def test_partial_patch_keeps_other_fields(self, reconciler, budget):
        """Test absent fields are left untouched."""
        expense = reconciler.create_expense(_expense(budget.id, "40", "Market"), OWNER)

        updated = reconciler.update_expense(expense.id, {"description": "Farmers market"}, OWNER)

        assert updated.description == "Farmers market"
        assert updated.amount == Decimal("40.00")
        assert updated.recorded_at == expense.recorded_at

    def test_empty_patch_changes_nothing(
        self, reconciler, budget, alert, feed, reload_budget, reload_alert
    ):
        """Test an empty patch leaves expenditure, alerts and the feed alone."""
        expense = reconciler.create_expense(_expense(budget.id, "120"), OWNER)
        before_budget = reload_budget(budget.id)
        before_alert = reload_alert(alert.id)
        before_feed = len(feed.list(OWNER))

        result = reconciler.update_expense(expense.id, {}, OWNER)

        assert result == expense
        assert reload_budget(budget.id) == before_budget
        assert reload_alert(alert.id) == before_alert
        assert len(feed.list(OWNER)) == before_feed

    def test_description_change_skips_reevaluation(self, store, budget):
        """Test fields other than amount have no budget-side effect."""
        evaluator = Mock(spec=AlertEvaluator)
        reconciler = ExpenseReconciler(store, evaluator)
        expense = reconciler.create_expense(_expense(budget.id, "20"), OWNER)
        evaluator.reset_mock()

        reconciler.update_expense(expense.id, {"description": "Renamed"}, OWNER)
        reconciler.update_expense(expense.id, {"amount": "20.00"}, OWNER)

        evaluator.reconcile.assert_not_called()

    def test_missing_expense_is_not_found(self, reconciler):
        """Test an unknown expense id fails."""
        with pytest.raises(RecordNotFoundError, match="Expense not found"):
            reconciler.update_expense("missing", {"amount": "3"}, OWNER)

    def test_missing_budget_is_not_found(self, reconciler, budget, store):
        """Test an expense whose budget vanished reports the budget."""
        expense = reconciler.create_expense(_expense(budget.id, "5"), OWNER)
        store.delete(BUDGETS, budget.id)

        with pytest.raises(RecordNotFoundError, match="Budget not found"):
            reconciler.update_expense(expense.id, {"amount": "6"}, OWNER)

    def test_foreign_user_is_forbidden(self, reconciler, budget, store, reload_budget):
        """Test a non-owner cannot edit and nothing is written."""
        expense = reconciler.create_expense(_expense(budget.id, "5"), OWNER)

        with pytest.raises(ForbiddenError):
            reconciler.update_expense(expense.id, {"amount": "95"}, STRANGER)

        assert store.find_by_id(EXPENSES, expense.id)["amount"] == "5.00"
        assert reload_budget(budget.id).expenditure == Decimal("5.00")

    def test_cannot_move_to_another_budget(self, reconciler, budget, budget_service):
        """Test budget reassignment is rejected."""
        other = budget_service.create(
            {"name": "Fuel", "amount": "50", "month": 5, "year": 2025}, OWNER
        )
        expense = reconciler.create_expense(_expense(budget.id, "5"), OWNER)

        with pytest.raises(ValidationError):
            reconciler.update_expense(expense.id, {"budget_id": other.id}, OWNER)

    def test_invalid_amount_fails_before_store_access(self):
        """Test patch validation happens before any lookup."""
        store = Mock(spec=LedgerStore)
        reconciler = ExpenseReconciler(store, Mock(spec=AlertEvaluator))

        with pytest.raises(ValidationError):
            reconciler.update_expense("expense-1", {"amount": "-1"}, OWNER)

        assert store.method_calls == []


class TestDeleteExpense:
    """Tests for ExpenseReconciler.delete_expense."""

    def test_subtracts_amount_and_removes_record(self, reconciler, budget, store, reload_budget):
        """Test deletion compensates the budget."""
        keep = reconciler.create_expense(_expense(budget.id, "30"), OWNER)
        drop = reconciler.create_expense(_expense(budget.id, "45"), OWNER)

        assert reconciler.delete_expense(drop.id, OWNER) is True

        assert store.find_by_id(EXPENSES, drop.id) is None
        assert store.find_by_id(EXPENSES, keep.id) is not None
        assert reload_budget(budget.id).expenditure == Decimal("30.00")

    def test_reevaluates_on_decrease(self, store, budget):
        """Test alerts are re-evaluated even when expenditure falls."""
        evaluator = Mock(spec=AlertEvaluator)
        reconciler = ExpenseReconciler(store, evaluator)
        expense = reconciler.create_expense(_expense(budget.id, "30"), OWNER)
        evaluator.reset_mock()

        reconciler.delete_expense(expense.id, OWNER)

        _, expenditure, _ = evaluator.reconcile.call_args.args
        assert expenditure == Decimal("0.00")

    def test_missing_expense_is_not_found(self, reconciler):
        """Test deleting an unknown expense fails."""
        with pytest.raises(RecordNotFoundError, match="Expense not found"):
            reconciler.delete_expense("missing", OWNER)

    def test_foreign_user_is_forbidden(self, reconciler, budget, store, reload_budget):
        """Test a non-owner cannot delete and nothing is written."""
        expense = reconciler.create_expense(_expense(budget.id, "30"), OWNER)

        with pytest.raises(ForbiddenError):
            reconciler.delete_expense(expense.id, STRANGER)

        assert store.find_by_id(EXPENSES, expense.id) is not None
        assert reload_budget(budget.id).expenditure == Decimal("30.00")


class TestExpenditureInvariant:
    """Expenditure must always equal the sum of live expenses."""

    def test_sequence_of_mutations(self, reconciler, budget, store, reload_budget):
        """Test a mixed sequence keeps expenditure equal to the expense sum."""
        first = reconciler.create_expense(_expense(budget.id, "10.10"), OWNER)
        second = reconciler.create_expense(_expense(budget.id, "20.20"), OWNER)
        third = reconciler.create_expense(_expense(budget.id, "30.30"), OWNER)
        reconciler.update_expense(second.id, {"amount": "5.05"}, OWNER)
        reconciler.delete_expense(first.id, OWNER)
        reconciler.update_expense(third.id, {"amount": "99.99", "description": "Big shop"}, OWNER)
        reconciler.create_expense(_expense(budget.id, "0.01"), OWNER)

        expenditure = reload_budget(budget.id).expenditure
        assert expenditure == _live_total(store, budget.id)
        assert expenditure == Decimal("105.05")

    def test_budgets_are_independent(self, reconciler, budget, budget_service, reload_budget):
        """Test expenses only affect their own budget."""
        other = budget_service.create(
            {"name": "Fuel", "amount": "50", "month": 5, "year": 2025}, OWNER
        )
        reconciler.create_expense(_expense(budget.id, "10"), OWNER)
        reconciler.create_expense(_expense(other.id, "40"), OWNER)

        assert reload_budget(budget.id).expenditure == Decimal("10.00")
        assert reload_budget(other.id).expenditure == Decimal("40.00")


class TestThresholdScenario:
    """End-to-end scenario across expenses, alerts and notifications."""

    def test_trigger_overrun_and_reset(
        self, reconciler, budget, alert, feed, reload_budget, reload_alert
    ):
        """Test the alert fires once, overruns notify, and resets are silent."""
        big = reconciler.create_expense(_expense(budget.id, "90"), OWNER)

        assert reload_budget(budget.id).expenditure == Decimal("90.00")
        assert reload_alert(alert.id).status == ALERT_TRIGGERED
        messages = [n.message for n in feed.list(OWNER)]
        assert len(messages) == 1
        assert messages[0] == (
            'Alert: Nearly out - Budget "Groceries" has reached 90.00 of 100.00 (90%)'
        )

        reconciler.create_expense(_expense(budget.id, "20"), OWNER)

        assert reload_budget(budget.id).expenditure == Decimal("110.00")
        messages = [n.message for n in feed.list(OWNER)]
        assert len(messages) == 2
        assert any("has exceeded the budget amount of 100.00" in m for m in messages)

        reconciler.delete_expense(big.id, OWNER)

        assert reload_budget(budget.id).expenditure == Decimal("20.00")
        assert reload_alert(alert.id).status == ALERT_ACTIVE
        assert len(feed.list(OWNER)) == 2

    def test_retrigger_after_reset_notifies_again(
        self, reconciler, budget, alert, feed, reload_alert
    ):
        """Test an alert that reset can trigger and notify again."""
        expense = reconciler.create_expense(_expense(budget.id, "85"), OWNER)
        reconciler.update_expense(expense.id, {"amount": "50"}, OWNER)
        assert reload_alert(alert.id).status == ALERT_ACTIVE

        reconciler.update_expense(expense.id, {"amount": "81"}, OWNER)

        assert reload_alert(alert.id).status == ALERT_TRIGGERED
        assert len(feed.list(OWNER)) == 2


class TestRecomputeExpenditure:
    """Tests for the expenditure repair path."""

    def test_restores_sum_of_expenses(self, reconciler, budget, store, reload_budget):
        """Test a stale expenditure is rebuilt from live expenses."""
        reconciler.create_expense(_expense(budget.id, "40"), OWNER)
        store.update(BUDGETS, budget.id, {"expenditure": "999.00"})

        repaired = reconciler.recompute_expenditure(budget.id, OWNER)

        assert repaired.expenditure == Decimal("40.00")
        assert reload_budget(budget.id).expenditure == Decimal("40.00")

    def test_consistent_budget_only_refreshes_alert_statuses(self, store, budget):
        """Test a consistent total re-evaluates alerts without a repeated overrun notice."""
        evaluator = Mock(spec=AlertEvaluator)
        reconciler = ExpenseReconciler(store, evaluator)
        reconciler.create_expense(_expense(budget.id, "40"), OWNER)
        evaluator.reset_mock()

        reconciler.recompute_expenditure(budget.id, OWNER)

        evaluator.reconcile.assert_called_once()
        assert evaluator.reconcile.call_args.args[1] == Decimal("40.00")
        assert evaluator.reconcile.call_args.kwargs == {"include_overrun": False}

    def test_repairs_stale_alert_status(
        self, reconciler, alert, budget, store, feed, reload_alert
    ):
        """Test a status left behind by a failed evaluation is corrected."""
        reconciler.create_expense(_expense(budget.id, "40"), OWNER)
        store.update(ALERTS, alert.id, {"status": ALERT_TRIGGERED})

        reconciler.recompute_expenditure(budget.id, OWNER)

        assert reload_alert(alert.id).status == ALERT_ACTIVE
        assert feed.list(OWNER) == []

    def test_overrun_is_not_repeated_when_nothing_changed(self, reconciler, budget, feed):
        reconciler.create_expense(_expense(budget.id, "120"), OWNER)

        reconciler.recompute_expenditure(budget.id, OWNER)

        assert len(feed.list(OWNER)) == 1

    def test_foreign_user_is_forbidden(self, reconciler, budget):
        """Test only the owner may repair a budget."""
        with pytest.raises(ForbiddenError):
            reconciler.recompute_expenditure(budget.id, STRANGER)


class TestPartialFailure:
    """A failed budget write is propagated and logged, never rolled back."""

    def test_budget_write_failure_is_logged(
        self, reconciler, budget, store, monkeypatch, caplog, reload_budget
    ):
        """Test the divergence is logged and repairable afterwards."""
        original_update = store.update

        def failing_update(kind, record_id, patch):
            if kind == BUDGETS:
                raise PersistenceError("disk full")
            return original_update(kind, record_id, patch)

        monkeypatch.setattr(store, "update", failing_update)

        with caplog.at_level(logging.ERROR, logger="ledger.reconciler"):
            with pytest.raises(PersistenceError):
                reconciler.create_expense(_expense(budget.id, "25"), OWNER)

        assert any("may no longer match" in record.getMessage() for record in caplog.records)
        assert len(store.find_many(EXPENSES, budget_id=budget.id)) == 1
        assert reload_budget(budget.id).expenditure == Decimal("0.00")

        monkeypatch.setattr(store, "update", original_update)
        assert reconciler.recompute_expenditure(budget.id, OWNER).expenditure == Decimal("25.00")


class TestConcurrentWrites:
    """Concurrent expense writes on one budget do not lose updates."""

    def test_parallel_creates_keep_expenditure_consistent(
        self, reconciler, budget, store, reload_budget
    ):
        errors = []

        def add_expense():
            try:
                reconciler.create_expense(_expense(budget.id, "1.50"), OWNER)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=add_expense) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert reload_budget(budget.id).expenditure == Decimal("12.00")
        assert _live_total(store, budget.id) == Decimal("12.00")

    def test_locks_are_released_after_use(self):
        locks = BudgetLocks()

        with locks.hold("budget-1"):
            with locks.hold("budget-1"):
                assert len(locks._locks) == 1

        assert len(locks._locks) == 0
