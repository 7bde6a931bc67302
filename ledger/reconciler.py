"""Expense writes and the budget expenditure bookkeeping that goes with them."""

from __future__ import annotations

import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterator, List, Optional

from .alerts import AlertEvaluator
from .exceptions import PersistenceError, RecordNotFoundError, ValidationError
from .guard import require_user, resolve_budget
from .models import Budget, Expense, format_money, isoformat_utc
from .storage import BUDGETS, EXPENSES, LedgerStore
from .validators import (
    MAX_DESCRIPTION_LENGTH,
    parse_amount,
    require_fields,
    validate_reference,
    validate_required_str,
)

logger = logging.getLogger(__name__)


class BudgetLocks:
    """One re-entrant lock per budget id, dropped once no caller holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    @contextmanager
    def hold(self, budget_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(budget_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[budget_id] = lock
        with lock:
            yield


class ExpenseReconciler:
    """Sole write path for expenses.

    Every expense mutation is paired with the matching change to the owning
    budget's ``expenditure``, followed by an alert re-evaluation whenever the
    expenditure moved. Writes are independent; a failure part way through is
    logged and propagated, never rolled back.
    """

    def __init__(
        self,
        store: LedgerStore,
        evaluator: AlertEvaluator,
        locks: Optional[BudgetLocks] = None,
    ) -> None:
        self._store = store
        self._evaluator = evaluator
        self._locks = locks or BudgetLocks()

    # Public API -----------------------------------------------------------
    def create_expense(self, payload: Dict[str, object], user_id: Optional[str]) -> Expense:
        user_id = require_user(user_id)
        data = self._validate_new(payload)
        with self._locks.hold(data["budget_id"]):
            budget = resolve_budget(self._store, data["budget_id"], user_id)
            expense = Expense.from_dict(self._store.create(EXPENSES, data))
            new_expenditure = budget.expenditure + expense.amount
            budget = self._write_expenditure(budget, new_expenditure, expense.id)
            self._evaluator.reconcile(budget, new_expenditure, user_id)
        return expense

    def update_expense(
        self, expense_id: str, patch: Dict[str, object], user_id: Optional[str]
    ) -> Expense:
        user_id = require_user(user_id)
        changes = self._validate_patch(patch)
        budget_id = self._load_expense(expense_id).budget_id
        with self._locks.hold(budget_id):
            existing = self._load_expense(expense_id)
            budget = resolve_budget(self._store, existing.budget_id, user_id)
            if changes.pop("budget_id", existing.budget_id) != existing.budget_id:
                raise ValidationError("Expenses cannot be moved to another budget")

            delta = Decimal("0.00")
            if "amount" in changes:
                delta = Decimal(changes["amount"]) - existing.amount
            if not changes:
                return existing

            record = self._store.update(EXPENSES, existing.id, changes)
            if record is None:
                raise RecordNotFoundError("Expense not found")
            updated = Expense.from_dict(record)

            if delta != 0:
                new_expenditure = budget.expenditure + delta
                budget = self._write_expenditure(budget, new_expenditure, existing.id)
                self._evaluator.reconcile(budget, new_expenditure, user_id)
        return updated

    def delete_expense(self, expense_id: str, user_id: Optional[str]) -> bool:
        user_id = require_user(user_id)
        budget_id = self._load_expense(expense_id).budget_id
        with self._locks.hold(budget_id):
            existing = self._load_expense(expense_id)
            budget = resolve_budget(self._store, existing.budget_id, user_id)
            new_expenditure = budget.expenditure - existing.amount
            budget = self._write_expenditure(budget, new_expenditure, existing.id)
            try:
                self._store.delete(EXPENSES, existing.id)
            except PersistenceError:
                self._log_divergence(budget.id, existing.id, new_expenditure)
                raise
            self._evaluator.reconcile(budget, new_expenditure, user_id)
        return True

    def get_expense(self, expense_id: str, user_id: Optional[str]) -> Expense:
        user_id = require_user(user_id)
        expense = self._load_expense(expense_id)
        resolve_budget(self._store, expense.budget_id, user_id)
        return expense

    def list_expenses(
        self, user_id: Optional[str], budget_id: Optional[str] = None
    ) -> List[Expense]:
        user_id = require_user(user_id)
        if budget_id is not None:
            budget_ids = {resolve_budget(self._store, budget_id, user_id).id}
        else:
            budget_ids = {
                record["id"] for record in self._store.find_many(BUDGETS, user_id=user_id)
            }
        if not budget_ids:
            return []
        expenses = [
            Expense.from_dict(record)
            for record in self._store.find_many(EXPENSES, budget_id=budget_ids)
        ]
        return sorted(expenses, key=lambda exp: exp.recorded_at)

    def recompute_expenditure(self, budget_id: str, user_id: Optional[str]) -> Budget:
        """Reset a budget's expenditure to the sum of its live expenses.

        Used to repair a budget left stale by a partially applied write. Alert
        statuses are always re-evaluated; the overrun notice is only repeated
        when the stored figure actually changes.
        """
        user_id = require_user(user_id)
        with self._locks.hold(budget_id):
            budget = resolve_budget(self._store, budget_id, user_id)
            total = sum(
                (
                    Expense.from_dict(record).amount
                    for record in self._store.find_many(EXPENSES, budget_id=budget.id)
                ),
                start=Decimal("0.00"),
            )
            if total == budget.expenditure:
                self._evaluator.reconcile(budget, total, user_id, include_overrun=False)
                return budget
            logger.warning(
                "Repairing expenditure of budget %s: stored %s, expenses sum to %s",
                budget.id,
                format_money(budget.expenditure),
                format_money(total),
            )
            budget = self._write_expenditure(budget, total, None)
            self._evaluator.reconcile(budget, total, user_id)
        return budget

    # Internal helpers -----------------------------------------------------
    def _load_expense(self, expense_id: str) -> Expense:
        record = self._store.find_by_id(EXPENSES, expense_id)
        if record is None:
            raise RecordNotFoundError("Expense not found")
        return Expense.from_dict(record)

    def _write_expenditure(
        self, budget: Budget, new_expenditure: Decimal, expense_id: Optional[str]
    ) -> Budget:
        try:
            record = self._store.update(
                BUDGETS, budget.id, {"expenditure": format_money(new_expenditure)}
            )
        except PersistenceError:
            self._log_divergence(budget.id, expense_id, new_expenditure)
            raise
        if record is None:
            self._log_divergence(budget.id, expense_id, new_expenditure)
            raise RecordNotFoundError("Budget not found")
        return Budget.from_dict(record)

    @staticmethod
    def _log_divergence(budget_id: str, expense_id: Optional[str], expenditure: Decimal) -> None:
        logger.error(
            "Expenditure of budget %s may no longer match its expenses "
            "(expense %s, intended expenditure %s)",
            budget_id,
            expense_id,
            format_money(expenditure),
        )

    @staticmethod
    def _validate_new(payload: Dict[str, object]) -> Dict[str, object]:
        require_fields(payload, ("description", "amount", "budget_id"))
        return {
            "budget_id": validate_reference(payload.get("budget_id"), "budget_id"),
            "description": validate_required_str(
                payload.get("description"), "description", MAX_DESCRIPTION_LENGTH
            ),
            "amount": format_money(parse_amount(payload.get("amount"), "amount")),
            "recorded_at": isoformat_utc(datetime.now(timezone.utc)),
        }

    @staticmethod
    def _validate_patch(patch: Dict[str, object]) -> Dict[str, object]:
        # Unknown fields and explicit nulls are treated as absent.
        changes: Dict[str, object] = {}
        if patch.get("description") is not None:
            changes["description"] = validate_required_str(
                patch["description"], "description", MAX_DESCRIPTION_LENGTH
            )
        if patch.get("amount") is not None:
            changes["amount"] = format_money(parse_amount(patch["amount"], "amount"))
        if patch.get("budget_id") is not None:
            changes["budget_id"] = validate_reference(patch["budget_id"], "budget_id")
        return changes
