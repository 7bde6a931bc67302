"""Framework-agnostic budget and alert services."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .alerts import status_for
from .exceptions import RecordNotFoundError, ValidationError
from .guard import authorize, require_user, resolve_budget
from .models import Alert, Budget, format_money
from .storage import ALERTS, BUDGETS, EXPENSES, LedgerStore
from .validators import (
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    parse_amount,
    reject_fields,
    require_fields,
    validate_month,
    validate_reference,
    validate_required_str,
    validate_year,
)

logger = logging.getLogger(__name__)


class BudgetService:
    """Owner-scoped budget management.

    ``expenditure`` is never written here; the expense reconciler owns it.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def create(self, payload: Dict[str, object], user_id: Optional[str]) -> Budget:
        user_id = require_user(user_id)
        reject_fields(payload, ("expenditure",), "budget")
        require_fields(payload, ("name", "amount", "month", "year"))
        data = self._validate_payload(payload)
        data["user_id"] = user_id
        data["expenditure"] = format_money(Decimal("0"))
        budget = Budget.from_dict(self._store.create(BUDGETS, data))
        logger.info("Budget %s created for user %s", budget.id, user_id)
        return budget

    def get(self, budget_id: str, user_id: Optional[str]) -> Budget:
        user_id = require_user(user_id)
        return resolve_budget(self._store, budget_id, user_id)

    def list(
        self, user_id: Optional[str], *, month: Optional[object] = None, year: Optional[object] = None
    ) -> List[Budget]:
        user_id = require_user(user_id)
        filters: Dict[str, object] = {"user_id": user_id}
        if month is not None:
            filters["month"] = validate_month(month)
        if year is not None:
            filters["year"] = validate_year(year)
        budgets = [Budget.from_dict(record) for record in self._store.find_many(BUDGETS, **filters)]
        return sorted(budgets, key=lambda budget: (budget.year, budget.month, budget.name.lower()))

    def update(self, budget_id: str, changes: Dict[str, object], user_id: Optional[str]) -> Budget:
        user_id = require_user(user_id)
        reject_fields(changes, ("expenditure", "user_id", "id"), "budget")
        existing = resolve_budget(self._store, budget_id, user_id)
        # Merge existing serialised data with incoming changes to support partial updates.
        merged = {**existing.to_dict(), **{k: v for k, v in changes.items() if v is not None}}
        data = self._validate_payload(merged)
        record = self._store.update(BUDGETS, existing.id, data)
        if record is None:
            raise RecordNotFoundError("Budget not found")
        return Budget.from_dict(record)

    def delete(self, budget_id: str, user_id: Optional[str]) -> None:
        user_id = require_user(user_id)
        budget = resolve_budget(self._store, budget_id, user_id)
        self._store.delete(BUDGETS, budget.id)
        # Expenses and alerts are left in place.
        orphaned_expenses = len(self._store.find_many(EXPENSES, budget_id=budget.id))
        orphaned_alerts = len(self._store.find_many(ALERTS, budget_id=budget.id))
        if orphaned_expenses or orphaned_alerts:
            logger.warning(
                "Budget %s deleted leaving %d expenses and %d alerts orphaned",
                budget.id,
                orphaned_expenses,
                orphaned_alerts,
            )
        else:
            logger.info("Budget %s deleted", budget.id)

    @staticmethod
    def _validate_payload(payload: Dict[str, object]) -> Dict[str, object]:
        return {
            "name": validate_required_str(payload.get("name"), "name", MAX_NAME_LENGTH),
            "amount": format_money(parse_amount(payload.get("amount"), "amount", allow_zero=True)),
            "month": validate_month(payload.get("month")),
            "year": validate_year(payload.get("year")),
        }


class AlertService:
    """Owner-scoped alert management.

    Alert status is derived from the budget's expenditure and cannot be set
    by callers. Creating or editing an alert never emits a notification.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def create(self, payload: Dict[str, object], user_id: Optional[str]) -> Alert:
        user_id = require_user(user_id)
        require_fields(payload, ("description", "target_amount", "budget_id"))
        budget_id = validate_reference(payload.get("budget_id"), "budget_id")
        data = self._validate_payload(payload)
        budget = resolve_budget(self._store, budget_id, user_id)
        data["budget_id"] = budget.id
        data["status"] = status_for(Decimal(data["target_amount"]), budget.expenditure)
        alert = Alert.from_dict(self._store.create(ALERTS, data))
        logger.info("Alert %s created on budget %s as %s", alert.id, budget.id, alert.status)
        return alert

    def get(self, alert_id: str, user_id: Optional[str]) -> Alert:
        user_id = require_user(user_id)
        alert, _ = self._resolve(alert_id, user_id)
        return alert

    def list(self, user_id: Optional[str], budget_id: Optional[str] = None) -> List[Alert]:
        user_id = require_user(user_id)
        if budget_id is not None:
            budget_ids = {resolve_budget(self._store, budget_id, user_id).id}
        else:
            budget_ids = {
                record["id"] for record in self._store.find_many(BUDGETS, user_id=user_id)
            }
        if not budget_ids:
            return []
        alerts = [Alert.from_dict(record) for record in self._store.find_many(ALERTS, budget_id=budget_ids)]
        return sorted(alerts, key=lambda alert: alert.target_amount)

    def update(self, alert_id: str, changes: Dict[str, object], user_id: Optional[str]) -> Alert:
        user_id = require_user(user_id)
        reject_fields(changes, ("status",), "alert")
        alert, budget = self._resolve(alert_id, user_id)
        if changes.get("budget_id") not in (None, alert.budget_id):
            raise ValidationError("Alerts cannot be moved to another budget")
        merged = {**alert.to_dict(), **{k: v for k, v in changes.items() if v is not None}}
        data = self._validate_payload(merged)
        data["status"] = status_for(Decimal(data["target_amount"]), budget.expenditure)
        record = self._store.update(ALERTS, alert.id, data)
        if record is None:
            raise RecordNotFoundError("Alert not found")
        return Alert.from_dict(record)

    def delete(self, alert_id: str, user_id: Optional[str]) -> None:
        user_id = require_user(user_id)
        alert, _ = self._resolve(alert_id, user_id)
        self._store.delete(ALERTS, alert.id)

    def _resolve(self, alert_id: str, user_id: str) -> Tuple[Alert, Budget]:
        record = self._store.find_by_id(ALERTS, alert_id)
        if record is None:
            raise RecordNotFoundError("Alert not found")
        alert = Alert.from_dict(record)
        budget_record = self._store.find_by_id(BUDGETS, alert.budget_id)
        budget = authorize(user_id, Budget.from_dict(budget_record) if budget_record else None)
        return alert, budget

    @staticmethod
    def _validate_payload(payload: Dict[str, object]) -> Dict[str, object]:
        return {
            "description": validate_required_str(
                payload.get("description"), "description", MAX_DESCRIPTION_LENGTH
            ),
            "target_amount": format_money(
                parse_amount(payload.get("target_amount"), "target_amount", allow_zero=True)
            ),
        }
