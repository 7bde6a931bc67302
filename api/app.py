"""Flask REST API exposing the budget tracker services."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from ledger.alerts import AlertEvaluator
from ledger.exceptions import (
    AuthenticationError,
    ForbiddenError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)
from ledger.guard import require_user
from ledger.notifications import NotificationFeed
from ledger.reconciler import ExpenseReconciler
from ledger.services import AlertService, BudgetService
from ledger.storage import JSONStorage, LedgerStore

from .auth import current_user_id

DEFAULT_JWT_SECRET = "budget-tracker-development-secret-key"


def create_app(data_dir: Optional[Path] = None, secret_key: Optional[str] = None) -> Flask:
    app = Flask(__name__)

    env_name = os.getenv("BUDGET_TRACKER_ENV", "prod").lower()
    if env_name in {"dev", "development"}:
        CORS(app, resources={r"/*": {"origins": "*"}}, supports_credentials=True)
    else:
        allowed_origins = os.getenv("BUDGET_TRACKER_ALLOWED_ORIGINS")
        if allowed_origins:
            origins = [origin.strip() for origin in allowed_origins.split(",") if origin.strip()]
            CORS(app, resources={r"/*": {"origins": origins}}, supports_credentials=True)
        else:
            CORS(app)

    jwt_secret = secret_key or os.getenv("BUDGET_TRACKER_JWT_SECRET")
    if not jwt_secret:
        app.logger.warning("BUDGET_TRACKER_JWT_SECRET is not set; using the development secret")
        jwt_secret = DEFAULT_JWT_SECRET

    storage = JSONStorage(Path(data_dir or os.getenv("BUDGET_TRACKER_DATA_DIR", "data")))
    store = LedgerStore(storage)
    feed = NotificationFeed(store)
    reconciler = ExpenseReconciler(store, AlertEvaluator(store, feed))
    budget_service = BudgetService(store)
    alert_service = AlertService(store)

    def _success(payload: Any, status: int = 200):
        if status == 204:
            return ("", status)
        return jsonify(payload), status

    def _handle_error(exc: Exception, status: int, message: str):
        app.logger.error("%s: %s", message, exc)
        return jsonify({"error": message, "details": str(exc)}), status

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return _handle_error(exc, 400, "Validation error")

    @app.errorhandler(AuthenticationError)
    def handle_unauthenticated(exc: AuthenticationError):
        return _handle_error(exc, 401, "Authentication required")

    @app.errorhandler(ForbiddenError)
    def handle_forbidden(exc: ForbiddenError):
        return _handle_error(exc, 403, "Forbidden")

    @app.errorhandler(RecordNotFoundError)
    def handle_not_found(exc: RecordNotFoundError):
        return _handle_error(exc, 404, "Record not found")

    @app.errorhandler(PersistenceError)
    def handle_persistence_error(exc: PersistenceError):
        return _handle_error(exc, 500, "Persistence error")

    def _user() -> str:
        return require_user(current_user_id(jwt_secret))

    def _json_body() -> Dict[str, Any]:
        if not request.is_json:
            raise ValidationError("Request content must be application/json")
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Malformed JSON body")
        return data

    def _flag(name: str) -> bool:
        return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}

    # Budgets --------------------------------------------------------------
    @app.get("/budgets")
    def list_budgets():
        user_id = _user()
        budgets = budget_service.list(
            user_id, month=request.args.get("month"), year=request.args.get("year")
        )
        return _success({"items": [budget.to_dict() for budget in budgets]})

    @app.post("/budgets")
    def create_budget():
        user_id = _user()
        budget = budget_service.create(_json_body(), user_id)
        return _success(budget.to_dict(), 201)

    @app.get("/budgets/<budget_id>")
    def get_budget(budget_id: str):
        user_id = _user()
        return _success(budget_service.get(budget_id, user_id).to_dict())

    @app.put("/budgets/<budget_id>")
    def update_budget(budget_id: str):
        user_id = _user()
        budget = budget_service.update(budget_id, _json_body(), user_id)
        return _success(budget.to_dict())

    @app.delete("/budgets/<budget_id>")
    def delete_budget(budget_id: str):
        user_id = _user()
        budget_service.delete(budget_id, user_id)
        return _success({}, 204)

    @app.post("/budgets/<budget_id>/reconcile")
    def reconcile_budget(budget_id: str):
        user_id = _user()
        budget = reconciler.recompute_expenditure(budget_id, user_id)
        return _success(budget.to_dict())

    # Expenses -------------------------------------------------------------
    @app.get("/expenses")
    def list_expenses():
        user_id = _user()
        expenses = reconciler.list_expenses(user_id, request.args.get("budget_id") or None)
        return _success({"items": [expense.to_dict() for expense in expenses]})

    @app.post("/expenses")
    def create_expense():
        user_id = _user()
        expense = reconciler.create_expense(_json_body(), user_id)
        return _success(expense.to_dict(), 201)

    @app.get("/expenses/<expense_id>")
    def get_expense(expense_id: str):
        user_id = _user()
        return _success(reconciler.get_expense(expense_id, user_id).to_dict())

    @app.put("/expenses/<expense_id>")
    def update_expense(expense_id: str):
        user_id = _user()
        expense = reconciler.update_expense(expense_id, _json_body(), user_id)
        return _success(expense.to_dict())

    @app.delete("/expenses/<expense_id>")
    def delete_expense(expense_id: str):
        user_id = _user()
        reconciler.delete_expense(expense_id, user_id)
        return _success({}, 204)

    # Alerts ---------------------------------------------------------------
    @app.get("/alerts")
    def list_alerts():
        user_id = _user()
        alerts = alert_service.list(user_id, request.args.get("budget_id") or None)
        return _success({"items": [alert.to_dict() for alert in alerts]})

    @app.post("/alerts")
    def create_alert():
        user_id = _user()
        alert = alert_service.create(_json_body(), user_id)
        return _success(alert.to_dict(), 201)

    @app.get("/alerts/<alert_id>")
    def get_alert(alert_id: str):
        user_id = _user()
        return _success(alert_service.get(alert_id, user_id).to_dict())

    @app.put("/alerts/<alert_id>")
    def update_alert(alert_id: str):
        user_id = _user()
        alert = alert_service.update(alert_id, _json_body(), user_id)
        return _success(alert.to_dict())

    @app.delete("/alerts/<alert_id>")
    def delete_alert(alert_id: str):
        user_id = _user()
        alert_service.delete(alert_id, user_id)
        return _success({}, 204)

    # Notifications --------------------------------------------------------
    @app.get("/notifications")
    def list_notifications():
        user_id = _user()
        notifications = feed.list(user_id, unread_only=_flag("unread"))
        return _success({
            "items": [notification.to_dict() for notification in notifications],
            "unread": feed.unread_count(user_id),
        })

    @app.put("/notifications")
    def mark_notifications_read():
        user_id = _user()
        payload = _json_body()
        if "notification_ids" not in payload:
            raise ValidationError("notification_ids is required")
        updated = feed.mark_read(payload["notification_ids"], user_id)
        return _success({"updated": updated})

    return app
