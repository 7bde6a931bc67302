"""Console interface for the budget tracker."""

from __future__ import annotations

import argparse
import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from ledger.alerts import AlertEvaluator
from ledger.exceptions import (
    AuthenticationError,
    ForbiddenError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)
from ledger.notifications import MARK_ALL, NotificationFeed
from ledger.reconciler import ExpenseReconciler
from ledger.services import AlertService, BudgetService
from ledger.storage import JSONStorage, LedgerStore


class Services:
    def __init__(self, data_dir: Path) -> None:
        store = LedgerStore(JSONStorage(data_dir))
        self.feed = NotificationFeed(store)
        self.reconciler = ExpenseReconciler(store, AlertEvaluator(store, self.feed))
        self.budgets = BudgetService(store)
        self.alerts = AlertService(store)


def _parse_amount(value: str) -> str:
    try:
        amount = Decimal(value)
    except Exception as exc:  # pragma: no cover - delegated to service
        raise argparse.ArgumentTypeError("Amount must be a numeric value") from exc
    if amount < 0:
        raise argparse.ArgumentTypeError("Amount must not be negative")
    return value


def _cleaned(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _format_budget(budget: Dict[str, Any]) -> str:
    return (
        f"[{budget['id']}] {budget['name']} ({budget['year']}-{budget['month']:02d})\n"
        f"  Spent: {budget['expenditure']} of {budget['amount']}\n"
    )


def _format_expense(expense: Dict[str, Any]) -> str:
    return (
        f"[{expense['id']}] {expense['recorded_at']} {expense['amount']}\n"
        f"  Budget: {expense['budget_id']} | Description: {expense['description']}\n"
    )


def _format_alert(alert: Dict[str, Any]) -> str:
    return (
        f"[{alert['id']}] {alert['status']} at {alert['target_amount']}\n"
        f"  Budget: {alert['budget_id']} | Description: {alert['description']}\n"
    )


def _format_notification(notification: Dict[str, Any]) -> str:
    marker = " " if notification["is_read"] else "*"
    return f"{marker} [{notification['id']}] {notification['created_at']} {notification['message']}"


def handle_budget(args: argparse.Namespace, services: Services, user_id: Optional[str]) -> None:
    if args.command == "add":
        payload = {"name": args.name, "amount": args.amount, "month": args.month, "year": args.year}
        budget = services.budgets.create(payload, user_id)
        print("Budget added:\n" + _format_budget(budget.to_dict()))
    elif args.command == "list":
        budgets = services.budgets.list(user_id, month=args.month, year=args.year)
        if not budgets:
            print("No budgets found.")
            return
        print(f"Found {len(budgets)} budgets:")
        for budget in budgets:
            print(_format_budget(budget.to_dict()))
    elif args.command == "edit":
        changes = _cleaned(
            {"name": args.name, "amount": args.amount, "month": args.month, "year": args.year}
        )
        budget = services.budgets.update(args.id, changes, user_id)
        print("Budget updated:\n" + _format_budget(budget.to_dict()))
    elif args.command == "delete":
        services.budgets.delete(args.id, user_id)
        print(f"Budget {args.id} deleted.")
    elif args.command == "reconcile":
        budget = services.reconciler.recompute_expenditure(args.id, user_id)
        print("Budget reconciled:\n" + _format_budget(budget.to_dict()))


def handle_expense(args: argparse.Namespace, services: Services, user_id: Optional[str]) -> None:
    reconciler = services.reconciler
    if args.command == "add":
        payload = {"budget_id": args.budget_id, "amount": args.amount, "description": args.description}
        expense = reconciler.create_expense(payload, user_id)
        print("Expense added:\n" + _format_expense(expense.to_dict()))
    elif args.command == "list":
        expenses = reconciler.list_expenses(user_id, args.budget_id)
        if not expenses:
            print("No expenses found.")
            return
        total = sum((expense.amount for expense in expenses), start=Decimal("0.00"))
        print(f"Found {len(expenses)} expenses (total {total:.2f}):")
        for expense in expenses:
            print(_format_expense(expense.to_dict()))
    elif args.command == "edit":
        changes = _cleaned({"amount": args.amount, "description": args.description})
        expense = reconciler.update_expense(args.id, changes, user_id)
        print("Expense updated:\n" + _format_expense(expense.to_dict()))
    elif args.command == "delete":
        reconciler.delete_expense(args.id, user_id)
        print(f"Expense {args.id} deleted.")


def handle_alert(args: argparse.Namespace, services: Services, user_id: Optional[str]) -> None:
    if args.command == "add":
        payload = {
            "budget_id": args.budget_id,
            "target_amount": args.target_amount,
            "description": args.description,
        }
        alert = services.alerts.create(payload, user_id)
        print("Alert added:\n" + _format_alert(alert.to_dict()))
    elif args.command == "list":
        alerts = services.alerts.list(user_id, args.budget_id)
        if not alerts:
            print("No alerts found.")
            return
        print(f"Found {len(alerts)} alerts:")
        for alert in alerts:
            print(_format_alert(alert.to_dict()))
    elif args.command == "edit":
        changes = _cleaned({"target_amount": args.target_amount, "description": args.description})
        alert = services.alerts.update(args.id, changes, user_id)
        print("Alert updated:\n" + _format_alert(alert.to_dict()))
    elif args.command == "delete":
        services.alerts.delete(args.id, user_id)
        print(f"Alert {args.id} deleted.")


def handle_notification(
    args: argparse.Namespace, services: Services, user_id: Optional[str]
) -> None:
    if args.command == "list":
        notifications = services.feed.list(user_id, unread_only=args.unread)
        if not notifications:
            print("No notifications.")
            return
        for notification in notifications:
            print(_format_notification(notification.to_dict()))
    elif args.command == "read":
        ids = MARK_ALL if args.all else args.ids
        if not ids:
            raise ValidationError("Give notification ids or --all")
        updated = services.feed.mark_read(ids, user_id)
        print(f"Marked {updated} notifications as read.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Budget Tracker CLI")
    parser.add_argument(
        "--data-dir",
        default=os.getenv("BUDGET_TRACKER_DATA_DIR", "data"),
        type=Path,
        help="Directory to store JSON data (default: ./data)",
    )
    parser.add_argument(
        "--user",
        default=os.getenv("BUDGET_TRACKER_USER"),
        help="User to act as (default: $BUDGET_TRACKER_USER)",
    )

    subparsers = parser.add_subparsers(dest="entity", required=True)

    budget_parser = subparsers.add_parser("budget", help="Manage budgets")
    budget_sub = budget_parser.add_subparsers(dest="command", required=True)

    budget_add = budget_sub.add_parser("add", help="Add a new budget")
    budget_add.add_argument("name")
    budget_add.add_argument("amount", type=_parse_amount)
    budget_add.add_argument("month", type=int)
    budget_add.add_argument("year", type=int)

    budget_list = budget_sub.add_parser("list", help="List budgets")
    budget_list.add_argument("--month", type=int)
    budget_list.add_argument("--year", type=int)

    budget_edit = budget_sub.add_parser("edit", help="Edit an existing budget")
    budget_edit.add_argument("id")
    budget_edit.add_argument("--name")
    budget_edit.add_argument("--amount", type=_parse_amount)
    budget_edit.add_argument("--month", type=int)
    budget_edit.add_argument("--year", type=int)

    budget_delete = budget_sub.add_parser("delete", help="Delete a budget")
    budget_delete.add_argument("id")

    budget_reconcile = budget_sub.add_parser(
        "reconcile", help="Recompute a budget's expenditure from its expenses"
    )
    budget_reconcile.add_argument("id")

    expense_parser = subparsers.add_parser("expense", help="Manage expenses")
    expense_sub = expense_parser.add_subparsers(dest="command", required=True)

    expense_add = expense_sub.add_parser("add", help="Add a new expense")
    expense_add.add_argument("budget_id")
    expense_add.add_argument("amount", type=_parse_amount)
    expense_add.add_argument("description")

    expense_list = expense_sub.add_parser("list", help="List expenses")
    expense_list.add_argument("--budget-id")

    expense_edit = expense_sub.add_parser("edit", help="Edit an existing expense")
    expense_edit.add_argument("id")
    expense_edit.add_argument("--amount", type=_parse_amount)
    expense_edit.add_argument("--description")

    expense_delete = expense_sub.add_parser("delete", help="Delete an expense")
    expense_delete.add_argument("id")

    alert_parser = subparsers.add_parser("alert", help="Manage alerts")
    alert_sub = alert_parser.add_subparsers(dest="command", required=True)

    alert_add = alert_sub.add_parser("add", help="Add a new alert")
    alert_add.add_argument("budget_id")
    alert_add.add_argument("target_amount", type=_parse_amount)
    alert_add.add_argument("description")

    alert_list = alert_sub.add_parser("list", help="List alerts")
    alert_list.add_argument("--budget-id")

    alert_edit = alert_sub.add_parser("edit", help="Edit an existing alert")
    alert_edit.add_argument("id")
    alert_edit.add_argument("--target-amount", type=_parse_amount)
    alert_edit.add_argument("--description")

    alert_delete = alert_sub.add_parser("delete", help="Delete an alert")
    alert_delete.add_argument("id")

    notification_parser = subparsers.add_parser("notification", help="Read notifications")
    notification_sub = notification_parser.add_subparsers(dest="command", required=True)

    notification_list = notification_sub.add_parser("list", help="List notifications")
    notification_list.add_argument("--unread", action="store_true")

    notification_read = notification_sub.add_parser("read", help="Mark notifications as read")
    notification_read.add_argument("ids", nargs="*")
    notification_read.add_argument("--all", action="store_true")

    return parser


HANDLERS = {
    "budget": handle_budget,
    "expense": handle_expense,
    "alert": handle_alert,
    "notification": handle_notification,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        handler = HANDLERS[args.entity]
    except KeyError:  # pragma: no cover - argparse should prevent this
        parser.error(f"Unknown entity: {args.entity}")
        return 2

    try:
        handler(args, Services(args.data_dir), args.user)
    except ValidationError as exc:
        print(f"Validation error: {exc}", file=sys.stderr)
        return 1
    except AuthenticationError as exc:
        print(f"{exc}: pass --user or set BUDGET_TRACKER_USER", file=sys.stderr)
        return 1
    except (RecordNotFoundError, ForbiddenError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except PersistenceError as exc:
        print(f"Storage error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
