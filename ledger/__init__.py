"""Core business logic package for the budget tracker."""

from .alerts import AlertEvaluator
from .exceptions import (
    AuthenticationError,
    ForbiddenError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)
from .models import Alert, Budget, Expense, Notification
from .notifications import NotificationFeed
from .reconciler import ExpenseReconciler
from .services import AlertService, BudgetService
from .storage import JSONStorage, LedgerStore

__all__ = [
    "Alert",
    "Budget",
    "Expense",
    "Notification",
    "AlertEvaluator",
    "AlertService",
    "BudgetService",
    "ExpenseReconciler",
    "NotificationFeed",
    "JSONStorage",
    "LedgerStore",
    "AuthenticationError",
    "ForbiddenError",
    "PersistenceError",
    "RecordNotFoundError",
    "ValidationError",
]
