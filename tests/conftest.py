"""
Pytest configuration and fixtures for budget tracker tests.
"""

from pathlib import Path

import pytest

from api.app import create_app
from api.auth import issue_token
from ledger.alerts import AlertEvaluator
from ledger.models import Alert, Budget
from ledger.notifications import NotificationFeed
from ledger.reconciler import ExpenseReconciler
from ledger.services import AlertService, BudgetService
from ledger.storage import ALERTS, BUDGETS, JSONStorage, LedgerStore

OWNER = "alice"
STRANGER = "mallory"
JWT_SECRET = "test-secret-for-budget-tracker-tokens-0123456789"


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Return an empty data directory."""
    return tmp_path / "data"


@pytest.fixture
def store(data_dir: Path) -> LedgerStore:
    return LedgerStore(JSONStorage(data_dir))


@pytest.fixture
def feed(store: LedgerStore) -> NotificationFeed:
    return NotificationFeed(store)


@pytest.fixture
def evaluator(store: LedgerStore, feed: NotificationFeed) -> AlertEvaluator:
    return AlertEvaluator(store, feed)


@pytest.fixture
def reconciler(store: LedgerStore, evaluator: AlertEvaluator) -> ExpenseReconciler:
    return ExpenseReconciler(store, evaluator)


@pytest.fixture
def budget_service(store: LedgerStore) -> BudgetService:
    return BudgetService(store)


@pytest.fixture
def alert_service(store: LedgerStore) -> AlertService:
    return AlertService(store)


@pytest.fixture
def budget(budget_service: BudgetService) -> Budget:
    """A 100.00 budget owned by OWNER with nothing spent."""
    return budget_service.create(
        {"name": "Groceries", "amount": "100", "month": 5, "year": 2025}, OWNER
    )


@pytest.fixture
def alert(alert_service: AlertService, budget: Budget) -> Alert:
    """An 80.00 threshold alert on ``budget``."""
    return alert_service.create(
        {"description": "Nearly out", "target_amount": "80", "budget_id": budget.id}, OWNER
    )


@pytest.fixture
def reload_budget(store: LedgerStore):
    """Return a loader that re-reads a budget from the store."""

    def _reload(budget_id: str) -> Budget:
        return Budget.from_dict(store.find_by_id(BUDGETS, budget_id))

    return _reload


@pytest.fixture
def reload_alert(store: LedgerStore):
    """Return a loader that re-reads an alert from the store."""

    def _reload(alert_id: str) -> Alert:
        return Alert.from_dict(store.find_by_id(ALERTS, alert_id))

    return _reload


@pytest.fixture
def app(tmp_path: Path):
    app = create_app(data_dir=tmp_path / "api-data", secret_key=JWT_SECRET)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def owner_headers() -> dict:
    return {"Authorization": f"Bearer {issue_token(OWNER, JWT_SECRET)}"}


@pytest.fixture
def stranger_headers() -> dict:
    return {"Authorization": f"Bearer {issue_token(STRANGER, JWT_SECRET)}"}
