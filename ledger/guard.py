"""Ownership checks shared by every expense and alert operation.

Expenses and alerts carry no owner of their own; access always resolves
through the parent budget's ``user_id``.
"""

from __future__ import annotations

from typing import Optional

from .exceptions import AuthenticationError, ForbiddenError, RecordNotFoundError
from .models import Budget
from .storage import BUDGETS, LedgerStore


def require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise AuthenticationError("Authentication required")
    return user_id


def authorize(user_id: str, budget: Optional[Budget]) -> Budget:
    """Return ``budget`` when ``user_id`` owns it.

    A missing budget is reported as not found, a budget owned by someone
    else as forbidden.
    """
    if budget is None:
        raise RecordNotFoundError("Budget not found")
    if budget.user_id != user_id:
        raise ForbiddenError("Unauthorized: Budget does not belong to this user")
    return budget


def resolve_budget(store: LedgerStore, budget_id: str, user_id: str) -> Budget:
    record = store.find_by_id(BUDGETS, budget_id)
    budget = Budget.from_dict(record) if record is not None else None
    return authorize(user_id, budget)
