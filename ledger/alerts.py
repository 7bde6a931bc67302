"""Alert evaluation against a budget's running expenditure."""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from .models import (
    ALERT_ACTIVE,
    ALERT_TRIGGERED,
    Alert,
    Budget,
    Notification,
    format_money,
)
from .notifications import NotificationFeed
from .storage import ALERTS, LedgerStore

logger = logging.getLogger(__name__)


def status_for(target_amount: Decimal, expenditure: Decimal) -> str:
    """Status an alert should hold for the given expenditure."""
    return ALERT_TRIGGERED if expenditure >= target_amount else ALERT_ACTIVE


def utilization_percent(expenditure: Decimal, amount: Decimal) -> Optional[int]:
    """Whole-number share of ``amount`` spent, rounded half up.

    Returns ``None`` for a zero allocation.
    """
    if amount == 0:
        return None
    ratio = expenditure / amount * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def alert_message(alert: Alert, budget: Budget, expenditure: Decimal) -> str:
    percent = utilization_percent(expenditure, budget.amount)
    share = f"{percent}%" if percent is not None else "no allocation"
    return (
        f'Alert: {alert.description} - Budget "{budget.name}" has reached '
        f"{format_money(expenditure)} of {format_money(budget.amount)} ({share})"
    )


def overrun_message(budget: Budget, expenditure: Decimal) -> str:
    return (
        f'Budget "{budget.name}" has exceeded the budget amount of '
        f"{format_money(budget.amount)} with an expenditure of {format_money(expenditure)}"
    )


class AlertEvaluator:
    """Re-evaluates a budget's alerts whenever its expenditure changes."""

    def __init__(self, store: LedgerStore, feed: NotificationFeed) -> None:
        self._store = store
        self._feed = feed

    def reconcile(
        self,
        budget: Budget,
        new_expenditure: Decimal,
        user_id: str,
        *,
        include_overrun: bool = True,
    ) -> List[Notification]:
        """Flip alert statuses for ``new_expenditure`` and emit notifications.

        An alert crossing upward becomes TRIGGERED and notifies once; one
        falling back below its target returns to ACTIVE silently. While the
        expenditure exceeds the budget amount, every run appends an overrun
        notification unless ``include_overrun`` is false.
        """
        emitted: List[Notification] = []
        for record in self._store.find_many(ALERTS, budget_id=budget.id):
            alert = Alert.from_dict(record)
            if new_expenditure >= alert.target_amount and not alert.is_triggered:
                self._store.update(ALERTS, alert.id, {"status": ALERT_TRIGGERED})
                logger.info(
                    "Alert %s triggered on budget %s at %s",
                    alert.id,
                    budget.id,
                    format_money(new_expenditure),
                )
                emitted.append(
                    self._feed.append(user_id, alert_message(alert, budget, new_expenditure))
                )
            elif new_expenditure < alert.target_amount and alert.is_triggered:
                self._store.update(ALERTS, alert.id, {"status": ALERT_ACTIVE})
                logger.info("Alert %s reset on budget %s", alert.id, budget.id)

        if include_overrun and new_expenditure > budget.amount:
            logger.info("Budget %s over its amount at %s", budget.id, format_money(new_expenditure))
            emitted.append(self._feed.append(user_id, overrun_message(budget, new_expenditure)))
        return emitted
