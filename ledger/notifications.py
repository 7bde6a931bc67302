"""Per-user notification feed."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

from .exceptions import ValidationError
from .guard import require_user
from .models import Notification, isoformat_utc
from .storage import NOTIFICATIONS, LedgerStore

logger = logging.getLogger(__name__)

MARK_ALL = "all"


class NotificationFeed:
    """Append-only list of notifications per user with a read flag."""

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def append(
        self, user_id: str, message: str, timestamp: Optional[datetime] = None
    ) -> Notification:
        created_at = timestamp or datetime.now(timezone.utc)
        record = self._store.create(
            NOTIFICATIONS,
            {
                "user_id": user_id,
                "message": message,
                "created_at": isoformat_utc(created_at),
                "is_read": False,
            },
        )
        logger.info("Notification %s appended for user %s", record["id"], user_id)
        return Notification.from_dict(record)

    def list(self, user_id: Optional[str], *, unread_only: bool = False) -> List[Notification]:
        """Return the user's notifications, newest first."""
        user_id = require_user(user_id)
        filters = {"user_id": user_id}
        if unread_only:
            filters["is_read"] = False
        notifications = [
            Notification.from_dict(record)
            for record in self._store.find_many(NOTIFICATIONS, **filters)
        ]
        # Reversed first so same-second entries keep the latest append on top.
        return sorted(reversed(notifications), key=lambda item: item.created_at, reverse=True)

    def unread_count(self, user_id: Optional[str]) -> int:
        return len(self.list(user_id, unread_only=True))

    def mark_read(self, ids: Union[str, Iterable[str]], user_id: Optional[str]) -> int:
        """Mark the given notifications (or ``"all"``) as read.

        Only notifications belonging to ``user_id`` are touched; unknown or
        foreign ids are ignored. Returns the number of notifications changed.
        """
        user_id = require_user(user_id)
        if isinstance(ids, str):
            if ids != MARK_ALL:
                raise ValidationError("notification_ids must be a list of ids or 'all'")
            targets = self._store.find_many(NOTIFICATIONS, user_id=user_id, is_read=False)
        elif isinstance(ids, (list, tuple, set, frozenset)):
            wanted = {str(item) for item in ids}
            targets = self._store.find_many(
                NOTIFICATIONS, user_id=user_id, is_read=False, id=wanted
            )
        else:
            raise ValidationError("notification_ids must be a list of ids or 'all'")

        for record in targets:
            self._store.update(NOTIFICATIONS, record["id"], {"is_read": True})
        return len(targets)
