"""Persistence utilities for the budget ledger core services."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from .exceptions import PersistenceError

BUDGETS = "budget"
EXPENSES = "expense"
ALERTS = "alert"
NOTIFICATIONS = "notification"

RESOURCES = {
    BUDGETS: "budgets.json",
    EXPENSES: "expenses.json",
    ALERTS: "alerts.json",
    NOTIFICATIONS: "notifications.json",
}


class JSONStorage:
    """Simple file-based JSON storage with crash-safe writes."""

    def __init__(self, base_path: Path) -> None:
        self._base_path = base_path
        self._base_path.mkdir(parents=True, exist_ok=True)

    def load(self, resource: str) -> List[Dict[str, Any]]:
        path = self._base_path / resource
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupted JSON data in {path}") from exc
        except OSError as exc:
            raise PersistenceError(f"Unable to read from {path}") from exc

        if not isinstance(payload, list):
            raise PersistenceError(f"Expected list payload in {path}")
        return payload

    def save(self, resource: str, records: Iterable[Dict[str, Any]]) -> None:
        path = self._base_path / resource
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with temp_path.open("w", encoding="utf-8") as handle:
                json.dump(list(records), handle, indent=2)
                handle.flush()
            # Use replace for atomic move on POSIX; ensures crash-safe persistence.
            temp_path.replace(path)
        except OSError as exc:
            raise PersistenceError(f"Unable to write to {path}") from exc

    @property
    def base_path(self) -> Path:
        return self._base_path


class LedgerStore:
    """Keyed record store over :class:`JSONStorage`, one resource file per kind.

    Records are JSON-native dictionaries carrying a unique ``id``. Writes to a
    single record are last-write-wins; nothing here spans more than one record.
    """

    def __init__(self, storage: JSONStorage) -> None:
        self._storage = storage
        # Serialises read-modify-write cycles on the resource files.
        self._lock = threading.RLock()

    @property
    def storage(self) -> JSONStorage:
        return self._storage

    def find_by_id(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for record in self._load(kind):
                if record.get("id") == record_id:
                    return dict(record)
        return None

    def find_many(self, kind: str, **filters: Any) -> List[Dict[str, Any]]:
        """Return records whose fields equal every filter value.

        A list, tuple, set or frozenset filter value matches any of its members.
        """
        with self._lock:
            records = self._load(kind)
        return [dict(record) for record in records if _matches(record, filters)]

    def create(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data)
        record.setdefault("id", str(uuid4()))
        with self._lock:
            records = self._load(kind)
            if any(existing.get("id") == record["id"] for existing in records):
                raise PersistenceError(f"Duplicate {kind} id {record['id']}")
            records.append(record)
            self._save(kind, records)
        return dict(record)

    def update(self, kind: str, record_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        changes = {key: value for key, value in patch.items() if key != "id"}
        with self._lock:
            records = self._load(kind)
            for index, record in enumerate(records):
                if record.get("id") == record_id:
                    updated = {**record, **changes}
                    records[index] = updated
                    self._save(kind, records)
                    return dict(updated)
        return None

    def delete(self, kind: str, record_id: str) -> bool:
        with self._lock:
            records = self._load(kind)
            remaining = [record for record in records if record.get("id") != record_id]
            if len(remaining) == len(records):
                return False
            self._save(kind, remaining)
        return True

    def _load(self, kind: str) -> List[Dict[str, Any]]:
        return self._storage.load(_resource(kind))

    def _save(self, kind: str, records: List[Dict[str, Any]]) -> None:
        self._storage.save(_resource(kind), records)


def _resource(kind: str) -> str:
    try:
        return RESOURCES[kind]
    except KeyError as exc:
        raise PersistenceError(f"Unknown record kind: {kind}") from exc


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for field, expected in filters.items():
        actual = record.get(field)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True
