"""Data models for the budget ledger domain."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

__all__ = [
    "ALERT_ACTIVE",
    "ALERT_TRIGGERED",
    "Alert",
    "Budget",
    "Expense",
    "Notification",
    "format_money",
    "isoformat_utc",
    "parse_datetime",
]

ALERT_ACTIVE = "ACTIVE"
ALERT_TRIGGERED = "TRIGGERED"


def isoformat_utc(dt: datetime) -> str:
    """Return an ISO 8601 string with trailing Z for UTC-aware datetimes."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    iso = dt.isoformat(timespec="seconds")
    # datetime.isoformat renders +00:00 for UTC; replace with the shorter Z form.
    return iso.replace("+00:00", "Z")


def parse_datetime(value: str) -> datetime:
    """Parse ISO 8601 datetime strings with optional trailing Z into UTC-aware datetime."""
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_money(value: Decimal) -> str:
    return f"{value:.2f}"


@dataclass(frozen=True)
class Budget:
    id: str
    user_id: str
    name: str
    amount: Decimal
    month: int
    year: int
    expenditure: Decimal = Decimal("0.00")

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the budget to JSON-friendly natives."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "amount": format_money(self.amount),
            "expenditure": format_money(self.expenditure),
            "month": self.month,
            "year": self.year,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Budget":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            name=data["name"],
            amount=Decimal(str(data["amount"])),
            expenditure=Decimal(str(data.get("expenditure", "0.00"))),
            month=int(data["month"]),
            year=int(data["year"]),
        )


@dataclass(frozen=True)
class Expense:
    id: str
    budget_id: str
    description: str
    amount: Decimal
    recorded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the expense to JSON-friendly natives."""
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "description": self.description,
            "amount": format_money(self.amount),
            "recorded_at": isoformat_utc(self.recorded_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Expense":
        """Hydrate an Expense from JSON-native data."""
        return cls(
            id=data["id"],
            budget_id=data["budget_id"],
            description=data["description"],
            amount=Decimal(str(data["amount"])),
            recorded_at=parse_datetime(data["recorded_at"]),
        )


@dataclass(frozen=True)
class Alert:
    id: str
    budget_id: str
    description: str
    target_amount: Decimal
    status: str = ALERT_ACTIVE

    @property
    def is_triggered(self) -> bool:
        return self.status == ALERT_TRIGGERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "description": self.description,
            "target_amount": format_money(self.target_amount),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        return cls(
            id=data["id"],
            budget_id=data["budget_id"],
            description=data["description"],
            target_amount=Decimal(str(data["target_amount"])),
            status=data.get("status", ALERT_ACTIVE),
        )


@dataclass(frozen=True)
class Notification:
    id: str
    user_id: str
    message: str
    created_at: datetime
    is_read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "message": self.message,
            "created_at": isoformat_utc(self.created_at),
            "is_read": self.is_read,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            message=data["message"],
            created_at=parse_datetime(data["created_at"]),
            is_read=bool(data.get("is_read", False)),
        )
