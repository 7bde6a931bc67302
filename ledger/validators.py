"""Validation helpers shared across budget ledger services."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable

from .exceptions import ValidationError

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 200
MIN_YEAR = 1900
MAX_YEAR = 9999


def _quantize_two_decimals(amount: Decimal) -> Decimal:
    """Round the amount to two decimal places using HALF_UP rounding."""
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def require_fields(payload: Dict[str, object], fields: Iterable[str]) -> None:
    """Fail on the first field that is absent, ``None`` or an empty string."""
    for field in fields:
        value = payload.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{field} is required")


def parse_amount(raw: object, field: str, *, allow_zero: bool = False) -> Decimal:
    """Convert raw input to a Decimal with exactly two fraction digits.

    Amounts must be strictly positive unless ``allow_zero`` is set, in which
    case zero is also accepted.
    """
    if raw is None or isinstance(raw, bool):
        raise ValidationError(f"{field} must be a numeric value")
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, TypeError) as exc:
        raise ValidationError(f"{field} must be a numeric value") from exc

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if allow_zero:
        if amount < 0:
            raise ValidationError(f"{field} must not be negative")
    elif amount <= 0:
        raise ValidationError(f"{field} must be greater than zero")

    try:
        return _quantize_two_decimals(amount)
    except InvalidOperation as exc:
        raise ValidationError(f"{field} is too large") from exc


def validate_required_str(value: object, field: str, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"{field} cannot be empty")
    if len(trimmed) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return trimmed


def validate_reference(value: object, field: str) -> str:
    """Validate a record identifier supplied by a caller."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(f"{field} must be a record identifier")
    reference = str(value).strip()
    if not reference:
        raise ValidationError(f"{field} cannot be empty")
    return reference


def _parse_int(value: object, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer") from exc


def validate_month(value: object) -> int:
    month = _parse_int(value, "month")
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    return month


def validate_year(value: object) -> int:
    year = _parse_int(value, "year")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError(f"year must be between {MIN_YEAR} and {MAX_YEAR}")
    return year


def reject_fields(changes: Dict[str, object], forbidden: Iterable[str], record: str) -> None:
    for field in forbidden:
        if field in changes:
            raise ValidationError(f"{field} of a {record} cannot be changed")
