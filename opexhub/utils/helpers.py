"""Shared field parsers for service-layer input validation.

parse_date_input:   ISO / DD.MM.YYYY → date, ValidationError on bad input
parse_decimal:      number or numeric string → Decimal, ValidationError on bad input
normalize_month:    YYYY-M / YYYY-MM → YYYY-MM, ValidationError on other shapes
"""
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from opexhub.core.exceptions import ValidationError

_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")


def parse_date_input(value, field="date"):
    """Parse a date string, raising ValidationError on bad input.

    Empty input returns None. Supports: YYYY-MM-DD, DD.MM.YYYY, date objects.
    """
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        try:
            return datetime.strptime(str(value), "%d.%m.%Y").date()
        except ValueError as exc:
            raise ValidationError(
                f"Invalid {field}. Use YYYY-MM-DD or DD.MM.YYYY.",
                {field: "invalid date"},
            ) from exc


def parse_decimal(value, field="value"):
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric", {field: "not a number"})
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"{field} must be numeric", {field: "not a number"}) from exc
    if not result.is_finite():
        raise ValidationError(f"{field} must be numeric", {field: "not a number"})
    return result


def normalize_month(value):
    """Return ``value`` as YYYY-MM; accepts a single-digit month."""
    match = _MONTH_RE.match(str(value or "").strip())
    if not match:
        raise ValidationError(
            "monitoring_month must be in YYYY-MM format",
            {"monitoring_month": "expected YYYY-MM"},
        )
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(
            f"monitoring_month has invalid month {month}",
            {"monitoring_month": "month must be 01-12"},
        )
    return f"{year:04d}-{month:02d}"
