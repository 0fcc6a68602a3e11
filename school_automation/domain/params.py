"""
Job parameter structs and their defaulting rules.

Raw parameters arrive as loose mappings (from YAML job definitions or from
the execution surface).  Each job type resolves them ONCE, before any item
is prepared, into a frozen struct; batch code only ever sees the struct.

Defaulting rules:
    MonthlyBilling
        month  -- omitted/None -> calendar month of ``as_of``
        year   -- omitted/None -> calendar year of ``as_of``
        month must be 1..12; year must lie in [min_year, max_year].
    FeeReminder
        reminder_type -- required; one of early | due | overdue
                         ("reminderType" accepted as an alias)
        window_days   -- omitted -> the engine's configured early window

Architecture: school_automation/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from school_kernel.exceptions import JobValidationError

from school_automation.domain.types import ReminderType


@dataclass(frozen=True)
class MonthlyBillingParams:
    month: int
    year: int

    def as_dict(self) -> dict[str, Any]:
        return {"month": self.month, "year": self.year}


@dataclass(frozen=True)
class FeeReminderParams:
    reminder_type: ReminderType
    window_days: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "reminder_type": self.reminder_type.value,
            "window_days": self.window_days,
        }


def _coerce_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise JobValidationError(name, value, "must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise JobValidationError(name, value, "must be an integer")


def resolve_billing_params(
    raw: Mapping[str, Any],
    as_of: datetime,
    min_year: int,
    max_year: int,
) -> MonthlyBillingParams:
    """Resolve MonthlyBilling parameters.

    Raises:
        JobValidationError: month outside 1..12, year outside the accepted
            range, or a non-integer value.
    """
    month = raw.get("month")
    year = raw.get("year")

    month = as_of.month if month is None else _coerce_int("month", month)
    year = as_of.year if year is None else _coerce_int("year", year)

    if not 1 <= month <= 12:
        raise JobValidationError("month", month, "must be between 1 and 12")
    if not min_year <= year <= max_year:
        raise JobValidationError(
            "year", year, f"must be between {min_year} and {max_year}",
        )
    return MonthlyBillingParams(month=month, year=year)


def resolve_reminder_params(
    raw: Mapping[str, Any],
    default_window_days: int,
) -> FeeReminderParams:
    """Resolve FeeReminder parameters.

    Raises:
        JobValidationError: Missing or unknown reminder type, or a
            non-positive window.
    """
    value = raw.get("reminder_type", raw.get("reminderType"))
    if value is None:
        raise JobValidationError("reminder_type", None, "is required")
    try:
        reminder_type = ReminderType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in ReminderType)
        raise JobValidationError(
            "reminder_type", value, f"must be one of: {allowed}",
        ) from None

    window = raw.get("window_days")
    window_days = (
        default_window_days if window is None
        else _coerce_int("window_days", window)
    )
    if window_days <= 0:
        raise JobValidationError("window_days", window_days, "must be positive")

    return FeeReminderParams(reminder_type=reminder_type, window_days=window_days)
