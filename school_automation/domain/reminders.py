"""
Fee reminder selection windows and message text.

Architecture: school_automation/domain.  ZERO I/O.

Windows (``today`` is the clock's calendar date):
    early   -- today < due_date <= today + window_days
    due     -- due_date == today
    overdue -- due_date < today
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from school_automation.domain.types import ReminderType


@dataclass(frozen=True)
class ReminderWindow:
    """Inclusive due-date bounds; None means unbounded on that side."""

    due_from: date | None
    due_to: date | None

    def contains(self, due_date: date) -> bool:
        if self.due_from is not None and due_date < self.due_from:
            return False
        if self.due_to is not None and due_date > self.due_to:
            return False
        return True


@dataclass(frozen=True)
class ReminderCandidate:
    """A PENDING allocation as seen by the reminder job."""

    allocation_id: str
    student_id: str
    student_name: str
    family_name: str
    contact_email: str | None
    net_amount: Decimal
    paid_amount: Decimal
    due_date: date
    month: int
    year: int

    @property
    def outstanding_amount(self) -> Decimal:
        return max(Decimal("0"), self.net_amount - self.paid_amount)


@dataclass(frozen=True)
class NotificationMessage:
    subject: str
    body: str


def reminder_window(
    reminder_type: ReminderType,
    today: date,
    window_days: int,
) -> ReminderWindow:
    if reminder_type is ReminderType.EARLY:
        return ReminderWindow(
            due_from=today + timedelta(days=1),
            due_to=today + timedelta(days=window_days),
        )
    if reminder_type is ReminderType.DUE:
        return ReminderWindow(due_from=today, due_to=today)
    return ReminderWindow(due_from=None, due_to=today - timedelta(days=1))


def _money(amount: Decimal) -> str:
    return f"₹{amount:,.2f}"


def build_reminder_message(
    candidate: ReminderCandidate,
    reminder_type: ReminderType,
) -> NotificationMessage:
    due = candidate.due_date.strftime("%d %b %Y")
    amount = _money(candidate.outstanding_amount)
    if reminder_type is ReminderType.OVERDUE:
        subject = f"Overdue Fee Notice - {candidate.student_name}"
        body = (
            f"Dear {candidate.family_name}, the monthly fee of {amount} for "
            f"{candidate.student_name} was due on {due} and is now overdue. "
            "Please make the payment as soon as possible."
        )
    elif reminder_type is ReminderType.DUE:
        subject = f"Fee Due Today - {candidate.student_name}"
        body = (
            f"Dear {candidate.family_name}, the monthly fee of {amount} for "
            f"{candidate.student_name} is due today ({due}). "
            "Please make the payment at your earliest convenience."
        )
    else:
        subject = f"Fee Reminder - {candidate.student_name}"
        body = (
            f"Dear {candidate.family_name}, this is a reminder that the monthly "
            f"fee of {amount} for {candidate.student_name} is due on {due}. "
            "Please make the payment at your earliest convenience."
        )
    return NotificationMessage(subject=subject, body=body)


def build_bill_message(
    family_name: str,
    student_name: str,
    amount: Decimal,
    month: int,
    year: int,
) -> NotificationMessage:
    month_name = date(year, month, 1).strftime("%B")
    return NotificationMessage(
        subject=f"Monthly Bill Generated - {student_name} ({month_name} {year})",
        body=(
            f"Dear {family_name}, the monthly bill for {student_name} has been "
            f"generated for {month_name} {year}. Amount: {_money(amount)}. "
            "Please log in to your portal to view details and make payment."
        ),
    )
