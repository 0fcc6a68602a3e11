"""
Tests for school_automation.domain.reminders -- selection windows and
message text.
"""

from datetime import date, timedelta
from decimal import Decimal

from school_automation.domain.reminders import (
    ReminderCandidate,
    ReminderWindow,
    build_bill_message,
    build_reminder_message,
    reminder_window,
)
from school_automation.domain.types import ReminderType

TODAY = date(2024, 3, 10)


def _candidate(due_date=TODAY, net="1000.00", paid="0"):
    return ReminderCandidate(
        allocation_id="alloc-1",
        student_id="s1",
        student_name="Asha",
        family_name="Sharma Family",
        contact_email="parent@example.com",
        net_amount=Decimal(net),
        paid_amount=Decimal(paid),
        due_date=due_date,
        month=due_date.month,
        year=due_date.year,
    )


# =============================================================================
# Windows
# =============================================================================


class TestReminderWindow:
    def test_early_window(self):
        window = reminder_window(ReminderType.EARLY, TODAY, 3)
        assert not window.contains(TODAY)
        assert window.contains(TODAY + timedelta(days=1))
        assert window.contains(TODAY + timedelta(days=3))
        assert not window.contains(TODAY + timedelta(days=4))
        assert not window.contains(TODAY - timedelta(days=1))

    def test_due_window(self):
        window = reminder_window(ReminderType.DUE, TODAY, 3)
        assert window == ReminderWindow(due_from=TODAY, due_to=TODAY)
        assert window.contains(TODAY)
        assert not window.contains(TODAY + timedelta(days=1))
        assert not window.contains(TODAY - timedelta(days=1))

    def test_overdue_window(self):
        window = reminder_window(ReminderType.OVERDUE, TODAY, 3)
        assert window.due_from is None
        assert window.contains(TODAY - timedelta(days=1))
        assert window.contains(date(2020, 1, 15))
        assert not window.contains(TODAY)
        assert not window.contains(TODAY + timedelta(days=1))

    def test_only_due_window_contains_today(self):
        hits = [
            t for t in ReminderType
            if reminder_window(t, TODAY, 3).contains(TODAY)
        ]
        assert hits == [ReminderType.DUE]


# =============================================================================
# Candidates and messages
# =============================================================================


class TestReminderCandidate:
    def test_outstanding_subtracts_payments(self):
        assert _candidate(net="1000.00", paid="400.00").outstanding_amount == Decimal("600.00")

    def test_outstanding_never_negative(self):
        assert _candidate(net="1000.00", paid="1200.00").outstanding_amount == 0


class TestMessages:
    def test_overdue_message(self):
        message = build_reminder_message(
            _candidate(due_date=date(2024, 3, 9), paid="250"), ReminderType.OVERDUE,
        )
        assert message.subject == "Overdue Fee Notice - Asha"
        assert "₹750.00" in message.body
        assert "09 Mar 2024" in message.body
        assert "overdue" in message.body

    def test_due_message(self):
        message = build_reminder_message(_candidate(), ReminderType.DUE)
        assert message.subject == "Fee Due Today - Asha"
        assert "due today" in message.body

    def test_early_message(self):
        message = build_reminder_message(
            _candidate(due_date=date(2024, 3, 12), net="12500"), ReminderType.EARLY,
        )
        assert message.subject == "Fee Reminder - Asha"
        assert "₹12,500.00" in message.body

    def test_bill_message(self):
        message = build_bill_message("Sharma Family", "Asha", Decimal("750"), 3, 2024)
        assert message.subject == "Monthly Bill Generated - Asha (March 2024)"
        assert "₹750.00" in message.body
