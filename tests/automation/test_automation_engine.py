"""
Tests for school_automation.services.engine.AutomationEngine with the
MonthlyBilling and FeeReminder handlers against the in-memory Data Store.

Validates parameter validation before work, per-item failure isolation,
the total == successful + failed accounting, billing idempotence and the
reminder selection windows.
"""

import threading
import time
from datetime import date, timedelta
from decimal import Decimal

import pytest

from school_kernel.exceptions import (
    AutomationSystemError,
    DataStoreUnavailableError,
    JobHandlerNotRegisteredError,
    JobValidationError,
)
from school_kernel.logging_config import LogContext

from school_automation.domain.types import JobType
from school_automation.jobs.base import JobHandlerRegistry, JobItem
from school_automation.jobs.billing import MonthlyBillingHandler
from school_automation.jobs.reminders import FeeReminderHandler
from school_automation.services.engine import AutomationEngine

TODAY = date(2024, 3, 10)


def _bill(engine, month=3, year=2024):
    return engine.execute(JobType.MONTHLY_BILLING, {"month": month, "year": year})


def _remind(engine, reminder_type):
    return engine.execute(JobType.FEE_REMINDER, {"reminder_type": reminder_type})


# =============================================================================
# Test handlers
# =============================================================================


class SlowHandler:
    """Two items; the one keyed "slow" blocks until ``gate`` is set."""

    job_type = JobType.FEE_REMINDER
    description = "Slow test handler"

    def __init__(self, gate: threading.Event):
        self.gate = gate

    def resolve_params(self, raw, as_of):
        return None

    def prepare_items(self, params, store, as_of):
        return (JobItem(0, "fast"), JobItem(1, "slow"))

    def execute_item(self, item, params, store, as_of):
        if item.item_key == "slow":
            self.gate.wait(timeout=5)


class BrokenPrepareHandler(SlowHandler):
    def prepare_items(self, params, store, as_of):
        raise RuntimeError("query exploded")


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    def test_month_out_of_range_does_no_work(self, engine, store):
        store.add_student("s1")
        with pytest.raises(JobValidationError):
            _bill(engine, month=13, year=2024)
        assert store.upsert_calls == 0

    def test_year_out_of_range(self, engine):
        with pytest.raises(JobValidationError):
            _bill(engine, month=1, year=2031)

    def test_unknown_reminder_type(self, engine, sender):
        with pytest.raises(JobValidationError):
            _remind(engine, "weekly")
        assert sender.sent == []

    def test_unknown_job_type(self, engine):
        with pytest.raises(JobValidationError):
            engine.execute("Payroll", {})

    def test_job_type_string_accepted(self, engine, store):
        store.add_student("s1")
        assert engine.execute("MonthlyBilling", {"month": 3, "year": 2024}).total_items == 1

    def test_handler_not_registered(self, store, clock):
        engine = AutomationEngine(store=store, handlers=JobHandlerRegistry(), clock=clock)
        with pytest.raises(JobHandlerNotRegisteredError):
            engine.execute(JobType.MONTHLY_BILLING, {})

    def test_resolve_applies_defaults(self, engine, clock):
        job = engine.resolve(JobType.MONTHLY_BILLING)
        assert job.parameters_dict() == {"month": 3, "year": 2024}
        assert job.as_of == clock.now()

    def test_invalid_worker_count(self, store, handlers, clock):
        with pytest.raises(ValueError):
            AutomationEngine(store=store, handlers=handlers, clock=clock, item_workers=0)


# =============================================================================
# MonthlyBilling
# =============================================================================


class TestMonthlyBilling:
    def test_one_student_missing_fee_structure(self, engine, store):
        store.add_student("s1")
        store.add_student("s2", missing_fee_structure=True)

        result = _bill(engine)

        assert result.total_items == 2
        assert result.successful_items == 1
        assert result.failed_items == 1
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.student_id == "s2"
        assert error.item_id == "s2"
        assert error.code == "MISSING_FEE_STRUCTURE"
        assert error.message
        assert ("s1", 3, 2024) in store.allocations
        assert ("s2", 3, 2024) not in store.allocations

    def test_defaults_to_current_period(self, engine, store):
        store.add_student("s1")
        engine.execute(JobType.MONTHLY_BILLING)
        allocation = store.allocations[("s1", 3, 2024)]
        assert allocation.due_date == date(2024, 3, 15)
        assert allocation.net_amount == Decimal("1000.00")

    def test_rerun_is_idempotent(self, engine, store, sender):
        store.add_student("s1")
        store.add_student("s2", family_id="f2")

        first = _bill(engine)
        snapshot = {k: (a.allocation_id, a.net_amount) for k, a in store.allocations.items()}
        second = _bill(engine)

        assert first.successful_items == second.successful_items == 2
        assert {k: (a.allocation_id, a.net_amount) for k, a in store.allocations.items()} == snapshot
        assert len(store.allocations) == 2
        # Bill notices go out on creation only.
        assert len(sender.sent) == 2

    def test_rerun_reprices_pending_allocation(self, engine, store):
        store.add_student("s1", fee="1000.00")
        _bill(engine)
        store.add_student("s1", fee="1200.00")
        _bill(engine)
        assert store.allocations[("s1", 3, 2024)].net_amount == Decimal("1200.00")

    def test_rerun_leaves_settled_allocation(self, engine, store):
        store.add_student("s1", fee="1000.00")
        _bill(engine)
        store.allocations[("s1", 3, 2024)].status = "PAID"
        store.add_student("s1", fee="1200.00")
        result = _bill(engine)
        assert result.successful_items == 1
        assert store.allocations[("s1", 3, 2024)].net_amount == Decimal("1000.00")

    def test_family_discount_shared(self, engine, store):
        store.add_family("f1", discount="300")
        store.add_student("s1", family_id="f1", fee="1000.00")
        store.add_student("s2", family_id="f1", fee="2000.00")
        _bill(engine)
        assert store.allocations[("s1", 3, 2024)].net_amount == Decimal("900.00")
        assert store.allocations[("s2", 3, 2024)].net_amount == Decimal("1800.00")

    def test_inactive_students_not_billed(self, engine, store):
        store.add_student("s1")
        store.add_student("s2", is_active=False)
        assert _bill(engine).total_items == 1

    def test_bill_notice_sent_to_family(self, engine, store, sender):
        store.add_family("f1", contact_email="sharma@example.com")
        store.add_student("s1", family_id="f1", name="Asha")
        _bill(engine)
        assert sender.sent[0][0] == "sharma@example.com"
        assert sender.subjects == ["Monthly Bill Generated - Asha (March 2024)"]

    def test_failed_bill_notice_does_not_fail_item(self, engine, store, sender):
        store.add_student("s1")
        sender.fail_for.add("parent@example.com")
        result = _bill(engine)
        assert result.success
        assert ("s1", 3, 2024) in store.allocations

    def test_no_notice_without_email(self, engine, store, sender):
        store.add_family("f1", contact_email=None)
        store.add_student("s1", family_id="f1")
        assert _bill(engine).success
        assert sender.sent == []

    def test_notify_disabled(self, store, sender, clock):
        handlers = JobHandlerRegistry()
        handlers.register(MonthlyBillingHandler(sender=sender, notify_on_billing=False))
        engine = AutomationEngine(store=store, handlers=handlers, clock=clock)
        store.add_student("s1")
        engine.execute(JobType.MONTHLY_BILLING)
        assert sender.sent == []

    def test_item_errors_keep_item_order(self, engine, store):
        for i in range(10):
            store.add_student(f"s{i}", missing_fee_structure=bool(i % 2))
        result = _bill(engine)
        assert result.total_items == 10
        assert result.successful_items == 5
        assert [e.student_id for e in result.errors] == ["s1", "s3", "s5", "s7", "s9"]

    def test_item_level_store_failure_is_isolated(self, engine, store):
        store.add_student("s1")
        store.add_student("s2")
        store.failing_students.add("s1")
        result = _bill(engine)
        assert result.failed_items == 1
        assert result.errors[0].code == "ITEM_ERROR"
        assert ("s2", 3, 2024) in store.allocations

    def test_empty_batch(self, engine):
        result = _bill(engine)
        assert result.total_items == 0
        assert result.success

    def test_store_unavailable_aborts(self, engine, store):
        store.add_student("s1")
        store.unavailable = True
        with pytest.raises(DataStoreUnavailableError):
            _bill(engine)

    def test_log_context_reaches_item_threads(self, engine, store, captured_logs):
        store.add_student("s1")
        with LogContext.bind(run_id="run-ctx"):
            _bill(engine)
        records = [r for r in captured_logs() if r["message"] == "bill_generated"]
        assert records
        assert records[0]["run_id"] == "run-ctx"


# =============================================================================
# FeeReminder
# =============================================================================


class TestFeeReminder:
    def test_overdue_selects_only_past_due(self, engine, store, sender):
        store.add_allocation("a-tomorrow", "s1", TODAY + timedelta(days=1))
        store.add_allocation("a-yesterday", "s2", TODAY - timedelta(days=1))

        result = _remind(engine, "overdue")

        assert result.total_items == 1
        assert result.successful_items == 1
        assert len(sender.sent) == 1
        assert sender.subjects[0].startswith("Overdue Fee Notice")

    def test_due_selects_today_only(self, engine, store, sender):
        store.add_allocation("a-today", "s1", TODAY)
        store.add_allocation("a-tomorrow", "s2", TODAY + timedelta(days=1))
        result = _remind(engine, "due")
        assert result.total_items == 1
        assert sender.subjects[0].startswith("Fee Due Today")

    def test_early_window(self, engine, store):
        store.add_allocation("a-2", "s1", TODAY + timedelta(days=2))
        store.add_allocation("a-3", "s2", TODAY + timedelta(days=3))
        store.add_allocation("a-5", "s3", TODAY + timedelta(days=5))
        store.add_allocation("a-0", "s4", TODAY)
        assert _remind(engine, "early").total_items == 2

    def test_settled_allocations_skipped(self, engine, store):
        store.add_allocation("a-paid", "s1", TODAY - timedelta(days=3), status="PAID")
        assert _remind(engine, "overdue").total_items == 0

    def test_outstanding_amount_in_message(self, engine, store, sender):
        store.add_allocation("a1", "s1", TODAY - timedelta(days=1),
                             net_amount="1000.00", paid="400.00")
        _remind(engine, "overdue")
        assert "₹600.00" in sender.sent[0][1].body

    def test_fully_paid_pending_allocation_skipped(self, engine, store, sender):
        store.add_allocation("a-paid-up", "s1", TODAY - timedelta(days=2),
                             net_amount="1000.00", paid="1000.00")
        store.add_allocation("a-owing", "s2", TODAY - timedelta(days=2))

        result = _remind(engine, "overdue")

        assert result.total_items == 1
        assert len(sender.sent) == 1
        assert "₹0.00" not in sender.sent[0][1].body

    def test_missing_recipient_fails_item(self, engine, store):
        store.add_family("f-none", contact_email=None)
        store.add_student("s1", family_id="f-none")
        store.add_allocation("a1", "s1", TODAY - timedelta(days=1))
        store.add_allocation("a2", "s2", TODAY - timedelta(days=2))

        result = _remind(engine, "overdue")

        assert result.total_items == 2
        assert result.failed_items == 1
        error = result.errors[0]
        assert error.item_id == "a1"
        assert error.student_id == "s1"
        assert error.code == "MISSING_RECIPIENT"

    def test_sender_failure_fails_item(self, engine, store, sender):
        store.add_allocation("a1", "s1", TODAY - timedelta(days=1))
        sender.fail_for.add("parent@example.com")
        result = _remind(engine, "overdue")
        assert result.failed_items == 1
        assert result.errors[0].code == "NOTIFICATION_FAILED"

    def test_window_enforced_even_if_store_overselects(self, store, sender, clock):
        """Candidates outside the window are dropped by the handler too."""

        class LeakyStore(type(store)):
            def list_pending_allocations(self, window):
                from school_automation.domain.reminders import ReminderWindow
                return super().list_pending_allocations(ReminderWindow(None, None))

        leaky = LeakyStore()
        leaky.add_allocation("a-tomorrow", "s1", TODAY + timedelta(days=1))
        leaky.add_allocation("a-yesterday", "s2", TODAY - timedelta(days=1))
        handlers = JobHandlerRegistry()
        handlers.register(FeeReminderHandler(sender=sender))
        engine = AutomationEngine(store=leaky, handlers=handlers, clock=clock)

        result = _remind(engine, "overdue")
        assert result.total_items == 1

    def test_store_unavailable_aborts(self, engine, store):
        store.unavailable = True
        with pytest.raises(AutomationSystemError):
            _remind(engine, "due")


# =============================================================================
# Engine mechanics
# =============================================================================


class TestEngineMechanics:
    def test_item_timeout_counts_as_failed(self, store, clock):
        gate = threading.Event()
        handlers = JobHandlerRegistry()
        handlers.register(SlowHandler(gate))
        engine = AutomationEngine(
            store=store, handlers=handlers, clock=clock, item_timeout_seconds=0.05,
        )
        try:
            result = engine.execute(JobType.FEE_REMINDER)
        finally:
            gate.set()

        assert result.total_items == 2
        assert result.successful_items == 1
        assert result.failed_items == 1
        assert result.errors[0].item_id == "slow"
        assert result.errors[0].code == "ITEM_TIMEOUT"

    def test_prepare_failure_is_system_error(self, store, clock):
        handlers = JobHandlerRegistry()
        handlers.register(BrokenPrepareHandler(threading.Event()))
        engine = AutomationEngine(store=store, handlers=handlers, clock=clock)
        with pytest.raises(AutomationSystemError) as exc_info:
            engine.execute(JobType.FEE_REMINDER)
        assert "query exploded" in str(exc_info.value)

    def test_result_timestamp_from_clock(self, engine, clock):
        assert _bill(engine).timestamp == clock.now()


# =============================================================================
# Stalled runs
# =============================================================================


@pytest.fixture
def hanging_store(store):
    """Twenty billable students whose profile reads block until teardown."""
    gate = threading.Event()

    class HangingStore(type(store)):
        def get_student_fee_profile(self, student_id, period_start, period_end):
            gate.wait(timeout=10)
            return super().get_student_fee_profile(student_id, period_start, period_end)

    hanging = HangingStore()
    for n in range(20):
        hanging.add_student(f"s{n:02d}")
    yield hanging
    gate.set()


@pytest.fixture
def offline_item_store(store):
    """Students list fine; every per-student read finds the store down."""

    class OfflineItemStore(type(store)):
        def get_student_fee_profile(self, student_id, period_start, period_end):
            raise DataStoreUnavailableError("get_student_fee_profile", "connection reset")

    offline = OfflineItemStore()
    for n in range(10):
        offline.add_student(f"s{n}")
    return offline


class TestStalledRuns:
    def test_hanging_store_aborts_early(self, hanging_store, handlers, clock):
        engine = AutomationEngine(
            store=hanging_store, handlers=handlers, clock=clock,
            item_workers=2, item_timeout_seconds=0.1, abort_after_stalls=3,
        )

        started = time.monotonic()
        result = _bill(engine)
        elapsed = time.monotonic() - started

        assert elapsed < 1.5
        assert result.total_items == 20
        assert result.successful_items == 0
        assert result.failed_items == 20
        run_error = result.errors[0]
        assert run_error.item_id is None
        assert run_error.code == "SYSTEM_ERROR"
        assert "3 consecutive" in run_error.message
        codes = [e.code for e in result.errors[1:]]
        assert codes[:3] == ["ITEM_TIMEOUT"] * 3
        assert set(codes[3:]) == {"RUN_ABORTED"}

    def test_unavailable_store_inside_items_aborts(self, offline_item_store, handlers, clock):
        engine = AutomationEngine(
            store=offline_item_store, handlers=handlers, clock=clock, item_workers=1,
            abort_after_stalls=2,
        )

        result = _bill(engine)

        assert result.total_items == result.successful_items + result.failed_items == 10
        assert result.errors[0].item_id is None
        assert result.errors[0].code == "DATA_STORE_UNAVAILABLE"
        assert not result.success

    def test_isolated_failures_do_not_abort(self, engine, store):
        for n in range(6):
            store.add_student(f"s{n}")
        store.failing_students = {"s0", "s2", "s4"}

        result = _bill(engine)

        assert result.failed_items == 3
        assert result.successful_items == 3
        assert all(e.item_id is not None for e in result.errors)

    def test_stall_threshold_must_be_positive(self, store, handlers, clock):
        with pytest.raises(ValueError):
            AutomationEngine(store=store, handlers=handlers, clock=clock, abort_after_stalls=0)
