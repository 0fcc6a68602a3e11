"""
Fixtures and in-memory collaborators for automation engine tests.

FakeDataStore implements the DataStore protocol over plain dicts with the
same upsert rules as the SQL store; RecordingNotificationSender keeps every
message it is asked to deliver.
"""

import threading
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

import pytest

from school_kernel.exceptions import DataStoreUnavailableError, ItemProcessingError

from school_automation.adapters.notification import DeliveryResult
from school_automation.domain.fees import (
    FeeAllocationDraft,
    StudentFeeProfile,
    SubscriptionFee,
    UpsertOutcome,
    gross_monthly_fee,
)
from school_automation.domain.reminders import ReminderCandidate, ReminderWindow
from school_automation.jobs.base import JobHandlerRegistry
from school_automation.jobs.billing import MonthlyBillingHandler
from school_automation.jobs.reminders import FeeReminderHandler
from school_automation.services.engine import AutomationEngine


# =============================================================================
# Fake collaborators
# =============================================================================


@dataclass
class FakeFamily:
    family_id: str
    name: str
    contact_email: str | None
    discount: Decimal = Decimal("0")


@dataclass
class FakeStudent:
    student_id: str
    name: str
    family_id: str
    subscriptions: tuple[SubscriptionFee, ...]
    is_active: bool = True


@dataclass
class FakeAllocation:
    allocation_id: str
    student_id: str
    month: int
    year: int
    gross_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    due_date: date
    status: str = "PENDING"
    paid_amount: Decimal = Decimal("0")


class FakeDataStore:
    """In-memory DataStore.

    ``unavailable`` makes every call raise DataStoreUnavailableError;
    ``failing_students`` makes profile reads fail for those student ids.
    """

    def __init__(self) -> None:
        self.families: dict[str, FakeFamily] = {}
        self.students: dict[str, FakeStudent] = {}
        self.allocations: dict[tuple[str, int, int], FakeAllocation] = {}
        self.unavailable = False
        self.failing_students: set[str] = set()
        self.upsert_calls = 0
        self._lock = threading.Lock()
        self._next_id = 0

    # -- seeding --------------------------------------------------------------

    def add_family(self, family_id, name="Sharma Family",
                   contact_email="parent@example.com", discount="0"):
        self.families[family_id] = FakeFamily(
            family_id, name, contact_email, Decimal(discount),
        )
        return self.families[family_id]

    def add_student(self, student_id, family_id="f1", fee="1000.00",
                    billing_cycle="MONTHLY", missing_fee_structure=False,
                    is_active=True, name=None, discount="0"):
        if family_id not in self.families:
            self.add_family(family_id)
        subscription = SubscriptionFee(
            subscription_id=f"sub-{student_id}",
            label="Tuition",
            amount=None if missing_fee_structure else Decimal(fee),
            billing_cycle=None if missing_fee_structure else billing_cycle,
            discount_amount=Decimal(discount),
        )
        self.students[student_id] = FakeStudent(
            student_id=student_id,
            name=name or f"Student {student_id}",
            family_id=family_id,
            subscriptions=(subscription,),
            is_active=is_active,
        )
        return self.students[student_id]

    def add_allocation(self, allocation_id, student_id, due_date,
                       net_amount="1000.00", status="PENDING", paid="0"):
        if student_id not in self.students:
            self.add_student(student_id)
        allocation = FakeAllocation(
            allocation_id=allocation_id,
            student_id=student_id,
            month=due_date.month,
            year=due_date.year,
            gross_amount=Decimal(net_amount),
            discount_amount=Decimal("0"),
            net_amount=Decimal(net_amount),
            due_date=due_date,
            status=status,
            paid_amount=Decimal(paid),
        )
        self.allocations[(student_id, allocation.month, allocation.year)] = allocation
        return allocation

    def _check(self, operation):
        if self.unavailable:
            raise DataStoreUnavailableError(operation, "connection refused")

    # -- DataStore protocol ---------------------------------------------------

    def list_billable_student_ids(self, period_start, period_end):
        self._check("list_billable_student_ids")
        return tuple(sorted(
            s.student_id for s in self.students.values()
            if s.is_active and s.subscriptions
        ))

    def get_student_fee_profile(self, student_id, period_start, period_end):
        self._check("get_student_fee_profile")
        if student_id in self.failing_students:
            raise ItemProcessingError(student_id, f"profile read failed for {student_id}")
        student = self.students[student_id]
        family = self.families[student.family_id]
        siblings = [
            s for s in self.students.values()
            if s.family_id == family.family_id and s.is_active
        ]
        return StudentFeeProfile(
            student_id=student.student_id,
            student_name=student.name,
            family_id=family.family_id,
            family_name=family.name,
            contact_email=family.contact_email,
            family_discount=family.discount,
            family_gross_monthly=sum(
                (gross_monthly_fee(s.subscriptions) for s in siblings), Decimal("0"),
            ),
            subscriptions=student.subscriptions,
        )

    def upsert_fee_allocation(self, draft: FeeAllocationDraft) -> UpsertOutcome:
        self._check("upsert_fee_allocation")
        key = (draft.student_id, draft.month, draft.year)
        with self._lock:
            self.upsert_calls += 1
            existing = self.allocations.get(key)
            if existing is None:
                self._next_id += 1
                allocation = FakeAllocation(
                    allocation_id=f"alloc-{self._next_id}",
                    student_id=draft.student_id,
                    month=draft.month,
                    year=draft.year,
                    gross_amount=draft.gross_amount,
                    discount_amount=draft.discount_amount,
                    net_amount=draft.net_amount,
                    due_date=draft.due_date,
                )
                self.allocations[key] = allocation
                return UpsertOutcome(allocation_id=allocation.allocation_id, created=True)
            if existing.status == "PENDING":
                existing.gross_amount = draft.gross_amount
                existing.discount_amount = draft.discount_amount
                existing.net_amount = draft.net_amount
                existing.due_date = draft.due_date
            return UpsertOutcome(allocation_id=existing.allocation_id, created=False)

    def list_pending_allocations(self, window: ReminderWindow):
        self._check("list_pending_allocations")
        candidates = []
        for allocation in sorted(self.allocations.values(), key=lambda a: a.due_date):
            if allocation.status != "PENDING" or not window.contains(allocation.due_date):
                continue
            student = self.students[allocation.student_id]
            family = self.families[student.family_id]
            candidates.append(ReminderCandidate(
                allocation_id=allocation.allocation_id,
                student_id=student.student_id,
                student_name=student.name,
                family_name=family.name,
                contact_email=family.contact_email,
                net_amount=allocation.net_amount,
                paid_amount=allocation.paid_amount,
                due_date=allocation.due_date,
                month=allocation.month,
                year=allocation.year,
            ))
        return tuple(candidates)


class BlockingDataStore(FakeDataStore):
    """Holds ``list_billable_student_ids`` until ``release()`` is called.

    Lets tests observe a MonthlyBilling run while it is in flight.
    """

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self._gate = threading.Event()

    def release(self) -> None:
        self._gate.set()

    def list_billable_student_ids(self, period_start, period_end):
        self.entered.set()
        self._gate.wait(timeout=10)
        return super().list_billable_student_ids(period_start, period_end)


@dataclass
class RecordingNotificationSender:
    """Records deliveries; recipients in ``fail_for`` get a failed result."""

    fail_for: set = field(default_factory=set)
    sent: list = field(default_factory=list)

    def __post_init__(self):
        self._lock = threading.Lock()

    def send(self, recipient, message):
        if recipient in self.fail_for:
            return DeliveryResult(success=False, error="mailbox unavailable")
        with self._lock:
            self.sent.append((recipient, message))
            return DeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")

    @property
    def subjects(self) -> list[str]:
        return [message.subject for _, message in self.sent]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store():
    return FakeDataStore()


@pytest.fixture
def sender():
    return RecordingNotificationSender()


@pytest.fixture
def handlers(sender):
    registry = JobHandlerRegistry()
    registry.register(MonthlyBillingHandler(sender=sender))
    registry.register(FeeReminderHandler(sender=sender))
    return registry


@pytest.fixture
def engine(store, handlers, clock):
    return AutomationEngine(
        store=store, handlers=handlers, clock=clock, item_workers=4,
    )


@pytest.fixture
def blocking_store():
    """BlockingDataStore seeded with one billable student; released on teardown."""
    store = BlockingDataStore()
    store.add_student("s1")
    yield store
    store.release()
