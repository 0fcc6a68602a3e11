"""
DataStore protocol -- persistence collaborator for automation jobs.

Contract:
    - Reads return immutable snapshots (frozen DTOs from the domain
      package), never live ORM objects, so results can cross threads.
    - ``upsert_fee_allocation`` is idempotent per (student_id, month, year):
      a second call for the same key updates or leaves the existing
      allocation and never creates another one.
    - Every method may be called concurrently from worker threads.
    - Whole-store outages surface as ``DataStoreUnavailableError``.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol, runtime_checkable

from school_automation.domain.fees import (
    FeeAllocationDraft,
    StudentFeeProfile,
    UpsertOutcome,
)
from school_automation.domain.reminders import ReminderCandidate, ReminderWindow


@runtime_checkable
class DataStore(Protocol):
    def list_billable_student_ids(
        self, period_start: date, period_end: date,
    ) -> tuple[str, ...]:
        """Ids of active students with at least one subscription active
        somewhere in [period_start, period_end]."""
        ...

    def get_student_fee_profile(
        self, student_id: str, period_start: date, period_end: date,
    ) -> StudentFeeProfile:
        """Fee snapshot for one student over the billing period."""
        ...

    def upsert_fee_allocation(self, draft: FeeAllocationDraft) -> UpsertOutcome:
        """Create or update the allocation keyed by (student, month, year)."""
        ...

    def list_pending_allocations(
        self, window: ReminderWindow,
    ) -> tuple[ReminderCandidate, ...]:
        """PENDING allocations whose due date lies inside ``window``."""
        ...
