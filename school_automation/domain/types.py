"""
school_automation.domain.types -- Pure frozen dataclasses for the engine.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections; state changes produce new instances via
``dataclasses.replace``.

Invariants enforced:
    - AU-2: JobResult rejects counts where total != successful + failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


# =============================================================================
# Enums
# =============================================================================


class JobType(str, Enum):
    """Kinds of automation work the engine knows how to execute."""

    MONTHLY_BILLING = "MonthlyBilling"
    FEE_REMINDER = "FeeReminder"


class RunStatus(str, Enum):
    """JobRun lifecycle: PENDING -> RUNNING -> {COMPLETED, FAILED}."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"  # Every item succeeded
    FAILED = "failed"  # Run aborted, or at least one item failed

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class RunTrigger(str, Enum):
    """What started a run."""

    SCHEDULE = "schedule"  # Scheduler tick found the job due
    MANUAL = "manual"  # trigger_job() from the control surface
    DIRECT = "direct"  # execute_*_job() from the execution surface


class ReminderType(str, Enum):
    """Which PENDING allocations a FeeReminder run targets."""

    EARLY = "early"  # Due within the upcoming window
    DUE = "due"  # Due today
    OVERDUE = "overdue"  # Due date already passed


def _freeze_parameters(snapshot: Any) -> None:
    """Give a frozen snapshot a read-only copy of its ``parameters``."""
    object.__setattr__(snapshot, "parameters", MappingProxyType(dict(snapshot.parameters)))


# =============================================================================
# Job definitions
# =============================================================================


@dataclass(frozen=True)
class JobDefinition:
    """Immutable snapshot of a recurring job and its schedule state.

    Exactly one of ``schedule`` (5-field cron) and ``interval_seconds`` is
    set.  ``next_run`` is None while the job is inactive (AU-5).
    """

    job_id: str  # e.g. "monthly-billing"
    name: str
    job_type: JobType
    schedule: str | None = None
    interval_seconds: int | None = None
    description: str = ""
    is_active: bool = True
    parameters: Mapping[str, Any] = field(default_factory=dict)
    last_run: datetime | None = None
    next_run: datetime | None = None

    def __post_init__(self) -> None:
        _freeze_parameters(self)

    @property
    def schedule_label(self) -> str:
        if self.schedule is not None:
            return self.schedule
        return f"every {self.interval_seconds}s"


# =============================================================================
# Run results
# =============================================================================


@dataclass(frozen=True)
class JobItemError:
    """One failed item inside a batch.

    ``item_id`` is the entity the item processed (student id for billing,
    allocation id for reminders); it is None for run-level failures.
    """

    item_id: str | None
    message: str
    student_id: str | None = None
    code: str = "ITEM_ERROR"


@dataclass(frozen=True)
class JobResult:
    """Aggregated outcome of one run, shared by every job type.

    Immutable once attached to a terminal JobRun.
    """

    total_items: int
    successful_items: int
    failed_items: int
    execution_time_ms: int
    timestamp: datetime
    errors: tuple[JobItemError, ...] = ()

    def __post_init__(self) -> None:
        if self.total_items != self.successful_items + self.failed_items:
            raise ValueError(
                f"total_items ({self.total_items}) must equal successful_items "
                f"({self.successful_items}) + failed_items ({self.failed_items})"
            )

    @property
    def success(self) -> bool:
        return self.failed_items == 0 and not self.errors

    @classmethod
    def aborted(
        cls,
        message: str,
        timestamp: datetime,
        execution_time_ms: int = 0,
        code: str = "SYSTEM_ERROR",
    ) -> JobResult:
        """Result for a run that could not process any item."""
        return cls(
            total_items=0,
            successful_items=0,
            failed_items=0,
            execution_time_ms=execution_time_ms,
            timestamp=timestamp,
            errors=(JobItemError(item_id=None, message=message, code=code),),
        )


@dataclass(frozen=True)
class JobRun:
    """Immutable snapshot of one execution of a job type.

    Owned by the Run Tracker from ``record_start`` until evicted from
    history.  ``end_time`` and ``result`` stay None until terminal.
    """

    run_id: str
    job_type: JobType
    status: RunStatus
    start_time: datetime
    trigger: RunTrigger
    job_id: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    end_time: datetime | None = None
    result: JobResult | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        _freeze_parameters(self)

    @property
    def duration_ms(self) -> int | None:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds() * 1000)


# =============================================================================
# Control-surface values
# =============================================================================


@dataclass(frozen=True)
class ErrorInfo:
    """Structured error returned instead of raising across the surface."""

    code: str
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorInfo:
        return cls(
            code=getattr(exc, "code", "SYSTEM_ERROR"),
            message=str(exc) or type(exc).__name__,
        )


@dataclass(frozen=True)
class TriggerOutcome:
    """Result of asking the Scheduler to trigger a job.

    ``accepted`` means a run slot was claimed and the batch work was handed
    to the background pool; it says nothing about how the run ends.
    """

    job_id: str
    accepted: bool
    run_id: str | None = None
    error: ErrorInfo | None = None

    def __bool__(self) -> bool:
        return self.accepted
