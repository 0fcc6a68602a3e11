"""
school_automation.domain -- Pure types and value objects for automation.

ZERO I/O.  All types are frozen dataclasses.
"""

from school_automation.domain.types import (
    ErrorInfo,
    JobDefinition,
    JobItemError,
    JobResult,
    JobRun,
    JobType,
    ReminderType,
    RunStatus,
    RunTrigger,
    TriggerOutcome,
)

__all__ = [
    "ErrorInfo",
    "JobDefinition",
    "JobItemError",
    "JobResult",
    "JobRun",
    "JobType",
    "ReminderType",
    "RunStatus",
    "RunTrigger",
    "TriggerOutcome",
]
