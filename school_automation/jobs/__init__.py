"""
school_automation.jobs -- job handler protocol, registry, and the handlers
for each JobType.
"""

from school_automation.jobs.base import (
    JobHandler,
    JobHandlerRegistry,
    JobItem,
)
from school_automation.jobs.billing import MonthlyBillingHandler
from school_automation.jobs.reminders import FeeReminderHandler

__all__ = [
    "FeeReminderHandler",
    "JobHandler",
    "JobHandlerRegistry",
    "JobItem",
    "MonthlyBillingHandler",
]
