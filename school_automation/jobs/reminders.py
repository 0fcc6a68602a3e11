"""
FeeReminder job: one notification per PENDING allocation in the window.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from school_kernel.exceptions import MissingRecipientError, NotificationFailedError
from school_kernel.logging_config import get_logger

from school_automation.adapters.data_store import DataStore
from school_automation.adapters.notification import NotificationSender
from school_automation.domain.params import FeeReminderParams, resolve_reminder_params
from school_automation.domain.reminders import (
    ReminderCandidate,
    build_reminder_message,
    reminder_window,
)
from school_automation.domain.types import JobType
from school_automation.jobs.base import JobItem

logger = get_logger("automation.jobs.reminders")


class FeeReminderHandler:
    """Sends early / due / overdue reminders for PENDING allocations that
    still have an outstanding balance."""

    def __init__(
        self,
        sender: NotificationSender,
        early_window_days: int = 3,
    ) -> None:
        self._sender = sender
        self._early_window_days = early_window_days

    @property
    def job_type(self) -> JobType:
        return JobType.FEE_REMINDER

    @property
    def description(self) -> str:
        return "Send fee reminders for pending allocations"

    def resolve_params(
        self, raw: Mapping[str, Any], as_of: datetime,
    ) -> FeeReminderParams:
        return resolve_reminder_params(raw, self._early_window_days)

    def prepare_items(
        self, params: FeeReminderParams, store: DataStore, as_of: datetime,
    ) -> tuple[JobItem, ...]:
        window = reminder_window(params.reminder_type, as_of.date(), params.window_days)
        candidates = [
            c for c in store.list_pending_allocations(window)
            if window.contains(c.due_date) and c.outstanding_amount > 0
        ]
        return tuple(
            JobItem(
                item_index=i,
                item_key=c.allocation_id,
                student_id=c.student_id,
                payload=c,
            )
            for i, c in enumerate(candidates)
        )

    def execute_item(
        self,
        item: JobItem,
        params: FeeReminderParams,
        store: DataStore,
        as_of: datetime,
    ) -> None:
        candidate: ReminderCandidate = item.payload
        if not candidate.contact_email:
            raise MissingRecipientError(candidate.allocation_id, candidate.student_id)

        message = build_reminder_message(candidate, params.reminder_type)
        result = self._sender.send(candidate.contact_email, message)
        if not result.success:
            raise NotificationFailedError(
                candidate.allocation_id, candidate.contact_email, result.error,
            )

        logger.info(
            "reminder_sent",
            extra={
                "allocation_id": candidate.allocation_id,
                "student_id": candidate.student_id,
                "reminder_type": params.reminder_type.value,
                "message_id": result.message_id,
            },
        )
