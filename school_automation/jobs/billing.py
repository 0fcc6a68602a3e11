"""
MonthlyBilling job: one fee allocation per eligible student per month.

Eligible students are active students with a subscription active somewhere
in the billed month.  Each student is billed independently; re-running a
billed month updates the PENDING allocation instead of adding another
(AU-6).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from school_kernel.logging_config import get_logger

from school_automation.adapters.data_store import DataStore
from school_automation.adapters.notification import NotificationSender
from school_automation.domain.fees import (
    billing_period_bounds,
    build_allocation_draft,
    calculate_student_fee,
)
from school_automation.domain.params import MonthlyBillingParams, resolve_billing_params
from school_automation.domain.reminders import build_bill_message
from school_automation.domain.types import JobType
from school_automation.jobs.base import JobItem

logger = get_logger("automation.jobs.billing")


class MonthlyBillingHandler:
    """Generates monthly fee allocations for all eligible students."""

    def __init__(
        self,
        sender: NotificationSender | None = None,
        min_year: int = 2020,
        max_year: int = 2030,
        due_day: int = 15,
        notify_on_billing: bool = True,
    ) -> None:
        self._sender = sender
        self._min_year = min_year
        self._max_year = max_year
        self._due_day = due_day
        self._notify = notify_on_billing and sender is not None

    @property
    def job_type(self) -> JobType:
        return JobType.MONTHLY_BILLING

    @property
    def description(self) -> str:
        return "Generate monthly fee allocations for all active students"

    def resolve_params(
        self, raw: Mapping[str, Any], as_of: datetime,
    ) -> MonthlyBillingParams:
        return resolve_billing_params(raw, as_of, self._min_year, self._max_year)

    def prepare_items(
        self, params: MonthlyBillingParams, store: DataStore, as_of: datetime,
    ) -> tuple[JobItem, ...]:
        period_start, period_end = billing_period_bounds(params.month, params.year)
        student_ids = store.list_billable_student_ids(period_start, period_end)
        return tuple(
            JobItem(item_index=i, item_key=student_id, student_id=student_id)
            for i, student_id in enumerate(student_ids)
        )

    def execute_item(
        self,
        item: JobItem,
        params: MonthlyBillingParams,
        store: DataStore,
        as_of: datetime,
    ) -> None:
        period_start, period_end = billing_period_bounds(params.month, params.year)
        profile = store.get_student_fee_profile(item.item_key, period_start, period_end)
        breakdown = calculate_student_fee(profile)
        draft = build_allocation_draft(
            breakdown, params.month, params.year, self._due_day,
        )
        outcome = store.upsert_fee_allocation(draft)

        logger.info(
            "bill_generated" if outcome.created else "bill_refreshed",
            extra={
                "student_id": item.item_key,
                "allocation_id": outcome.allocation_id,
                "net_amount": breakdown.net_amount,
                "month": params.month,
                "year": params.year,
            },
        )

        if not (outcome.created and self._notify and profile.contact_email):
            return

        message = build_bill_message(
            profile.family_name,
            profile.student_name,
            breakdown.net_amount,
            params.month,
            params.year,
        )
        # The bill exists at this point; a lost notice does not fail the item.
        try:
            result = self._sender.send(profile.contact_email, message)
        except Exception:
            logger.warning(
                "bill_notification_failed",
                extra={"student_id": item.item_key},
                exc_info=True,
            )
            return
        if not result.success:
            logger.warning(
                "bill_notification_failed",
                extra={"student_id": item.item_key, "detail": result.error},
            )
