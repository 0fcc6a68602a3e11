"""
SqlAlchemyDataStore -- DataStore over the school_kernel ORM models.

Contract:
    One session per call (``with session_factory() as session``), so worker
    threads never share a session.  Returns frozen snapshots only.

Failure modes:
    - OperationalError / InterfaceError (database unreachable, pool
      exhausted, lost connection) -> DataStoreUnavailableError.
    - Unknown student in ``get_student_fee_profile`` -> ItemProcessingError.
"""

from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Callable, Iterator

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, joinedload

from school_kernel.exceptions import DataStoreUnavailableError, ItemProcessingError
from school_kernel.logging_config import get_logger
from school_kernel.models import (
    AllocationStatus,
    Family,
    FeeAllocation,
    Payment,
    Student,
    Subscription,
)

from school_automation.domain.fees import (
    FeeAllocationDraft,
    StudentFeeProfile,
    SubscriptionFee,
    UpsertOutcome,
    gross_monthly_fee,
)
from school_automation.domain.reminders import ReminderCandidate, ReminderWindow

logger = get_logger("automation.data_store")


def _active_in_period(period_start: date, period_end: date):
    return and_(
        Subscription.start_date <= period_end,
        or_(Subscription.end_date.is_(None), Subscription.end_date >= period_start),
    )


def _subscription_fee(sub: Subscription) -> SubscriptionFee:
    structure = sub.fee_structure
    return SubscriptionFee(
        subscription_id=sub.id,
        label=sub.label,
        amount=structure.amount if structure is not None else None,
        billing_cycle=structure.billing_cycle if structure is not None else None,
        discount_amount=sub.discount_amount or Decimal("0"),
    )


class SqlAlchemyDataStore:
    """DataStore backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except (OperationalError, InterfaceError) as exc:
            logger.error(
                "data_store_unavailable",
                extra={"operation": operation, "detail": str(exc.orig or exc)},
            )
            raise DataStoreUnavailableError(operation, str(exc.orig or exc)) from exc

    # -------------------------------------------------------------------------
    # Billing reads
    # -------------------------------------------------------------------------

    def list_billable_student_ids(
        self, period_start: date, period_end: date,
    ) -> tuple[str, ...]:
        with self._session("list_billable_student_ids") as session:
            rows = session.execute(
                select(Student.id)
                .join(Subscription, Subscription.student_id == Student.id)
                .where(
                    Student.is_active.is_(True),
                    _active_in_period(period_start, period_end),
                )
                .distinct()
                .order_by(Student.id)
            ).scalars().all()
            return tuple(rows)

    def get_student_fee_profile(
        self, student_id: str, period_start: date, period_end: date,
    ) -> StudentFeeProfile:
        with self._session("get_student_fee_profile") as session:
            student = session.execute(
                select(Student)
                .options(joinedload(Student.family))
                .where(Student.id == student_id)
            ).scalar_one_or_none()
            if student is None:
                raise ItemProcessingError(student_id, f"Student not found: {student_id}")

            family = student.family
            subscriptions = session.execute(
                select(Subscription)
                .join(Student, Subscription.student_id == Student.id)
                .options(joinedload(Subscription.fee_structure))
                .where(
                    Student.family_id == family.id,
                    Student.is_active.is_(True),
                    _active_in_period(period_start, period_end),
                )
                .order_by(Subscription.student_id, Subscription.id)
            ).scalars().all()

            by_student: dict[str, list[SubscriptionFee]] = defaultdict(list)
            for sub in subscriptions:
                by_student[sub.student_id].append(_subscription_fee(sub))

            family_gross = sum(
                (gross_monthly_fee(tuple(fees)) for fees in by_student.values()),
                Decimal("0"),
            )

            return StudentFeeProfile(
                student_id=student.id,
                student_name=student.name,
                family_id=family.id,
                family_name=family.name,
                contact_email=family.contact_email,
                family_discount=family.discount_amount or Decimal("0"),
                family_gross_monthly=family_gross,
                subscriptions=tuple(by_student.get(student.id, ())),
            )

    # -------------------------------------------------------------------------
    # Allocation upsert
    # -------------------------------------------------------------------------

    def upsert_fee_allocation(self, draft: FeeAllocationDraft) -> UpsertOutcome:
        with self._session("upsert_fee_allocation") as session:
            try:
                with session.begin():
                    return self._upsert(session, draft)
            except IntegrityError:
                # Lost an insert race for the same key; the row exists now.
                with session.begin():
                    return self._upsert(session, draft)

    def _upsert(self, session: Session, draft: FeeAllocationDraft) -> UpsertOutcome:
        existing = session.execute(
            select(FeeAllocation)
            .where(
                FeeAllocation.student_id == draft.student_id,
                FeeAllocation.month == draft.month,
                FeeAllocation.year == draft.year,
            )
            .with_for_update()
        ).scalar_one_or_none()

        if existing is None:
            allocation = FeeAllocation(
                student_id=draft.student_id,
                month=draft.month,
                year=draft.year,
                gross_amount=draft.gross_amount,
                discount_amount=draft.discount_amount,
                net_amount=draft.net_amount,
                due_date=draft.due_date,
                status=AllocationStatus.PENDING.value,
            )
            session.add(allocation)
            session.flush()
            return UpsertOutcome(allocation_id=allocation.id, created=True)

        # Settled allocations are never re-priced.
        if existing.status == AllocationStatus.PENDING.value:
            existing.gross_amount = draft.gross_amount
            existing.discount_amount = draft.discount_amount
            existing.net_amount = draft.net_amount
            existing.due_date = draft.due_date
        return UpsertOutcome(allocation_id=existing.id, created=False)

    # -------------------------------------------------------------------------
    # Reminder reads
    # -------------------------------------------------------------------------

    def list_pending_allocations(
        self, window: ReminderWindow,
    ) -> tuple[ReminderCandidate, ...]:
        paid = (
            select(
                Payment.allocation_id.label("allocation_id"),
                func.sum(Payment.amount).label("paid"),
            )
            .group_by(Payment.allocation_id)
            .subquery()
        )
        conditions = [FeeAllocation.status == AllocationStatus.PENDING.value]
        if window.due_from is not None:
            conditions.append(FeeAllocation.due_date >= window.due_from)
        if window.due_to is not None:
            conditions.append(FeeAllocation.due_date <= window.due_to)

        with self._session("list_pending_allocations") as session:
            rows = session.execute(
                select(
                    FeeAllocation,
                    Student.name,
                    Family.name,
                    Family.contact_email,
                    paid.c.paid,
                )
                .join(Student, FeeAllocation.student_id == Student.id)
                .join(Family, Student.family_id == Family.id)
                .outerjoin(paid, paid.c.allocation_id == FeeAllocation.id)
                .where(*conditions)
                .order_by(FeeAllocation.due_date, FeeAllocation.id)
            ).all()

            return tuple(
                ReminderCandidate(
                    allocation_id=allocation.id,
                    student_id=allocation.student_id,
                    student_name=student_name,
                    family_name=family_name,
                    contact_email=contact_email,
                    net_amount=allocation.net_amount,
                    paid_amount=Decimal(paid_amount or 0),
                    due_date=allocation.due_date,
                    month=allocation.month,
                    year=allocation.year,
                )
                for allocation, student_name, family_name, contact_email, paid_amount in rows
            )
