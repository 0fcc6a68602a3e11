"""
Module: school_kernel.models.billing
Responsibility: ORM persistence for fee structures, subscriptions, monthly
    fee allocations and the payments recorded against them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one FeeAllocation per (student_id, month, year)
      (uq_allocation_student_period), which makes monthly billing
      re-runnable without double charging.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_kernel.db.base import TrackedBase


class BillingCycle(str, Enum):
    """How often a fee structure's amount is charged."""

    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    YEARLY = "YEARLY"


class AllocationStatus(str, Enum):
    """Lifecycle of a monthly fee allocation."""

    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    WAIVED = "WAIVED"


class FeeStructure(TrackedBase):
    """Price of a course or service per billing cycle."""

    __tablename__ = "fee_structures"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(
        String(20), default=BillingCycle.MONTHLY.value, nullable=False,
    )


class Subscription(TrackedBase):
    """
    A student's enrolment in a course or service.

    Active for a billing period when it started on or before the period's
    last day and has no end date or ended on or after the period's first day.
    ``fee_structure_id`` may be NULL for enrolments that were never priced;
    billing such a student fails for that student only.
    """

    __tablename__ = "subscriptions"

    __table_args__ = (
        Index("idx_subscription_student", "student_id"),
    )

    student_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("students.id"), nullable=False,
    )
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    fee_structure_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("fee_structures.id"), nullable=True,
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    student: Mapped["Student"] = relationship(  # noqa: F821
        "Student", back_populates="subscriptions",
    )
    fee_structure: Mapped[FeeStructure | None] = relationship("FeeStructure")


class FeeAllocation(TrackedBase):
    """Amount a student owes for one billing month."""

    __tablename__ = "fee_allocations"

    __table_args__ = (
        UniqueConstraint(
            "student_id", "month", "year", name="uq_allocation_student_period",
        ),
        Index("idx_allocation_status_due", "status", "due_date"),
    )

    student_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("students.id"), nullable=False,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=AllocationStatus.PENDING.value, nullable=False,
    )

    payments: Mapped[list["Payment"]] = relationship(
        "Payment", back_populates="allocation",
    )


class Payment(TrackedBase):
    """A payment received against a fee allocation."""

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payment_allocation", "allocation_id"),
    )

    allocation_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("fee_allocations.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    allocation: Mapped[FeeAllocation] = relationship(
        "FeeAllocation", back_populates="payments",
    )
