"""
Pure monthly fee calculation.

Architecture: school_automation/domain.  ZERO I/O.  The Data Store hands
over a ``StudentFeeProfile`` snapshot; everything here is arithmetic on it.

Rules:
    - Each fee structure amount is converted to a monthly amount by its
      billing cycle (MONTHLY x1, QUARTERLY /3, HALF_YEARLY /6, YEARLY /12;
      an unknown cycle is treated as monthly).
    - gross    = sum of monthly amounts of the student's active subscriptions
    - discount = per-subscription discounts
                 + student's share of the family discount, proportional to
                   the student's gross within the family's gross
    - net      = max(0, gross - discount)
    - Amounts are Decimals rounded to 2 places, ROUND_HALF_UP.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from school_kernel.exceptions import MissingFeeStructureError

_CENT = Decimal("0.01")
_ZERO = Decimal("0")

_CYCLE_DIVISORS: dict[str, int] = {
    "MONTHLY": 1,
    "QUARTERLY": 3,
    "HALF_YEARLY": 6,
    "YEARLY": 12,
}


# =============================================================================
# Snapshot DTOs (produced by the Data Store)
# =============================================================================


@dataclass(frozen=True)
class SubscriptionFee:
    """One active subscription with its fee structure, if any."""

    subscription_id: str
    label: str
    amount: Decimal | None  # None -> no fee structure on file
    billing_cycle: str | None
    discount_amount: Decimal = _ZERO


@dataclass(frozen=True)
class StudentFeeProfile:
    """Everything needed to bill one student for one period."""

    student_id: str
    student_name: str
    family_id: str
    family_name: str
    contact_email: str | None
    family_discount: Decimal
    family_gross_monthly: Decimal  # Gross of every billable sibling, this student included
    subscriptions: tuple[SubscriptionFee, ...] = ()


@dataclass(frozen=True)
class FeeBreakdown:
    student_id: str
    gross_amount: Decimal
    item_discounts: Decimal
    family_discount_share: Decimal
    discount_amount: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class FeeAllocationDraft:
    """Values to upsert for (student_id, month, year)."""

    student_id: str
    month: int
    year: int
    gross_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    due_date: date


@dataclass(frozen=True)
class UpsertOutcome:
    allocation_id: str
    created: bool  # False -> existing allocation updated or left untouched


# =============================================================================
# Calculation
# =============================================================================


def _round(amount: Decimal) -> Decimal:
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def monthly_amount(amount: Decimal, billing_cycle: str | None) -> Decimal:
    """Convert a per-cycle amount to its monthly equivalent (unrounded)."""
    divisor = _CYCLE_DIVISORS.get((billing_cycle or "MONTHLY").upper(), 1)
    return Decimal(amount) / divisor


def gross_monthly_fee(subscriptions: tuple[SubscriptionFee, ...]) -> Decimal:
    """Gross over subscriptions that have a fee structure (unrounded)."""
    return sum(
        (
            monthly_amount(s.amount, s.billing_cycle)
            for s in subscriptions
            if s.amount is not None
        ),
        _ZERO,
    )


def family_discount_share(
    family_discount: Decimal,
    student_gross: Decimal,
    family_gross: Decimal,
) -> Decimal:
    """Student's proportional share of the flat family discount."""
    if family_discount <= 0 or family_gross <= 0:
        return _ZERO
    return _round(family_discount * student_gross / family_gross)


def calculate_student_fee(profile: StudentFeeProfile) -> FeeBreakdown:
    """Compute gross, discount and net monthly fee for one student.

    Raises:
        MissingFeeStructureError: An active subscription has no fee structure.
    """
    for sub in profile.subscriptions:
        if sub.amount is None:
            raise MissingFeeStructureError(profile.student_id, sub.subscription_id)

    gross = gross_monthly_fee(profile.subscriptions)
    item_discounts = sum(
        (Decimal(s.discount_amount) for s in profile.subscriptions), _ZERO,
    )
    share = family_discount_share(
        Decimal(profile.family_discount), gross, Decimal(profile.family_gross_monthly),
    )
    discount = item_discounts + share
    net = max(_ZERO, gross - discount)

    return FeeBreakdown(
        student_id=profile.student_id,
        gross_amount=_round(gross),
        item_discounts=_round(item_discounts),
        family_discount_share=share,
        discount_amount=_round(discount),
        net_amount=_round(net),
    )


# =============================================================================
# Billing period helpers
# =============================================================================


def billing_period_bounds(month: int, year: int) -> tuple[date, date]:
    """First and last calendar day of the billing month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def due_date_for(month: int, year: int, due_day: int) -> date:
    """Due date inside the billed month, clamped to the month's length."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(due_day, last_day))


def build_allocation_draft(
    breakdown: FeeBreakdown,
    month: int,
    year: int,
    due_day: int,
) -> FeeAllocationDraft:
    return FeeAllocationDraft(
        student_id=breakdown.student_id,
        month=month,
        year=year,
        gross_amount=breakdown.gross_amount,
        discount_amount=breakdown.discount_amount,
        net_amount=breakdown.net_amount,
        due_date=due_date_for(month, year, due_day),
    )
