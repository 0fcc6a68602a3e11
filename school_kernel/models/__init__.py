"""
school_kernel.models -- ORM models for the school records used by automation.

Architecture: school_kernel/models. Imports from school_kernel.db.base only.
"""

from school_kernel.models.billing import (
    AllocationStatus,
    BillingCycle,
    FeeAllocation,
    FeeStructure,
    Payment,
    Subscription,
)
from school_kernel.models.people import Family, Student

__all__ = [
    "AllocationStatus",
    "BillingCycle",
    "Family",
    "FeeAllocation",
    "FeeStructure",
    "Payment",
    "Student",
    "Subscription",
]
