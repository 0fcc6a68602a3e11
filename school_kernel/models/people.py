"""
Module: school_kernel.models.people
Responsibility: ORM persistence for families and the students enrolled
    under them.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_kernel.db.base import TrackedBase


class Family(TrackedBase):
    """
    A billing household.

    ``discount_amount`` is a flat monthly family discount, shared between
    the family's students in proportion to their gross monthly fees.
    """

    __tablename__ = "families"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False,
    )

    students: Mapped[list["Student"]] = relationship(
        "Student", back_populates="family",
    )


class Student(TrackedBase):
    """An enrolled student.  Only active students are billed."""

    __tablename__ = "students"

    __table_args__ = (
        Index("idx_student_family", "family_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    family_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("families.id"), nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    family: Mapped[Family] = relationship("Family", back_populates="students")
    subscriptions: Mapped[list["Subscription"]] = relationship(  # noqa: F821
        "Subscription", back_populates="student",
    )
