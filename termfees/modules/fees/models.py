"""Term assignments, their fee line items and the annual roll-up."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, Boolean, Date, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from termfees.core.database.base import BaseModel, Money


class FeeStatus(StrEnum):
    """Status shared by line items, term assignments and annual assignments."""

    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


UNPAID_STATUSES: tuple[str, ...] = (
    FeeStatus.PENDING.value,
    FeeStatus.PARTIAL.value,
    FeeStatus.OVERDUE.value,
)


class FeeType(StrEnum):
    """Fee type of a line item."""

    TUITION = "TUITION"
    BASIC = "BASIC"
    EXAMINATION = "EXAMINATION"
    TRANSPORT = "TRANSPORT"
    LIBRARY = "LIBRARY"
    SPORTS = "SPORTS"
    ACTIVITY = "ACTIVITY"
    HOSTEL = "HOSTEL"
    UNIFORM = "UNIFORM"
    BOOKS = "BOOKS"
    OTHER = "OTHER"
    ADDITIONAL = "ADDITIONAL"
    FINE = "FINE"
    DISCOUNT = "DISCOUNT"


class TermAssignment(BaseModel):
    """
    A student's bill for one term.

    Existence of a row for (student, term) means the student has been billed
    for that term. Totals and status are derived from the line items by the
    recalculation cascade and are never edited directly.
    """

    __tablename__ = "term_assignments"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    term_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_terms.id"), nullable=False, index=True
    )

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    total_term_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    paid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    pending_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FeeStatus.PENDING.value, index=True
    )

    is_billed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    billing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reminders_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminder_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    student: Mapped["Student"] = relationship("Student")
    term: Mapped["AcademicTerm"] = relationship("AcademicTerm")
    fee_items: Mapped[list["FeeLineItem"]] = relationship(
        "FeeLineItem",
        back_populates="term_assignment",
        cascade="all, delete-orphan",
        order_by="FeeLineItem.sequence_order",
    )

    __table_args__ = (
        UniqueConstraint("student_id", "term_id", name="uq_term_assignment_student_term"),
    )


class FeeLineItem(BaseModel):
    """
    One billable component of a term assignment.

    ``paid_amount + pending_amount == original_amount`` always holds. Only
    manually added items may be negative (discounts and payment credits).
    """

    __tablename__ = "fee_line_items"

    term_assignment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("term_assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )

    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    item_type: Mapped[str] = mapped_column(String(20), nullable=False)

    original_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    pending_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sequence_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FeeStatus.PENDING.value, index=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    term_assignment: Mapped["TermAssignment"] = relationship(
        "TermAssignment", back_populates="fee_items"
    )

    @property
    def is_credit(self) -> bool:
        return self.original_amount < 0

    @property
    def is_unpaid(self) -> bool:
        return self.status in UNPAID_STATUSES and self.pending_amount > 0


class AnnualFeeAssignment(BaseModel):
    """Roll-up of a student's term assignments for one academic year."""

    __tablename__ = "annual_fee_assignments"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    paid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    pending_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=FeeStatus.PENDING.value)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "academic_year", name="uq_annual_fee_student_year"),
    )


# Import at the end to avoid circular imports
from termfees.modules.students.models import Student
from termfees.modules.terms.models import AcademicTerm
