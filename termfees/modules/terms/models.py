from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, Boolean, Date, ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from termfees.core.database.base import BaseModel, Money


class TermStatus(StrEnum):
    """Term lifecycle status, driven by the calendar."""

    UPCOMING = "UPCOMING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class AcademicTerm(BaseModel):
    """
    Billing period within an academic year.

    Status follows the calendar (UPCOMING -> ACTIVE -> COMPLETED). The
    ``is_current`` flag is independent of status: it is only changed by an
    explicit promotion, and at most one term is current at any time.
    """

    __tablename__ = "academic_terms"

    name: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g. "Term 1"
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # e.g. "2025-2026"

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    fee_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TermStatus.UPCOMING.value, index=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    fee_templates: Mapped[list["GradeFeeTemplate"]] = relationship(
        "GradeFeeTemplate", back_populates="term", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("academic_year", "name", name="uq_academic_term_year_name"),
        Index(
            "uq_academic_terms_single_current",
            "is_current",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )

    @property
    def display_name(self) -> str:
        return f"{self.name} {self.academic_year}"

    @property
    def is_completed(self) -> bool:
        return self.status == TermStatus.COMPLETED.value


# Template columns in billing emission order.
FEE_COMPONENT_FIELDS: tuple[str, ...] = (
    "tuition_fee",
    "basic_fee",
    "examination_fee",
    "transport_fee",
    "library_fee",
    "sports_fee",
    "activity_fee",
    "hostel_fee",
    "uniform_fee",
    "book_fee",
    "other_fees",
)


class GradeFeeTemplate(BaseModel):
    """
    Fee components charged to every student of a grade for one term.

    ``grade`` keeps the label as entered; ``grade_key`` is its canonical form
    (see ``normalize_grade_key``) and is what lookups use.
    """

    __tablename__ = "grade_fee_templates"

    term_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_terms.id"), nullable=False, index=True
    )
    grade: Mapped[str] = mapped_column(String(50), nullable=False)
    grade_key: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    tuition_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    basic_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    examination_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    transport_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    library_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    sports_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    activity_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    hostel_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    uniform_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    book_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    other_fees: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    total_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    term: Mapped["AcademicTerm"] = relationship("AcademicTerm", back_populates="fee_templates")

    __table_args__ = (
        UniqueConstraint("term_id", "grade_key", name="uq_grade_fee_template_term_grade"),
    )

    def component_amounts(self) -> dict[str, Decimal | None]:
        return {field: getattr(self, field) for field in FEE_COMPONENT_FIELDS}

    def compute_total(self) -> Decimal:
        return sum((amount for amount in self.component_amounts().values() if amount), Decimal("0.00"))
