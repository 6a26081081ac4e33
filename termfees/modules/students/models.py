"""Student model with the denormalized fee snapshot."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from termfees.core.database.base import Base, BigIntPK, Money


class StudentStatus(StrEnum):
    """Student status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    GRADUATED = "graduated"
    TRANSFERRED = "transferred"


class TransportMode(StrEnum):
    """How the student gets to school. Only non-walking students pay transport."""

    WALKING = "walking"
    SCHOOL_BUS = "school_bus"
    PRIVATE = "private"
    PUBLIC = "public"


class Student(Base):
    """Student enrolled in the school."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    student_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Free-text label as entered by the school: "Grade 5", "5-A", "PP1"
    grade: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    transport_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)

    guardian_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    guardian_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    guardian_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StudentStatus.ACTIVE.value, index=True
    )

    # Fee snapshot, recomputed by the recalculation cascade; never authoritative
    fee_total: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00"), server_default="0.00"
    )
    fee_paid: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00"), server_default="0.00"
    )
    fee_pending: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00"), server_default="0.00"
    )
    fee_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    fee_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def full_name(self) -> str:
        """Full name of the student."""
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        """Check if student is active."""
        return self.status == StudentStatus.ACTIVE.value

    @property
    def walks_to_school(self) -> bool:
        """Students without a recorded transport mode are treated as walking."""
        return not self.transport_mode or self.transport_mode == TransportMode.WALKING.value
