"""Fee payment receipts and their per-item applications."""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Date, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from termfees.core.database.base import Base, BigIntPK


class FeePayment(Base):
    """
    Cash received from a student and how it was absorbed.

    ``amount == applied_amount + forwarded_amount + credit_amount``: applied to
    current or past terms, swept into future terms, or kept as a credit.
    """

    __tablename__ = "fee_payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    receipt_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)

    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("students.id"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    applied_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    forwarded_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))

    apply_to_future_terms: Mapped[bool] = mapped_column(Boolean, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    applications: Mapped[list["PaymentApplication"]] = relationship(
        "PaymentApplication", back_populates="payment", cascade="all, delete-orphan"
    )


class PaymentApplication(Base):
    """Portion of a payment applied to one fee line item."""

    __tablename__ = "payment_applications"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    payment_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("fee_payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Kept when a bill is regenerated and its items are deleted
    fee_item_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("fee_line_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    term_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("academic_terms.id"), nullable=False)
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    payment: Mapped["FeePayment"] = relationship("FeePayment", back_populates="applications")
