from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from termfees.shared.schemas import BaseSchema


class PaymentCreate(BaseSchema):
    """
    Cash received for a student.

    ``apply_to_future_terms`` has no default: the cashier must decide whether
    money left after clearing current and past terms is swept into upcoming
    terms or kept as a credit.
    """

    student_id: int
    amount: Decimal = Field(..., gt=0)
    apply_to_future_terms: bool
    payment_date: date | None = None
    reference: str | None = Field(None, max_length=100)
    notes: str | None = None


class AppliedItem(BaseSchema):
    item_id: int
    item_name: str
    term_id: int
    amount_applied: Decimal
    new_status: str
    pending_after: Decimal


class AllocationResult(BaseSchema):
    """How one payment was absorbed. ``remaining`` is 0 whenever the payment is accepted."""

    payment_id: int
    receipt_number: str
    student_id: int
    amount_received: Decimal
    amount_applied: Decimal
    forwarded_amount: Decimal
    credit_amount: Decimal
    credit_item_id: int | None = None
    remaining: Decimal
    outcome: str  # fully_applied | forwarded | credited
    applied_items: list[AppliedItem] = []
    student_fee_pending: Decimal
    student_fee_status: str | None = None


class PaymentApplicationResponse(BaseSchema):
    fee_item_id: int | None
    term_id: int
    item_name: str
    amount: Decimal


class FeePaymentResponse(BaseSchema):
    id: int
    receipt_number: str
    student_id: int
    amount: Decimal
    applied_amount: Decimal
    forwarded_amount: Decimal
    credit_amount: Decimal
    apply_to_future_terms: bool
    payment_date: date
    reference: str | None
    notes: str | None
    created_at: datetime
    applications: list[PaymentApplicationResponse] = []
