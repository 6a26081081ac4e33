from datetime import date
from decimal import Decimal

from pydantic import Field, field_validator

from termfees.core.config import settings
from termfees.core.notifications import ReminderChannel
from termfees.modules.fees.models import FeeStatus, FeeType
from termfees.modules.terms.schemas import FeeTemplateResponse
from termfees.shared.schemas import BaseSchema
from termfees.shared.utils.money import ZERO


# --- Billing ---

class BillingResult(BaseSchema):
    """Outcome of a batch billing run."""

    term_id: int | None = None
    term_name: str | None = None
    academic_year: str | None = None
    billed: int = 0
    skipped: int = 0
    errors: list[str] = []
    success: bool = True
    outcome: str = "completed"  # completed | completed_with_errors | failed
    message: str = ""


class RegenerateBillRequest(BaseSchema):
    reason: str | None = Field(None, max_length=500)


class RegenerateBillResult(BaseSchema):
    student_id: int
    term_id: int
    term_assignment_id: int
    previous_total: Decimal
    new_total: Decimal
    previous_item_count: int
    new_item_count: int
    carried_over_paid: Decimal
    credit_amount: Decimal


# --- Assignments & items ---

class FeeItemResponse(BaseSchema):
    id: int
    term_assignment_id: int
    item_name: str
    item_type: str
    original_amount: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
    due_date: date | None
    is_mandatory: bool
    is_auto_generated: bool
    sequence_order: int
    status: str
    notes: str | None = None


class TermAssignmentResponse(BaseSchema):
    id: int
    student_id: int
    term_id: int
    due_date: date | None
    total_term_fee: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
    status: str
    is_billed: bool
    billing_date: date | None
    last_payment_date: date | None
    reminders_sent: int
    fee_items: list[FeeItemResponse] = []


class FeeItemCreate(BaseSchema):
    """Manually added charge, fine or discount. Negative amounts are credits."""

    item_name: str = Field(..., min_length=1, max_length=200)
    item_type: FeeType = FeeType.ADDITIONAL
    amount: Decimal
    due_date: date | None = None
    is_mandatory: bool = False
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("Amount cannot be zero")
        return v


class BulkFeeItemCreate(BaseSchema):
    student_ids: list[int] = Field(..., min_length=1)
    item: FeeItemCreate


class BulkStatusUpdate(BaseSchema):
    """Direct status override on students' untouched (nothing paid) items."""

    student_ids: list[int] = Field(..., min_length=1)
    academic_year: str
    status: FeeStatus

    @field_validator("status")
    @classmethod
    def overridable(cls, v: FeeStatus) -> FeeStatus:
        if v not in (FeeStatus.PENDING, FeeStatus.OVERDUE):
            raise ValueError("Only PENDING or OVERDUE can be set directly")
        return v


# --- Reminders ---

class ReminderRequest(BaseSchema):
    student_ids: list[int] | None = None  # None: every student with a balance for the term
    channel: ReminderChannel = Field(
        default_factory=lambda: ReminderChannel(settings.reminder_channel_default)
    )


class ReminderResult(BaseSchema):
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    failed_student_ids: list[int] = []


# --- Statistics ---

class StatusBreakdown(BaseSchema):
    status: str
    count: int
    total: Decimal
    pending: Decimal


class GradeBreakdown(BaseSchema):
    grade: str
    students: int
    expected: Decimal
    collected: Decimal
    pending: Decimal
    collection_rate: Decimal


class FeeTypeBreakdown(BaseSchema):
    item_type: str
    original: Decimal
    paid: Decimal
    pending: Decimal


class Defaulter(BaseSchema):
    student_id: int
    student_name: str
    grade: str | None
    pending: Decimal
    status: str


class TermStatistics(BaseSchema):
    term_id: int
    term_name: str
    academic_year: str
    total_students: int
    total_expected: Decimal
    total_collected: Decimal
    total_pending: Decimal
    collection_rate: Decimal
    unbilled_active_students: int
    by_status: list[StatusBreakdown]
    by_grade: list[GradeBreakdown]
    by_fee_type: list[FeeTypeBreakdown]
    top_defaulters: list[Defaulter]


# --- Reports ---

class OverdueStudent(BaseSchema):
    student_id: int
    student_number: str
    student_name: str
    grade: str | None
    guardian_name: str | None
    guardian_phone: str | None
    guardian_email: str | None
    overdue_amount: Decimal
    overdue_items: int
    earliest_due_date: date
    latest_due_date: date
    days_overdue: int  # counted from the earliest due date
    reminders_sent: int
    last_reminder_date: date | None


class OverdueGradeRow(BaseSchema):
    grade: str
    students: int
    overdue_amount: Decimal
    average_per_student: Decimal


class OverdueFeesReport(BaseSchema):
    """Unpaid items past their due date, grouped by student, largest debt first."""

    as_at_date: date
    total_overdue: Decimal
    total_students: int
    total_items: int
    average_per_student: Decimal
    students: list[OverdueStudent]
    by_grade: list[OverdueGradeRow]


class DailyCollection(BaseSchema):
    day: date
    amount: Decimal
    transactions: int
    students: int


class CollectionSummary(BaseSchema):
    start_date: date
    end_date: date
    total_collected: Decimal
    transactions: int
    average_payment: Decimal
    highest_payment: Decimal
    lowest_payment: Decimal
    daily: list[DailyCollection]


class GradeFeeDashboard(BaseSchema):
    """One grade's billing for a term, with the template it is billed from."""

    term_id: int
    term_name: str
    academic_year: str
    grade: str
    active_students: int
    billed_students: int
    total_expected: Decimal
    total_collected: Decimal
    total_pending: Decimal
    collection_rate: Decimal
    by_status: list[StatusBreakdown]
    by_fee_type: list[FeeTypeBreakdown]
    top_defaulters: list[Defaulter]
    fee_template: FeeTemplateResponse | None = None


class SchoolFeeSummary(BaseSchema):
    """School-wide position from the active students' fee snapshots."""

    current_term_id: int | None = None
    current_term_name: str | None = None
    academic_year: str | None = None
    active_students: int = 0
    total_expected: Decimal = ZERO
    total_collected: Decimal = ZERO
    total_pending: Decimal = ZERO
    collection_rate: Decimal = ZERO
    paid_students: int = 0
    pending_students: int = 0  # PENDING and PARTIAL
    overdue_students: int = 0
    by_grade: list[GradeBreakdown] = []
