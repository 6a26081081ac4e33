"""Expansion of a grade fee template into a student's line items."""

from datetime import date, timedelta
from decimal import Decimal

from termfees.core.config import settings
from termfees.modules.fees.models import FeeLineItem, FeeStatus, FeeType, TermAssignment
from termfees.modules.students.models import Student
from termfees.modules.terms.models import FEE_COMPONENT_FIELDS, AcademicTerm, GradeFeeTemplate
from termfees.shared.utils.money import round_money

# template column -> (line item name, fee type)
COMPONENT_ITEMS: dict[str, tuple[str, FeeType]] = {
    "tuition_fee": ("Tuition Fee", FeeType.TUITION),
    "basic_fee": ("Basic Fee", FeeType.BASIC),
    "examination_fee": ("Examination Fee", FeeType.EXAMINATION),
    "transport_fee": ("Transport Fee", FeeType.TRANSPORT),
    "library_fee": ("Library Fee", FeeType.LIBRARY),
    "sports_fee": ("Sports Fee", FeeType.SPORTS),
    "activity_fee": ("Activity Fee", FeeType.ACTIVITY),
    "hostel_fee": ("Hostel Fee", FeeType.HOSTEL),
    "uniform_fee": ("Uniform Fee", FeeType.UNIFORM),
    "book_fee": ("Book Fee", FeeType.BOOKS),
    "other_fees": ("Other Fees", FeeType.OTHER),
}


def assignment_due_date(term: AcademicTerm, default_due_days: int | None = None) -> date:
    """Term fee due date, or term start plus the configured number of days."""
    if term.fee_due_date is not None:
        return term.fee_due_date
    days = settings.default_due_days if default_due_days is None else default_due_days
    return term.start_date + timedelta(days=days)


def initial_item_status(due_date: date | None, today: date) -> str:
    if due_date is not None and due_date < today:
        return FeeStatus.OVERDUE.value
    return FeeStatus.PENDING.value


def generate_fee_items(
    assignment: TermAssignment,
    template: GradeFeeTemplate,
    student: Student,
    today: date,
) -> list[FeeLineItem]:
    """
    Build the auto-generated line items for one student and term.

    Components with no positive amount are left out, as is transport for
    students who walk. Items are numbered 1..n in emission order, all
    mandatory, due on the assignment's due date. Nothing is persisted.
    """
    items: list[FeeLineItem] = []
    status = initial_item_status(assignment.due_date, today)

    for field in FEE_COMPONENT_FIELDS:
        name, fee_type = COMPONENT_ITEMS[field]
        amount = getattr(template, field)
        if amount is None or Decimal(amount) <= 0:
            continue
        if fee_type is FeeType.TRANSPORT and student.walks_to_school:
            continue

        amount = round_money(amount)
        items.append(
            FeeLineItem(
                student_id=student.id,
                item_name=name,
                item_type=fee_type.value,
                original_amount=amount,
                paid_amount=Decimal("0.00"),
                pending_amount=amount,
                due_date=assignment.due_date,
                is_mandatory=True,
                is_auto_generated=True,
                sequence_order=len(items) + 1,
                status=status,
            )
        )

    return items
