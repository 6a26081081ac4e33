from datetime import date
from decimal import Decimal

from termfees.modules.fees.generator import (
    assignment_due_date,
    generate_fee_items,
    initial_item_status,
)
from termfees.modules.fees.models import FeeStatus, FeeType, TermAssignment
from termfees.modules.students.models import Student, TransportMode
from termfees.modules.terms.models import AcademicTerm, GradeFeeTemplate


def _template(**amounts) -> GradeFeeTemplate:
    fields = {
        "tuition_fee": None,
        "basic_fee": None,
        "examination_fee": None,
        "transport_fee": None,
        "library_fee": None,
        "sports_fee": None,
        "activity_fee": None,
        "hostel_fee": None,
        "uniform_fee": None,
        "book_fee": None,
        "other_fees": None,
    }
    fields.update({name: Decimal(str(value)) for name, value in amounts.items()})
    return GradeFeeTemplate(term_id=1, grade="5", grade_key="5", **fields)


def _student(transport_mode: str | None) -> Student:
    return Student(id=7, first_name="Amina", last_name="Otieno", grade="5", transport_mode=transport_mode)


def _assignment(due_date: date | None = date(2024, 1, 31)) -> TermAssignment:
    return TermAssignment(student_id=7, term_id=1, due_date=due_date)


class TestAssignmentDueDate:
    def test_term_due_date_wins(self):
        term = AcademicTerm(start_date=date(2024, 1, 1), end_date=date(2024, 3, 31), fee_due_date=date(2024, 1, 20))
        assert assignment_due_date(term) == date(2024, 1, 20)

    def test_start_plus_default_days(self):
        term = AcademicTerm(start_date=date(2024, 1, 1), end_date=date(2024, 3, 31), fee_due_date=None)
        assert assignment_due_date(term, default_due_days=30) == date(2024, 1, 31)
        assert assignment_due_date(term, default_due_days=0) == date(2024, 1, 1)


class TestInitialItemStatus:
    def test_statuses(self):
        assert initial_item_status(date(2024, 1, 31), date(2024, 1, 31)) == FeeStatus.PENDING.value
        assert initial_item_status(date(2024, 1, 31), date(2024, 2, 1)) == FeeStatus.OVERDUE.value
        assert initial_item_status(None, date(2030, 1, 1)) == FeeStatus.PENDING.value


class TestGenerateFeeItems:
    """Template components become numbered, mandatory, auto-generated items."""

    def test_walking_student_skips_transport(self):
        template = _template(tuition_fee=2000, transport_fee=500, library_fee=1000)

        items = generate_fee_items(
            _assignment(), template, _student(TransportMode.WALKING.value), date(2024, 1, 2)
        )

        assert [i.item_name for i in items] == ["Tuition Fee", "Library Fee"]
        assert [i.sequence_order for i in items] == [1, 2]
        assert sum(i.original_amount for i in items) == Decimal("3000.00")
        assert all(i.is_mandatory and i.is_auto_generated for i in items)
        assert all(i.status == FeeStatus.PENDING.value for i in items)
        assert all(i.pending_amount == i.original_amount for i in items)
        assert all(i.paid_amount == Decimal("0.00") for i in items)

    def test_student_without_transport_mode_walks(self):
        template = _template(tuition_fee=2000, transport_fee=500)

        items = generate_fee_items(_assignment(), template, _student(None), date(2024, 1, 2))

        assert [i.item_type for i in items] == [FeeType.TUITION.value]

    def test_bus_student_pays_transport(self):
        template = _template(tuition_fee=2000, transport_fee=500, library_fee=1000)

        items = generate_fee_items(
            _assignment(), template, _student(TransportMode.SCHOOL_BUS.value), date(2024, 1, 2)
        )

        assert [i.item_type for i in items] == [
            FeeType.TUITION.value,
            FeeType.TRANSPORT.value,
            FeeType.LIBRARY.value,
        ]
        assert [i.sequence_order for i in items] == [1, 2, 3]

    def test_zero_and_missing_components_skipped(self):
        template = _template(tuition_fee=1000, basic_fee=0, examination_fee="0.00", other_fees="12.345")

        items = generate_fee_items(_assignment(), template, _student("walking"), date(2024, 1, 2))

        assert [i.item_name for i in items] == ["Tuition Fee", "Other Fees"]
        assert items[1].original_amount == Decimal("12.35")

    def test_items_carry_assignment_due_date(self):
        items = generate_fee_items(
            _assignment(date(2024, 1, 15)), _template(tuition_fee=100), _student("walking"), date(2024, 1, 20)
        )

        assert items[0].due_date == date(2024, 1, 15)
        assert items[0].status == FeeStatus.OVERDUE.value
        assert items[0].student_id == 7

    def test_empty_template(self):
        assert generate_fee_items(_assignment(), _template(), _student("walking"), date(2024, 1, 2)) == []
