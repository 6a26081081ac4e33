"""Overdue, collection, grade and school-wide fee reports."""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from termfees.core.exceptions import NotFoundError, ValidationError
from termfees.modules.fees.models import UNPAID_STATUSES, FeeLineItem, FeeStatus, TermAssignment
from termfees.modules.fees.schemas import (
    CollectionSummary,
    DailyCollection,
    GradeBreakdown,
    GradeFeeDashboard,
    OverdueFeesReport,
    OverdueGradeRow,
    OverdueStudent,
    SchoolFeeSummary,
)
from termfees.modules.fees.statistics import NO_GRADE, FeeStatisticsService
from termfees.modules.payments.models import FeePayment
from termfees.modules.students.models import Student, StudentStatus
from termfees.modules.terms.models import AcademicTerm
from termfees.modules.terms.resolver import GradeFeeTemplateResolver
from termfees.modules.terms.schemas import FeeTemplateResponse
from termfees.shared.utils.grades import grades_match
from termfees.shared.utils.money import ZERO, percentage, round_money, sum_money


def _average(total: Decimal, count: int) -> Decimal:
    if count <= 0:
        return ZERO
    return round_money(total / count)


class FeeReportService:
    """Read-only reports over billed items, payments and student snapshots."""

    def __init__(self, db: AsyncSession, today: date | None = None):
        self.db = db
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    async def overdue_report(self, today: date | None = None) -> OverdueFeesReport:
        """
        Unpaid items whose due date has passed, grouped by student.

        Students are ordered by overdue amount, largest first. Reminder
        counts are summed over the assignments the overdue items belong to.
        """
        today = today or self.today
        result = await self.db.execute(
            select(FeeLineItem)
            .where(
                FeeLineItem.status.in_(UNPAID_STATUSES),
                FeeLineItem.pending_amount > 0,
                FeeLineItem.due_date < today,
            )
            .options(selectinload(FeeLineItem.term_assignment).selectinload(TermAssignment.student))
            .order_by(FeeLineItem.student_id, FeeLineItem.due_date, FeeLineItem.id)
        )
        items = list(result.scalars().all())

        by_student: dict[int, list[FeeLineItem]] = defaultdict(list)
        for item in items:
            by_student[item.student_id].append(item)

        students: list[OverdueStudent] = []
        for rows in by_student.values():
            student = rows[0].term_assignment.student
            assignments = {item.term_assignment_id: item.term_assignment for item in rows}.values()
            due_dates = [item.due_date for item in rows]
            reminder_dates = [a.last_reminder_date for a in assignments if a.last_reminder_date]
            students.append(
                OverdueStudent(
                    student_id=student.id,
                    student_number=student.student_number,
                    student_name=student.full_name,
                    grade=student.grade,
                    guardian_name=student.guardian_name,
                    guardian_phone=student.guardian_phone,
                    guardian_email=student.guardian_email,
                    overdue_amount=sum_money(item.pending_amount for item in rows),
                    overdue_items=len(rows),
                    earliest_due_date=min(due_dates),
                    latest_due_date=max(due_dates),
                    days_overdue=(today - min(due_dates)).days,
                    reminders_sent=sum(a.reminders_sent for a in assignments),
                    last_reminder_date=max(reminder_dates) if reminder_dates else None,
                )
            )
        students.sort(key=lambda s: (-s.overdue_amount, s.student_id))

        grades: dict[str, list[OverdueStudent]] = defaultdict(list)
        for row in students:
            grades[row.grade or NO_GRADE].append(row)
        by_grade = []
        for grade in sorted(grades):
            total = sum_money(s.overdue_amount for s in grades[grade])
            by_grade.append(
                OverdueGradeRow(
                    grade=grade,
                    students=len(grades[grade]),
                    overdue_amount=total,
                    average_per_student=_average(total, len(grades[grade])),
                )
            )

        total_overdue = sum_money(s.overdue_amount for s in students)
        return OverdueFeesReport(
            as_at_date=today,
            total_overdue=total_overdue,
            total_students=len(students),
            total_items=len(items),
            average_per_student=_average(total_overdue, len(students)),
            students=students,
            by_grade=by_grade,
        )

    async def collection_summary(
        self, start_date: date, end_date: date, today: date | None = None
    ) -> CollectionSummary:
        """Payments received between two dates (inclusive), with one row per day."""
        today = today or self.today
        if start_date > end_date:
            raise ValidationError("Start date must not be after the end date", "start_date")
        if start_date > today:
            raise ValidationError("Start date must not be in the future", "start_date")

        result = await self.db.execute(
            select(FeePayment)
            .where(FeePayment.payment_date >= start_date, FeePayment.payment_date <= end_date)
            .order_by(FeePayment.payment_date, FeePayment.id)
        )
        payments = list(result.scalars().all())

        per_day: dict[date, list[FeePayment]] = defaultdict(list)
        for payment in payments:
            per_day[payment.payment_date].append(payment)

        daily = []
        day = start_date
        while day <= end_date:
            rows = per_day.get(day, [])
            daily.append(
                DailyCollection(
                    day=day,
                    amount=sum_money(p.amount for p in rows),
                    transactions=len(rows),
                    students=len({p.student_id for p in rows}),
                )
            )
            day += timedelta(days=1)

        amounts = [p.amount for p in payments if p.amount > 0]
        total = sum_money(p.amount for p in payments)
        return CollectionSummary(
            start_date=start_date,
            end_date=end_date,
            total_collected=total,
            transactions=len(payments),
            average_payment=_average(total, len(payments)),
            highest_payment=round_money(max(amounts)) if amounts else ZERO,
            lowest_payment=round_money(min(amounts)) if amounts else ZERO,
            daily=daily,
        )

    async def grade_dashboard(self, term_id: int, grade: str) -> GradeFeeDashboard:
        """Term statistics restricted to students whose grade label matches ``grade``."""
        term = await self.db.get(AcademicTerm, term_id)
        if not term:
            raise NotFoundError("Term", term_id)

        result = await self.db.execute(
            select(TermAssignment)
            .where(TermAssignment.term_id == term_id)
            .options(
                selectinload(TermAssignment.student),
                selectinload(TermAssignment.fee_items),
            )
            .order_by(TermAssignment.id)
        )
        assignments = [a for a in result.scalars().all() if grades_match(a.student.grade, grade)]

        result = await self.db.execute(
            select(Student.grade).where(Student.status == StudentStatus.ACTIVE.value)
        )
        active = sum(1 for (label,) in result.all() if grades_match(label, grade))

        template = await GradeFeeTemplateResolver(self.db).resolve(term_id, grade)

        expected = sum_money(a.total_term_fee for a in assignments)
        collected = sum_money(a.paid_amount for a in assignments)
        return GradeFeeDashboard(
            term_id=term.id,
            term_name=term.name,
            academic_year=term.academic_year,
            grade=grade,
            active_students=active,
            billed_students=len(assignments),
            total_expected=expected,
            total_collected=collected,
            total_pending=sum_money(a.pending_amount for a in assignments),
            collection_rate=percentage(collected, expected),
            by_status=FeeStatisticsService._by_status(assignments),
            by_fee_type=FeeStatisticsService._by_fee_type(assignments),
            top_defaulters=FeeStatisticsService._top_defaulters(assignments),
            fee_template=FeeTemplateResponse.model_validate(template) if template else None,
        )

    async def school_summary(self) -> SchoolFeeSummary:
        """Totals and status counts over every active student's fee snapshot."""
        summary = SchoolFeeSummary()

        result = await self.db.execute(select(AcademicTerm).where(AcademicTerm.is_current.is_(True)))
        term = result.scalar_one_or_none()
        if term:
            summary.current_term_id = term.id
            summary.current_term_name = term.name
            summary.academic_year = term.academic_year

        result = await self.db.execute(
            select(Student)
            .where(Student.status == StudentStatus.ACTIVE.value)
            .order_by(Student.id)
        )
        students = list(result.scalars().all())
        if not students:
            return summary

        summary.active_students = len(students)
        summary.total_expected = sum_money(s.fee_total for s in students)
        summary.total_collected = sum_money(s.fee_paid for s in students)
        summary.total_pending = sum_money(s.fee_pending for s in students)
        summary.collection_rate = percentage(summary.total_collected, summary.total_expected)

        for student in students:
            if student.fee_status == FeeStatus.PAID.value:
                summary.paid_students += 1
            elif student.fee_status == FeeStatus.OVERDUE.value:
                summary.overdue_students += 1
            elif student.fee_status in (FeeStatus.PENDING.value, FeeStatus.PARTIAL.value):
                summary.pending_students += 1

        grades: dict[str, list[Student]] = defaultdict(list)
        for student in students:
            grades[student.grade or NO_GRADE].append(student)
        for grade in sorted(grades):
            rows = grades[grade]
            expected = sum_money(s.fee_total for s in rows)
            collected = sum_money(s.fee_paid for s in rows)
            summary.by_grade.append(
                GradeBreakdown(
                    grade=grade,
                    students=len(rows),
                    expected=expected,
                    collected=collected,
                    pending=sum_money(s.fee_pending for s in rows),
                    collection_rate=percentage(collected, expected),
                )
            )
        return summary
