"""Collection statistics for one term."""

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from termfees.core.exceptions import NotFoundError
from termfees.modules.fees.models import FeeStatus, TermAssignment
from termfees.modules.fees.schemas import (
    Defaulter,
    FeeTypeBreakdown,
    GradeBreakdown,
    StatusBreakdown,
    TermStatistics,
)
from termfees.modules.students.models import Student, StudentStatus
from termfees.modules.terms.models import AcademicTerm
from termfees.shared.utils.money import percentage, round_money, sum_money

TOP_DEFAULTERS = 10
NO_GRADE = "Unassigned"

STATUS_ORDER = (
    FeeStatus.PAID.value,
    FeeStatus.PARTIAL.value,
    FeeStatus.PENDING.value,
    FeeStatus.OVERDUE.value,
)


class FeeStatisticsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def term_statistics(self, term_id: int) -> TermStatistics:
        """Expected, collected and pending amounts for a term with breakdowns."""
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
        assignments = list(result.scalars().all())

        expected = sum_money(a.total_term_fee for a in assignments)
        collected = sum_money(a.paid_amount for a in assignments)
        pending = sum_money(a.pending_amount for a in assignments)

        return TermStatistics(
            term_id=term.id,
            term_name=term.name,
            academic_year=term.academic_year,
            total_students=len(assignments),
            total_expected=expected,
            total_collected=collected,
            total_pending=pending,
            collection_rate=percentage(collected, expected),
            unbilled_active_students=await self._count_unbilled(term_id),
            by_status=self._by_status(assignments),
            by_grade=self._by_grade(assignments),
            by_fee_type=self._by_fee_type(assignments),
            top_defaulters=self._top_defaulters(assignments),
        )

    async def _count_unbilled(self, term_id: int) -> int:
        billed = select(TermAssignment.student_id).where(TermAssignment.term_id == term_id)
        result = await self.db.execute(
            select(func.count())
            .select_from(Student)
            .where(Student.status == StudentStatus.ACTIVE.value, Student.id.not_in(billed))
        )
        return result.scalar_one()

    @staticmethod
    def _by_status(assignments: list[TermAssignment]) -> list[StatusBreakdown]:
        groups: dict[str, list[TermAssignment]] = defaultdict(list)
        for assignment in assignments:
            groups[assignment.status].append(assignment)
        return [
            StatusBreakdown(
                status=status,
                count=len(groups[status]),
                total=sum_money(a.total_term_fee for a in groups[status]),
                pending=sum_money(a.pending_amount for a in groups[status]),
            )
            for status in STATUS_ORDER
        ]

    @staticmethod
    def _by_grade(assignments: list[TermAssignment]) -> list[GradeBreakdown]:
        groups: dict[str, list[TermAssignment]] = defaultdict(list)
        for assignment in assignments:
            groups[assignment.student.grade or NO_GRADE].append(assignment)

        breakdown = []
        for grade in sorted(groups):
            rows = groups[grade]
            expected = sum_money(a.total_term_fee for a in rows)
            collected = sum_money(a.paid_amount for a in rows)
            breakdown.append(
                GradeBreakdown(
                    grade=grade,
                    students=len(rows),
                    expected=expected,
                    collected=collected,
                    pending=sum_money(a.pending_amount for a in rows),
                    collection_rate=percentage(collected, expected),
                )
            )
        return breakdown

    @staticmethod
    def _by_fee_type(assignments: list[TermAssignment]) -> list[FeeTypeBreakdown]:
        totals: dict[str, list[Decimal]] = defaultdict(lambda: [Decimal("0"), Decimal("0"), Decimal("0")])
        for assignment in assignments:
            for item in assignment.fee_items:
                row = totals[item.item_type]
                row[0] += item.original_amount
                row[1] += item.paid_amount
                row[2] += item.pending_amount
        return [
            FeeTypeBreakdown(
                item_type=item_type,
                original=round_money(original),
                paid=round_money(paid),
                pending=round_money(pending),
            )
            for item_type, (original, paid, pending) in sorted(totals.items())
        ]

    @staticmethod
    def _top_defaulters(assignments: list[TermAssignment]) -> list[Defaulter]:
        owing = [a for a in assignments if a.pending_amount > 0]
        owing.sort(key=lambda a: (-a.pending_amount, a.student_id))
        return [
            Defaulter(
                student_id=a.student_id,
                student_name=a.student.full_name,
                grade=a.student.grade,
                pending=a.pending_amount,
                status=a.status,
            )
            for a in owing[:TOP_DEFAULTERS]
        ]
