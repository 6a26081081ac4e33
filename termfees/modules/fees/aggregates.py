"""
Derived fee state: item status, term totals, annual roll-ups and the student snapshot.

``recompute`` is a pure function over loaded term assignments;
``RecalculationService`` loads a student's assignments, runs it and writes the
result back. Every mutation of line items must be followed by ``recalculate``.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from termfees.core.exceptions import NotFoundError
from termfees.modules.fees.models import AnnualFeeAssignment, FeeLineItem, FeeStatus, TermAssignment
from termfees.modules.students.models import Student
from termfees.shared.utils.money import ZERO, round_money, sum_money

logger = logging.getLogger(__name__)


def derive_item_status(
    original: Decimal, paid: Decimal, due_date: date | None, today: date
) -> str:
    """Status of a single line item from its amounts and due date."""
    if paid >= original:
        return FeeStatus.PAID.value
    if paid > 0:
        return FeeStatus.PARTIAL.value
    if due_date is not None and due_date < today:
        return FeeStatus.OVERDUE.value
    return FeeStatus.PENDING.value


def derive_aggregate_status(
    paid: Decimal, pending: Decimal, due_date: date | None, today: date
) -> str:
    """Status of a term/annual assignment. First matching rule wins."""
    if pending <= 0:
        return FeeStatus.PAID.value
    if paid > 0:
        return FeeStatus.PARTIAL.value
    if due_date is not None and due_date < today:
        return FeeStatus.OVERDUE.value
    return FeeStatus.PENDING.value


def summarize_items(items: Iterable[FeeLineItem]) -> tuple[Decimal, Decimal, Decimal]:
    """(total, paid, pending) of a set of line items; pending = total - paid."""
    items = list(items)
    total = sum_money(item.original_amount for item in items)
    paid = sum_money(item.paid_amount for item in items)
    return total, paid, round_money(total - paid)


@dataclass
class TermTotals:
    term_assignment_id: int
    term_id: int
    academic_year: str
    due_date: date | None
    total: Decimal
    paid: Decimal
    pending: Decimal
    status: str


@dataclass
class AnnualTotals:
    academic_year: str
    due_date: date | None
    total: Decimal
    paid: Decimal
    pending: Decimal
    status: str


@dataclass
class SnapshotTotals:
    total: Decimal = ZERO
    paid: Decimal = ZERO
    pending: Decimal = ZERO
    status: str | None = None


@dataclass
class StudentAggregates:
    student_id: int
    terms: list[TermTotals] = field(default_factory=list)
    annual: list[AnnualTotals] = field(default_factory=list)
    snapshot: SnapshotTotals = field(default_factory=SnapshotTotals)


def _earliest(dates: Iterable[date | None]) -> date | None:
    known = [d for d in dates if d is not None]
    return min(known) if known else None


def recompute(
    student_id: int, assignments: Iterable[TermAssignment], today: date
) -> StudentAggregates:
    """
    Compute every derived figure for one student.

    Assignments must have ``fee_items`` and ``term`` loaded. Order: term
    totals from items, annual totals from terms sharing an academic year,
    snapshot from the annual totals.
    """
    result = StudentAggregates(student_id=student_id)

    for assignment in sorted(assignments, key=lambda a: (a.term.start_date, a.id)):
        total, paid, pending = summarize_items(assignment.fee_items)
        result.terms.append(
            TermTotals(
                term_assignment_id=assignment.id,
                term_id=assignment.term_id,
                academic_year=assignment.term.academic_year,
                due_date=assignment.due_date,
                total=total,
                paid=paid,
                pending=pending,
                status=derive_aggregate_status(paid, pending, assignment.due_date, today),
            )
        )

    by_year: dict[str, list[TermTotals]] = defaultdict(list)
    for term_totals in result.terms:
        by_year[term_totals.academic_year].append(term_totals)

    for academic_year, terms in sorted(by_year.items()):
        total = sum_money(t.total for t in terms)
        paid = sum_money(t.paid for t in terms)
        pending = round_money(total - paid)
        # Overdue-ness of the year follows the earliest term still owing money
        due_date = _earliest(t.due_date for t in terms if t.pending > 0)
        result.annual.append(
            AnnualTotals(
                academic_year=academic_year,
                due_date=_earliest(t.due_date for t in terms),
                total=total,
                paid=paid,
                pending=pending,
                status=derive_aggregate_status(paid, pending, due_date, today),
            )
        )

    if result.annual:
        total = sum_money(a.total for a in result.annual)
        paid = sum_money(a.paid for a in result.annual)
        pending = round_money(total - paid)
        due_date = _earliest(t.due_date for t in result.terms if t.pending > 0)
        result.snapshot = SnapshotTotals(
            total=total,
            paid=paid,
            pending=pending,
            status=derive_aggregate_status(paid, pending, due_date, today),
        )

    return result


class RecalculationService:
    """Writes the output of ``recompute`` back to the database."""

    def __init__(self, db: AsyncSession, today: date | None = None):
        self.db = db
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    async def _load_assignments(self, student_id: int) -> list[TermAssignment]:
        result = await self.db.execute(
            select(TermAssignment)
            .where(TermAssignment.student_id == student_id)
            .options(
                selectinload(TermAssignment.fee_items),
                selectinload(TermAssignment.term),
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def recalculate(self, student_id: int) -> StudentAggregates:
        """Recompute and persist term, annual and snapshot figures. Idempotent."""
        student = await self.db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student", student_id)

        await self.db.flush()
        assignments = await self._load_assignments(student_id)
        aggregates = recompute(student_id, assignments, self.today)

        by_id = {a.id: a for a in assignments}
        for term_totals in aggregates.terms:
            assignment = by_id[term_totals.term_assignment_id]
            assignment.total_term_fee = term_totals.total
            assignment.paid_amount = term_totals.paid
            assignment.pending_amount = term_totals.pending
            assignment.status = term_totals.status

        await self._write_annual(student_id, aggregates.annual)

        snapshot = aggregates.snapshot
        student.fee_total = snapshot.total
        student.fee_paid = snapshot.paid
        student.fee_pending = snapshot.pending
        student.fee_status = snapshot.status
        student.fee_updated_at = datetime.now(timezone.utc)

        await self.db.flush()
        logger.debug(
            "Recalculated student %s: total=%s paid=%s pending=%s",
            student_id,
            snapshot.total,
            snapshot.paid,
            snapshot.pending,
        )
        return aggregates

    async def _write_annual(self, student_id: int, annual: list[AnnualTotals]) -> None:
        result = await self.db.execute(
            select(AnnualFeeAssignment).where(AnnualFeeAssignment.student_id == student_id)
        )
        existing = {a.academic_year: a for a in result.scalars().all()}

        for totals in annual:
            record = existing.pop(totals.academic_year, None)
            if record is None:
                record = AnnualFeeAssignment(student_id=student_id, academic_year=totals.academic_year)
                self.db.add(record)
            record.total_amount = totals.total
            record.paid_amount = totals.paid
            record.pending_amount = totals.pending
            record.status = totals.status
            record.due_date = totals.due_date

        # Years with no term assignments left (e.g. after a bill was removed)
        for record in existing.values():
            await self.db.delete(record)
