"""Auto-billing: turning grade fee templates into term assignments."""

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from termfees.core.audit import AuditAction, AuditService
from termfees.core.config import settings
from termfees.core.exceptions import NotFoundError, StateConflictError, ValidationError
from termfees.modules.fees.aggregates import RecalculationService
from termfees.modules.fees.cache import UnpaidItemCacheProtocol, get_unpaid_item_cache
from termfees.modules.fees.generator import assignment_due_date, generate_fee_items
from termfees.modules.fees.locks import StudentLockRegistry, get_student_locks, lock_student_row
from termfees.modules.fees.models import FeeLineItem, FeeStatus, TermAssignment
from termfees.modules.fees.schemas import BillingResult, RegenerateBillResult
from termfees.modules.payments.allocation import CREDIT_ITEM_NAME, allocate, build_credit_item
from termfees.modules.students.models import Student, StudentStatus
from termfees.modules.students.service import StudentService
from termfees.modules.terms.models import AcademicTerm, GradeFeeTemplate
from termfees.modules.terms.resolver import GradeFeeTemplateResolver
from termfees.modules.terms.service import TermService
from termfees.shared.utils.money import ZERO, round_money, sum_money

logger = logging.getLogger(__name__)

BILLED = "billed"


def _is_payment_credit(item: FeeLineItem) -> bool:
    return item.item_name == CREDIT_ITEM_NAME and item.original_amount < 0


class AutoBillingService:
    """
    Bills students for a term from grade fee templates.

    A student counts as billed for a term as soon as a term assignment exists
    for the pair, so billing can be re-run safely: already billed students
    are skipped. Each student is committed on its own; a failure rolls back
    that student only and is reported in the result.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        cache: UnpaidItemCacheProtocol | None = None,
        locks: StudentLockRegistry | None = None,
        today: date | None = None,
    ):
        self.db = db
        self.cache = cache if cache is not None else get_unpaid_item_cache()
        self.locks = locks if locks is not None else get_student_locks()
        self._today = today
        self.audit = AuditService(db)
        self.resolver = GradeFeeTemplateResolver(db)

    @property
    def today(self) -> date:
        return self._today or date.today()

    async def _get_term(self, term_id: int) -> AcademicTerm:
        term = await self.db.get(AcademicTerm, term_id)
        if not term:
            raise NotFoundError("Term", term_id)
        return term

    async def _get_student(self, student_id: int) -> Student:
        student = await self.db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _find_assignment(
        self, student_id: int, term_id: int, with_items: bool = False
    ) -> TermAssignment | None:
        stmt = select(TermAssignment).where(
            TermAssignment.student_id == student_id,
            TermAssignment.term_id == term_id,
        )
        if with_items:
            stmt = stmt.options(selectinload(TermAssignment.fee_items))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_assignment(
        self, student: Student, term: AcademicTerm, template: GradeFeeTemplate
    ) -> TermAssignment:
        """Persist a new assignment with generated items and run the cascade."""
        today = self.today
        assignment = TermAssignment(
            student_id=student.id,
            term_id=term.id,
            due_date=assignment_due_date(term),
            is_billed=True,
            billing_date=today,
            status=FeeStatus.PENDING.value,
            total_term_fee=ZERO,
            paid_amount=ZERO,
            pending_amount=ZERO,
            reminders_sent=0,
        )
        assignment.fee_items = generate_fee_items(assignment, template, student, today)
        self.db.add(assignment)
        await self.db.flush()

        await RecalculationService(self.db, today).recalculate(student.id)
        return assignment

    async def _bill_one(self, student_id: int, term_id: int) -> str:
        """Bill one student if every precondition holds; otherwise return the skip reason."""
        student = await lock_student_row(self.db, student_id)
        term = await self.db.get(AcademicTerm, term_id, populate_existing=True)
        if student is None:
            return "student no longer exists"

        if student.status != StudentStatus.ACTIVE.value:
            return "student is not active"
        if not student.grade or not student.grade.strip():
            return "student has no grade"
        if await self._find_assignment(student_id, term_id):
            return "already billed"
        template = await self.resolver.resolve(term_id, student.grade)
        if template is None:
            return f"no fee template for grade {student.grade}"

        await self._create_assignment(student, term, template)
        return BILLED

    async def bill_term(self, term_id: int) -> BillingResult:
        """
        Bill every active student for a term.

        Returns counts of billed and skipped students plus one formatted
        error per student that failed. Unexpected failures outside the
        per-student loop come back as a failed result instead of raising.
        """
        term = await self._get_term(term_id)
        result = BillingResult(
            term_id=term.id,
            term_name=term.name,
            academic_year=term.academic_year,
        )
        try:
            await self._bill_population(term.id, result)
        except Exception as exc:
            await self.db.rollback()
            logger.exception("Billing run for term %s aborted", term_id)
            result.success = False
            result.outcome = "failed"
            result.message = f"Billing failed: {exc}"
            return result

        if result.errors:
            result.outcome = "completed_with_errors"
        result.message = (
            f"Billed {result.billed} student(s), skipped {result.skipped}, "
            f"{len(result.errors)} error(s)"
        )
        logger.info("Billing run for %s %s: %s", result.term_name, result.academic_year, result.message)
        return result

    async def _bill_population(self, term_id: int, result: BillingResult) -> None:
        students = await StudentService(self.db).list_active_students()
        # Plain values only: a rollback expires every loaded instance
        roster = [(s.id, s.full_name, s.grade) for s in students]
        logger.info("Billing %d active student(s) for term %s", len(roster), term_id)

        for index, (student_id, name, grade) in enumerate(roster, start=1):
            try:
                async with self.locks.for_student(student_id):
                    try:
                        outcome = await self._bill_one(student_id, term_id)
                        if outcome == BILLED:
                            await self.db.commit()
                    finally:
                        self.cache.invalidate(student_id)
            except Exception as exc:
                await self.db.rollback()
                message = f"Student {name} ({grade or 'no grade'}): {exc}"
                result.errors.append(message)
                logger.warning("Billing error - %s", message)
            else:
                if outcome == BILLED:
                    result.billed += 1
                else:
                    result.skipped += 1
                    logger.debug("Skipped student %s: %s", student_id, outcome)

            if index % settings.billing_progress_every == 0:
                logger.info("Billing progress: %d/%d students processed", index, len(roster))

    async def bill_current_term(self) -> BillingResult:
        """Bill the current term; a failed result when no term is current."""
        term = await TermService(self.db).get_current_term()
        if term is None:
            logger.warning("Auto-billing skipped: no current term")
            return BillingResult(success=False, outcome="failed", message="No current term set")
        return await self.bill_term(term.id)

    async def bill_student(self, student_id: int, term_id: int) -> TermAssignment:
        """Bill a single student; raises instead of skipping."""
        student = await self._get_student(student_id)
        term = await self._get_term(term_id)

        if student.status != StudentStatus.ACTIVE.value:
            raise ValidationError(f"Student {student.full_name} is not active", "status")
        if not student.grade or not student.grade.strip():
            raise ValidationError(f"Student {student.full_name} has no grade", "grade")

        async with self.locks.for_student(student_id):
            await lock_student_row(self.db, student_id)
            if await self._find_assignment(student_id, term_id):
                raise StateConflictError(
                    f"Student {student.full_name} is already billed for {term.display_name}"
                )
            template = await self.resolver.resolve(term_id, student.grade)
            if template is None:
                raise NotFoundError(f"Fee template for grade '{student.grade}'")

            try:
                assignment = await self._create_assignment(student, term, template)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            finally:
                self.cache.invalidate(student_id)

        logger.info("Billed student %s for %s", student_id, term.display_name)
        return assignment

    async def regenerate_bill(
        self,
        student_id: int,
        term_id: int,
        reason: str | None = None,
        performed_by: str | None = None,
    ) -> RegenerateBillResult:
        """
        Delete a student's term assignment and bill it again from the template.

        Money already paid on the old items, together with any Payment Credit
        the old bill held, is re-applied to the new items in allocation order;
        any excess becomes a payment credit again. Audited.
        """
        student = await self._get_student(student_id)
        term = await self._get_term(term_id)
        if not student.grade or not student.grade.strip():
            raise ValidationError(f"Student {student.full_name} has no grade", "grade")

        async with self.locks.for_student(student_id):
            await lock_student_row(self.db, student_id)
            existing = await self._find_assignment(student_id, term_id, with_items=True)
            if existing is None:
                raise NotFoundError("Term assignment", f"student={student_id}, term={term_id}")
            template = await self.resolver.resolve(term_id, student.grade)
            if template is None:
                raise NotFoundError(f"Fee template for grade '{student.grade}'")

            previous_total = sum_money(i.original_amount for i in existing.fee_items)
            previous_count = len(existing.fee_items)
            # Money the student handed over: payments on items plus unspent overpayments
            carried = sum_money(
                [i.paid_amount for i in existing.fee_items if i.paid_amount > 0]
                + [-i.original_amount for i in existing.fee_items if _is_payment_credit(i)]
            )

            try:
                await self.db.delete(existing)
                await self.db.flush()

                assignment = await self._create_assignment(student, term, template)
                credit = ZERO
                if carried > 0:
                    _, credit = allocate(assignment.fee_items, carried, self.today)
                    if credit > 0:
                        self.db.add(
                            build_credit_item(assignment, credit, note="Carried over on bill regeneration")
                        )
                    await self.db.flush()
                    await RecalculationService(self.db, self.today).recalculate(student_id)

                new_total = sum_money(
                    i.original_amount for i in assignment.fee_items if i.is_auto_generated
                )
                await self.audit.log(
                    action=AuditAction.REGENERATE_BILL,
                    entity_type="TermAssignment",
                    entity_id=assignment.id,
                    performed_by=performed_by,
                    entity_identifier=f"{student.student_number} / {term.display_name}",
                    old_values={"total": str(previous_total), "items": previous_count},
                    new_values={
                        "total": str(new_total),
                        "items": len(assignment.fee_items),
                        "carried_over_paid": str(carried),
                    },
                    comment=reason,
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            finally:
                self.cache.invalidate(student_id)

        logger.info(
            "Regenerated bill for student %s, term %s: %s -> %s",
            student_id,
            term_id,
            previous_total,
            new_total,
        )
        return RegenerateBillResult(
            student_id=student_id,
            term_id=term_id,
            term_assignment_id=assignment.id,
            previous_total=previous_total,
            new_total=new_total,
            previous_item_count=previous_count,
            new_item_count=len([i for i in assignment.fee_items if i.is_auto_generated]),
            carried_over_paid=carried,
            credit_amount=round_money(credit),
        )
