"""Manual line items, bulk operations, overdue refresh and reminders."""

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from termfees.core.audit import AuditAction, AuditService
from termfees.core.config import settings
from termfees.core.exceptions import NotFoundError, StateConflictError, ValidationError
from termfees.core.notifications import (
    ReminderChannel,
    ReminderMessage,
    ReminderSender,
    dispatch_reminder,
    get_reminder_sender,
)
from termfees.modules.fees.aggregates import RecalculationService, derive_item_status
from termfees.modules.fees.cache import UnpaidItemCacheProtocol, get_unpaid_item_cache
from termfees.modules.fees.locks import StudentLockRegistry, get_student_locks, lock_student_row
from termfees.modules.fees.models import UNPAID_STATUSES, FeeLineItem, FeeStatus, TermAssignment
from termfees.modules.fees.schemas import FeeItemCreate, ReminderRequest, ReminderResult
from termfees.modules.payments.models import PaymentApplication
from termfees.modules.students.models import Student
from termfees.modules.terms.models import AcademicTerm
from termfees.shared.schemas import BulkItemError, BulkOperationResult
from termfees.shared.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

OVERRIDABLE_STATUSES = (FeeStatus.PENDING.value, FeeStatus.OVERDUE.value)


class FeeService:
    """Changes to billed students' line items outside billing and payments."""

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

    @property
    def today(self) -> date:
        return self._today or date.today()

    async def _get_student(self, student_id: int) -> Student:
        student = await self.db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    # --- Queries ---

    async def list_student_assignments(self, student_id: int) -> list[TermAssignment]:
        """Every term bill of a student, oldest term first, with line items."""
        await self._get_student(student_id)
        result = await self.db.execute(
            select(TermAssignment)
            .join(AcademicTerm, AcademicTerm.id == TermAssignment.term_id)
            .where(TermAssignment.student_id == student_id)
            .options(selectinload(TermAssignment.fee_items))
            .order_by(AcademicTerm.start_date, TermAssignment.id)
        )
        return list(result.scalars().all())

    async def get_term_assignment(self, student_id: int, term_id: int) -> TermAssignment:
        result = await self.db.execute(
            select(TermAssignment)
            .where(TermAssignment.student_id == student_id, TermAssignment.term_id == term_id)
            .options(selectinload(TermAssignment.fee_items))
        )
        assignment = result.scalar_one_or_none()
        if not assignment:
            raise NotFoundError("Term assignment", f"student={student_id}, term={term_id}")
        return assignment

    # --- Manual items ---

    async def _next_sequence_order(self, assignment_id: int) -> int:
        result = await self.db.execute(
            select(func.max(FeeLineItem.sequence_order)).where(
                FeeLineItem.term_assignment_id == assignment_id,
                FeeLineItem.sequence_order < settings.credit_sequence_order,
            )
        )
        return (result.scalar() or 0) + 1

    async def add_fee_item(self, student_id: int, term_id: int, data: FeeItemCreate) -> FeeLineItem:
        """
        Add a manual charge, fine or discount to a student's term bill.

        The student must already be billed for the term. Negative amounts are
        credits and count as settled on creation.
        """
        student = await self._get_student(student_id)

        async with self.locks.for_student(student_id):
            try:
                await lock_student_row(self.db, student_id)
                assignment = await self.get_term_assignment(student_id, term_id)
                amount = round_money(data.amount)
                due_date = data.due_date or assignment.due_date
                item = FeeLineItem(
                    term_assignment_id=assignment.id,
                    student_id=student_id,
                    item_name=data.item_name.strip(),
                    item_type=data.item_type.value,
                    original_amount=amount,
                    paid_amount=ZERO,
                    pending_amount=amount,
                    due_date=due_date,
                    is_mandatory=data.is_mandatory,
                    is_auto_generated=False,
                    sequence_order=await self._next_sequence_order(assignment.id),
                    status=derive_item_status(amount, ZERO, due_date, self.today),
                    notes=data.notes,
                )
                self.db.add(item)
                await self.db.flush()

                await RecalculationService(self.db, self.today).recalculate(student_id)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            finally:
                self.cache.invalidate(student_id)

        logger.info(
            "Added %s %s to %s for term %s", item.item_name, amount, student.student_number, term_id
        )
        return item

    async def _check_removable(self, item_id: int) -> FeeLineItem:
        """Re-read the item under the student's locks and refuse anything paid against."""
        item = await self.db.get(
            FeeLineItem, item_id, with_for_update=True, populate_existing=True
        )
        if not item:
            raise NotFoundError("Fee item", item_id)
        if item.is_auto_generated:
            raise StateConflictError("Generated fee items cannot be removed; regenerate the bill instead")
        if item.paid_amount != 0:
            raise StateConflictError("Cannot remove a fee item with payments applied")

        result = await self.db.execute(
            select(func.count())
            .select_from(PaymentApplication)
            .where(PaymentApplication.fee_item_id == item_id)
        )
        if result.scalar_one():
            raise StateConflictError("Cannot remove a fee item with payments applied")
        return item

    async def remove_fee_item(self, item_id: int) -> None:
        """Remove a manual item nobody has paid against."""
        item = await self.db.get(FeeLineItem, item_id)
        if not item:
            raise NotFoundError("Fee item", item_id)
        student_id = item.student_id

        async with self.locks.for_student(student_id):
            try:
                await lock_student_row(self.db, student_id)
                item = await self._check_removable(item_id)
                await self.db.delete(item)
                await self.db.flush()
                await RecalculationService(self.db, self.today).recalculate(student_id)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            finally:
                self.cache.invalidate(student_id)

        logger.info("Removed fee item %s of student %s", item_id, student_id)

    async def bulk_add_fee_item(
        self, student_ids: list[int], term_id: int, data: FeeItemCreate
    ) -> BulkOperationResult:
        """Add the same item to many students; one student's failure does not stop the rest."""
        result = BulkOperationResult()
        for student_id in student_ids:
            result.processed += 1
            try:
                await self.add_fee_item(student_id, term_id, data)
            except Exception as exc:
                logger.warning("Bulk add of %s failed for student %s: %s", data.item_name, student_id, exc)
                result.errors.append(BulkItemError(entity_id=student_id, message=str(exc)))
            else:
                result.succeeded += 1
        return result

    # --- Status maintenance ---

    async def bulk_update_item_status(
        self,
        student_ids: list[int],
        academic_year: str,
        status: FeeStatus | str,
        performed_by: str | None = None,
    ) -> BulkOperationResult:
        """
        Force PENDING or OVERDUE on untouched items of an academic year.

        Only items with nothing paid are changed. Each student is committed
        separately and the change is audited per student.
        """
        status = str(status)
        if status not in OVERRIDABLE_STATUSES:
            raise ValidationError("Only PENDING or OVERDUE can be set directly", "status")

        result = BulkOperationResult()
        for student_id in student_ids:
            result.processed += 1
            try:
                async with self.locks.for_student(student_id):
                    try:
                        changed = await self._override_status(student_id, academic_year, status, performed_by)
                        await self.db.commit()
                    finally:
                        self.cache.invalidate(student_id)
            except Exception as exc:
                await self.db.rollback()
                logger.warning("Status override failed for student %s: %s", student_id, exc)
                result.errors.append(BulkItemError(entity_id=student_id, message=str(exc)))
                continue

            if changed:
                result.succeeded += 1
            else:
                result.skipped += 1
        return result

    async def _override_status(
        self, student_id: int, academic_year: str, status: str, performed_by: str | None
    ) -> int:
        if await lock_student_row(self.db, student_id) is None:
            raise NotFoundError("Student", student_id)
        items_result = await self.db.execute(
            select(FeeLineItem)
            .join(TermAssignment, TermAssignment.id == FeeLineItem.term_assignment_id)
            .join(AcademicTerm, AcademicTerm.id == TermAssignment.term_id)
            .where(
                FeeLineItem.student_id == student_id,
                AcademicTerm.academic_year == academic_year,
                FeeLineItem.paid_amount == 0,
                FeeLineItem.original_amount > 0,
                FeeLineItem.status != status,
            )
            .with_for_update()
        )
        items = list(items_result.scalars().all())
        if not items:
            return 0

        old_statuses = {str(item.id): item.status for item in items}
        for item in items:
            item.status = status
        await RecalculationService(self.db, self.today).recalculate(student_id)

        await self.audit.log(
            action=AuditAction.BULK_STATUS_OVERRIDE,
            entity_type="Student",
            entity_id=student_id,
            performed_by=performed_by,
            entity_identifier=academic_year,
            old_values=old_statuses,
            new_values={"status": status, "items": len(items)},
        )
        return len(items)

    async def refresh_overdue_items(self, today: date | None = None) -> int:
        """
        Re-derive the status of every unpaid item from its amounts and due date.

        Returns the number of items whose status changed. Each affected
        student is re-read, updated and recalculated under their locks and
        committed separately.
        """
        today = today or self.today
        result = await self.db.execute(
            select(FeeLineItem.student_id)
            .where(
                FeeLineItem.status.in_(UNPAID_STATUSES),
                FeeLineItem.pending_amount > 0,
            )
            .distinct()
            .order_by(FeeLineItem.student_id)
        )
        student_ids = list(result.scalars().all())

        affected = 0
        changed = 0
        for student_id in student_ids:
            async with self.locks.for_student(student_id):
                try:
                    student_changed = await self._refresh_student_items(student_id, today)
                    await self.db.commit()
                except Exception:
                    await self.db.rollback()
                    raise
                finally:
                    self.cache.invalidate(student_id)
            if student_changed:
                affected += 1
                changed += student_changed

        logger.info("Overdue refresh: %d item(s) changed for %d student(s)", changed, affected)
        return changed

    async def _refresh_student_items(self, student_id: int, today: date) -> int:
        await lock_student_row(self.db, student_id)
        result = await self.db.execute(
            select(FeeLineItem)
            .where(
                FeeLineItem.student_id == student_id,
                FeeLineItem.status.in_(UNPAID_STATUSES),
                FeeLineItem.pending_amount > 0,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        changed = 0
        for item in result.scalars().all():
            status = derive_item_status(item.original_amount, item.paid_amount, item.due_date, today)
            if status != item.status:
                item.status = status
                changed += 1

        if changed:
            await RecalculationService(self.db, today).recalculate(student_id)
        return changed

    # --- Reminders ---

    async def send_reminders(
        self,
        term_id: int,
        request: ReminderRequest,
        sender: ReminderSender | None = None,
    ) -> ReminderResult:
        """
        Remind guardians of students with an outstanding balance for a term.

        Students with nothing pending are skipped. Delivery failures are
        counted, never raised.
        """
        term = await self.db.get(AcademicTerm, term_id)
        if not term:
            raise NotFoundError("Term", term_id)
        sender = sender or get_reminder_sender()

        stmt = (
            select(TermAssignment)
            .where(TermAssignment.term_id == term_id)
            .options(selectinload(TermAssignment.student))
            .order_by(TermAssignment.student_id)
        )
        if request.student_ids is not None:
            stmt = stmt.where(TermAssignment.student_id.in_(request.student_ids))
        assignments = list((await self.db.execute(stmt)).scalars().all())

        result = ReminderResult()
        billed_ids = {a.student_id for a in assignments}
        if request.student_ids is not None:
            # Requested students that were never billed have nothing to pay
            result.skipped += len(set(request.student_ids) - billed_ids)

        for assignment in assignments:
            if assignment.pending_amount <= 0:
                result.skipped += 1
                continue

            student = assignment.student
            message = ReminderMessage(
                student_id=student.id,
                channel=request.channel,
                recipient=(
                    student.guardian_email
                    if request.channel == ReminderChannel.EMAIL
                    else student.guardian_phone
                ),
                subject=f"{settings.school_name}: fee reminder for {term.display_name}",
                content=(
                    f"Dear parent/guardian, {student.full_name} has an outstanding balance of "
                    f"{assignment.pending_amount} for {term.display_name}. Please pay by "
                    f"{assignment.due_date or term.end_date}."
                ),
            )
            if await dispatch_reminder(sender, message):
                assignment.reminders_sent += 1
                assignment.last_reminder_date = self.today
                result.sent += 1
            else:
                result.failed += 1
                result.failed_student_ids.append(student.id)

        await self.db.commit()
        logger.info(
            "Reminders for %s: sent=%d skipped=%d failed=%d",
            term.display_name,
            result.sent,
            result.skipped,
            result.failed,
        )
        return result
