import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from termfees.core.config import settings
from termfees.core.documents import DocumentNumberGenerator
from termfees.core.exceptions import NotFoundError, StateConflictError, ValidationError
from termfees.modules.fees.aggregates import RecalculationService
from termfees.modules.fees.cache import UnpaidItemCacheProtocol, get_unpaid_item_cache
from termfees.modules.fees.locks import StudentLockRegistry, get_student_locks, lock_student_row
from termfees.modules.fees.models import UNPAID_STATUSES, FeeLineItem, TermAssignment
from termfees.modules.payments.allocation import (
    ItemApplication,
    allocate,
    allocation_sort_key,
    build_credit_item,
)
from termfees.modules.payments.models import FeePayment, PaymentApplication
from termfees.modules.payments.schemas import AllocationResult, AppliedItem
from termfees.modules.students.models import Student
from termfees.modules.terms.service import TermService
from termfees.shared.utils.money import ZERO, round_money, sum_money

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Applies cash payments to a student's outstanding fee items.

    Money goes to current and past terms first, in allocation order. What is
    left is either swept into upcoming terms or kept as a Payment Credit line
    item, depending on ``apply_to_future_terms``. The whole payment is one
    transaction taken under the student's lock.
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

    @property
    def today(self) -> date:
        return self._today or date.today()

    async def _query_unpaid_items(self, student_id: int) -> list[FeeLineItem]:
        result = await self.db.execute(
            select(FeeLineItem)
            .where(
                FeeLineItem.student_id == student_id,
                FeeLineItem.status.in_(UNPAID_STATUSES),
                FeeLineItem.pending_amount > 0,
            )
            .options(selectinload(FeeLineItem.term_assignment))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return sorted(result.scalars().all(), key=allocation_sort_key)

    async def _load_items(self, item_ids: tuple[int, ...]) -> list[FeeLineItem]:
        if not item_ids:
            return []
        result = await self.db.execute(
            select(FeeLineItem)
            .where(FeeLineItem.id.in_(item_ids))
            .options(selectinload(FeeLineItem.term_assignment))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return sorted((i for i in result.scalars().all() if i.is_unpaid), key=allocation_sort_key)

    async def get_unpaid_items(self, student_id: int) -> list[FeeLineItem]:
        """Unpaid items of every term in allocation order, served from the cache when possible."""
        cached = self.cache.get(student_id)
        if cached is not None:
            return await self._load_items(cached)

        items = await self._query_unpaid_items(student_id)
        self.cache.put(student_id, tuple(item.id for item in items))
        return items

    async def _credit_target(
        self, student_id: int, touched: list[TermAssignment]
    ) -> TermAssignment:
        """Assignment that receives a Payment Credit. Never creates one."""
        current = await TermService(self.db).get_current_term()
        if current is not None:
            result = await self.db.execute(
                select(TermAssignment).where(
                    TermAssignment.student_id == student_id,
                    TermAssignment.term_id == current.id,
                )
            )
            assignment = result.scalar_one_or_none()
            if assignment is not None:
                return assignment

        if touched:
            return max(touched, key=lambda a: (a.due_date or date.min, a.id))

        result = await self.db.execute(
            select(TermAssignment)
            .where(TermAssignment.student_id == student_id)
            .order_by(TermAssignment.due_date.desc(), TermAssignment.id.desc())
            .limit(1)
        )
        return result.scalar_one()

    async def apply_payment(
        self,
        student_id: int,
        amount: Decimal,
        apply_to_future_terms: bool,
        reference: str | None = None,
        notes: str | None = None,
        payment_date: date | None = None,
    ) -> AllocationResult:
        """
        Allocate ``amount`` across the student's unpaid items.

        Raises ValidationError for a non-positive amount, NotFoundError for an
        unknown student and StateConflictError when the student owes nothing.
        Any failure leaves the database untouched.
        """
        amount = round_money(Decimal(amount))
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero", "amount")

        student = await self.db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student", student_id)

        today = self.today
        payment_date = payment_date or today

        async with self.locks.for_student(student_id):
            try:
                await lock_student_row(self.db, student_id)
                items = await self.get_unpaid_items(student_id)
                if not items:
                    raise StateConflictError(
                        f"Student {student.full_name} has no outstanding fees",
                        details={"student_id": student_id},
                    )

                upcoming = await TermService(self.db).list_upcoming_terms(today)
                future_ids = [t.id for t in upcoming]

                # Current and past terms first
                first_pass = [i for i in items if i.term_assignment.term_id not in future_ids]
                applications, remaining = allocate(first_pass, amount, today)
                applied_amount = sum_money(a.amount for a in applications)

                forwarded_amount = ZERO
                if remaining > 0 and apply_to_future_terms:
                    for term_id in future_ids:
                        if remaining <= 0:
                            break
                        term_items = [i for i in items if i.term_assignment.term_id == term_id]
                        swept, remaining = allocate(term_items, remaining, today)
                        forwarded_amount += sum_money(a.amount for a in swept)
                        applications.extend(swept)
                    forwarded_amount = round_money(forwarded_amount)

                touched: list[TermAssignment] = []
                for application in applications:
                    assignment = application.item.term_assignment
                    if assignment not in touched:
                        touched.append(assignment)
                for assignment in touched:
                    assignment.last_payment_date = payment_date

                credit_amount = ZERO
                credit_item = None
                if remaining > 0:
                    credit_amount = remaining
                    target = await self._credit_target(student_id, touched)
                    credit_item = build_credit_item(target, credit_amount)
                    self.db.add(credit_item)
                    remaining = ZERO

                payment = await self._record_payment(
                    student_id,
                    amount,
                    applied_amount,
                    forwarded_amount,
                    credit_amount,
                    apply_to_future_terms,
                    payment_date,
                    reference,
                    notes,
                    applications,
                )
                if credit_item is not None:
                    credit_item.notes = f"Overpayment on receipt {payment.receipt_number}"

                aggregates = await RecalculationService(self.db, today).recalculate(student_id)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            finally:
                self.cache.invalidate(student_id)

        if credit_amount > 0:
            disposition = f"credit {credit_amount}"
        elif forwarded_amount > 0:
            disposition = f"forwarded {forwarded_amount} to upcoming terms"
        else:
            disposition = "fully applied"
        logger.info(
            "Payment %s for student %s: received %s, applied %s, %s",
            payment.receipt_number,
            student_id,
            amount,
            applied_amount,
            disposition,
        )

        if credit_amount > 0:
            outcome = "credited"
        elif forwarded_amount > 0:
            outcome = "forwarded"
        else:
            outcome = "fully_applied"

        return AllocationResult(
            payment_id=payment.id,
            receipt_number=payment.receipt_number,
            student_id=student_id,
            amount_received=amount,
            amount_applied=applied_amount,
            forwarded_amount=forwarded_amount,
            credit_amount=credit_amount,
            credit_item_id=credit_item.id if credit_item is not None else None,
            remaining=remaining,
            outcome=outcome,
            applied_items=[
                AppliedItem(
                    item_id=a.item.id,
                    item_name=a.item.item_name,
                    term_id=a.item.term_assignment.term_id,
                    amount_applied=a.amount,
                    new_status=a.item.status,
                    pending_after=a.item.pending_amount,
                )
                for a in applications
            ],
            student_fee_pending=aggregates.snapshot.pending,
            student_fee_status=aggregates.snapshot.status,
        )

    async def _record_payment(
        self,
        student_id: int,
        amount: Decimal,
        applied_amount: Decimal,
        forwarded_amount: Decimal,
        credit_amount: Decimal,
        apply_to_future_terms: bool,
        payment_date: date,
        reference: str | None,
        notes: str | None,
        applications: list[ItemApplication],
    ) -> FeePayment:
        receipt_number = await DocumentNumberGenerator(self.db).generate(
            settings.receipt_prefix, payment_date.year
        )
        payment = FeePayment(
            receipt_number=receipt_number,
            student_id=student_id,
            amount=amount,
            applied_amount=applied_amount,
            forwarded_amount=forwarded_amount,
            credit_amount=credit_amount,
            apply_to_future_terms=apply_to_future_terms,
            payment_date=payment_date,
            reference=reference,
            notes=notes,
        )
        payment.applications = [
            PaymentApplication(
                fee_item_id=a.item.id,
                term_id=a.item.term_assignment.term_id,
                item_name=a.item.item_name,
                amount=a.amount,
            )
            for a in applications
        ]
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def list_student_payments(self, student_id: int) -> list[FeePayment]:
        student = await self.db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student", student_id)

        result = await self.db.execute(
            select(FeePayment)
            .where(FeePayment.student_id == student_id)
            .options(selectinload(FeePayment.applications))
            .order_by(FeePayment.payment_date.desc(), FeePayment.id.desc())
        )
        return list(result.scalars().all())
