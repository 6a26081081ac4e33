import asyncio
from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from termfees.core.exceptions import NotFoundError, StateConflictError, ValidationError
from termfees.modules.fees.billing import AutoBillingService
from termfees.modules.fees.models import FeeLineItem, FeeStatus, FeeType, TermAssignment
from termfees.modules.fees.schemas import FeeItemCreate
from termfees.modules.fees.service import FeeService
from termfees.modules.payments.allocation import CREDIT_ITEM_NAME
from termfees.modules.payments.models import FeePayment, PaymentApplication
from termfees.modules.payments.service import PaymentService
from termfees.modules.students.models import Student

TODAY = date(2024, 1, 15)


@pytest.fixture
async def current_term(make_term, make_template):
    """Current term, fees due 2024-01-01, grade 5 pays 1000 tuition."""
    term = await make_term(current=True, fee_due_date=date(2024, 1, 1))
    await make_template(term.id, "5", tuition_fee=1000)
    return term


@pytest.fixture
async def billed_student(db_session: AsyncSession, make_student, current_term, cache, locks):
    """
    Student owing 2000 on the current term:
    tuition 1000 (due 01-01), exam 500 (due 02-01), library 500 (due 03-01).
    """
    student = await make_student(transport_mode=None)
    await AutoBillingService(db_session, cache=cache, locks=locks, today=TODAY).bill_student(
        student.id, current_term.id
    )
    fees = FeeService(db_session, cache=cache, locks=locks, today=TODAY)
    await fees.add_fee_item(
        student.id,
        current_term.id,
        FeeItemCreate(
            item_name="Examination Fee",
            item_type=FeeType.EXAMINATION,
            amount=Decimal("500"),
            due_date=date(2024, 2, 1),
            is_mandatory=True,
        ),
    )
    await fees.add_fee_item(
        student.id,
        current_term.id,
        FeeItemCreate(
            item_name="Library Fee",
            item_type=FeeType.LIBRARY,
            amount=Decimal("500"),
            due_date=date(2024, 3, 1),
            is_mandatory=True,
        ),
    )
    return student


@pytest.fixture
async def future_assignment(db_session: AsyncSession, make_term, make_template, billed_student):
    """The same student billed 800 for a term starting 2024-05-01."""
    term = await make_term(
        name="Term 2", start_date=date(2024, 5, 1), end_date=date(2024, 7, 31), today=TODAY
    )
    await make_template(term.id, "5", tuition_fee=800)
    return await AutoBillingService(db_session, today=TODAY).bill_student(billed_student.id, term.id)


@pytest.fixture
def payments(db_session: AsyncSession, cache, locks) -> PaymentService:
    return PaymentService(db_session, cache=cache, locks=locks, today=TODAY)


async def _items_by_name(db: AsyncSession, student_id: int) -> dict[str, FeeLineItem]:
    result = await db.execute(
        select(FeeLineItem)
        .where(FeeLineItem.student_id == student_id)
        .execution_options(populate_existing=True)
    )
    return {f"{i.term_assignment_id}:{i.item_name}": i for i in result.scalars().all()}


async def _payment_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(FeePayment))).scalar_one()


class TestApplyPayment:
    """Tests for PaymentService.apply_payment."""

    async def test_pays_earliest_due_items_first(
        self, db_session: AsyncSession, payments: PaymentService, billed_student
    ):
        result = await payments.apply_payment(billed_student.id, Decimal("1500"), apply_to_future_terms=False)

        assert result.outcome == "fully_applied"
        assert result.amount_received == Decimal("1500.00")
        assert result.amount_applied == Decimal("1500.00")
        assert result.credit_amount == Decimal("0.00")
        assert result.remaining == Decimal("0.00")
        assert [(i.item_name, i.amount_applied, i.new_status) for i in result.applied_items] == [
            ("Tuition Fee", Decimal("1000.00"), FeeStatus.PAID.value),
            ("Examination Fee", Decimal("500.00"), FeeStatus.PAID.value),
        ]
        assert result.student_fee_pending == Decimal("500.00")
        assert result.student_fee_status == FeeStatus.PARTIAL.value

        items = {i.item_name: i for i in (await _items_by_name(db_session, billed_student.id)).values()}
        assert items["Library Fee"].paid_amount == Decimal("0.00")
        assert items["Library Fee"].status == FeeStatus.PENDING.value

        await db_session.refresh(billed_student)
        assert billed_student.fee_paid == Decimal("1500.00")
        assert billed_student.fee_pending == Decimal("500.00")

    async def test_payment_recorded_with_applications(
        self, db_session: AsyncSession, payments: PaymentService, billed_student
    ):
        result = await payments.apply_payment(
            billed_student.id, Decimal("1200"), apply_to_future_terms=False, reference="MPESA-QWE123"
        )

        payment = await db_session.get(FeePayment, result.payment_id)
        assert payment.receipt_number == result.receipt_number == "RCT-2024-000001"
        assert payment.reference == "MPESA-QWE123"
        assert payment.payment_date == TODAY
        assert payment.applied_amount == Decimal("1200.00")
        assert payment.apply_to_future_terms is False

        applications = (
            await db_session.execute(
                select(PaymentApplication)
                .where(PaymentApplication.payment_id == payment.id)
                .order_by(PaymentApplication.id)
            )
        ).scalars().all()
        assert [(a.item_name, a.amount) for a in applications] == [
            ("Tuition Fee", Decimal("1000.00")),
            ("Examination Fee", Decimal("200.00")),
        ]

        result = await db_session.execute(
            select(TermAssignment).where(TermAssignment.student_id == billed_student.id)
        )
        assert result.scalar_one().last_payment_date == TODAY

    async def test_overpayment_becomes_credit(
        self, db_session: AsyncSession, payments: PaymentService, billed_student, current_term
    ):
        result = await payments.apply_payment(billed_student.id, Decimal("2500"), apply_to_future_terms=False)

        assert result.outcome == "credited"
        assert result.amount_applied == Decimal("2000.00")
        assert result.credit_amount == Decimal("500.00")
        assert result.remaining == Decimal("0.00")

        credit = await db_session.get(FeeLineItem, result.credit_item_id)
        assert credit.item_name == CREDIT_ITEM_NAME
        assert credit.original_amount == Decimal("-500.00")
        assert credit.status == FeeStatus.PAID.value
        assert credit.notes == f"Overpayment on receipt {result.receipt_number}"
        assignment = await db_session.get(TermAssignment, credit.term_assignment_id)
        assert assignment.term_id == current_term.id

        await db_session.refresh(billed_student)
        assert billed_student.fee_total == Decimal("1500.00")
        assert billed_student.fee_paid == Decimal("2000.00")
        assert billed_student.fee_pending == Decimal("-500.00")
        assert billed_student.fee_status == FeeStatus.PAID.value

        payment = await db_session.get(FeePayment, result.payment_id)
        assert payment.amount == payment.applied_amount + payment.forwarded_amount + payment.credit_amount

    async def test_future_terms_untouched_without_flag(
        self, db_session: AsyncSession, payments: PaymentService, billed_student, current_term, future_assignment
    ):
        future_id = future_assignment.id

        result = await payments.apply_payment(billed_student.id, Decimal("2500"), apply_to_future_terms=False)

        assert result.outcome == "credited"
        assert result.forwarded_amount == Decimal("0.00")
        assert result.credit_amount == Decimal("500.00")
        assert {i.term_id for i in result.applied_items} == {current_term.id}
        future = await db_session.get(TermAssignment, future_id, populate_existing=True)
        assert future.paid_amount == Decimal("0.00")

    async def test_forwarded_to_future_term(
        self, db_session: AsyncSession, payments: PaymentService, billed_student, future_assignment
    ):
        result = await payments.apply_payment(billed_student.id, Decimal("2500"), apply_to_future_terms=True)

        assert result.outcome == "forwarded"
        assert result.amount_applied == Decimal("2000.00")
        assert result.forwarded_amount == Decimal("500.00")
        assert result.credit_amount == Decimal("0.00")
        assert result.credit_item_id is None
        assert result.applied_items[-1].term_id == future_assignment.term_id
        assert result.applied_items[-1].new_status == FeeStatus.PARTIAL.value
        assert result.applied_items[-1].pending_after == Decimal("300.00")

    async def test_forward_then_credit(
        self, db_session: AsyncSession, payments: PaymentService, billed_student, current_term, future_assignment
    ):
        result = await payments.apply_payment(billed_student.id, Decimal("3000"), apply_to_future_terms=True)

        assert result.outcome == "credited"
        assert result.forwarded_amount == Decimal("800.00")
        assert result.credit_amount == Decimal("200.00")
        credit = await db_session.get(FeeLineItem, result.credit_item_id)
        assignment = await db_session.get(TermAssignment, credit.term_assignment_id)
        assert assignment.term_id == current_term.id

    async def test_credit_goes_to_touched_assignment_without_current_term(
        self, db_session: AsyncSession, make_term, make_template, make_student
    ):
        term = await make_term(fee_due_date=date(2024, 1, 10))
        await make_template(term.id, "5", tuition_fee=1000)
        student = await make_student()
        assignment = await AutoBillingService(db_session, today=TODAY).bill_student(student.id, term.id)

        result = await PaymentService(db_session, today=TODAY).apply_payment(
            student.id, Decimal("1100"), apply_to_future_terms=False
        )

        credit = await db_session.get(FeeLineItem, result.credit_item_id)
        assert credit.term_assignment_id == assignment.id
        assert credit.original_amount == Decimal("-100.00")

    async def test_credit_not_picked_up_by_later_payment(
        self, db_session: AsyncSession, payments: PaymentService, billed_student, current_term
    ):
        await payments.apply_payment(billed_student.id, Decimal("2100"), apply_to_future_terms=False)
        await FeeService(db_session, cache=payments.cache, locks=payments.locks, today=TODAY).add_fee_item(
            billed_student.id, current_term.id, FeeItemCreate(item_name="Trip", amount=Decimal("300"))
        )

        result = await payments.apply_payment(billed_student.id, Decimal("300"), apply_to_future_terms=False)

        assert [i.item_name for i in result.applied_items] == ["Trip"]
        assert result.student_fee_pending == Decimal("-100.00")

    async def test_receipt_numbers_are_sequential_per_year(
        self, payments: PaymentService, billed_student
    ):
        first = await payments.apply_payment(billed_student.id, Decimal("100"), apply_to_future_terms=False)
        second = await payments.apply_payment(billed_student.id, Decimal("100"), apply_to_future_terms=False)
        next_year = await payments.apply_payment(
            billed_student.id, Decimal("100"), apply_to_future_terms=False, payment_date=date(2025, 1, 3)
        )

        assert first.receipt_number == "RCT-2024-000001"
        assert second.receipt_number == "RCT-2024-000002"
        assert next_year.receipt_number == "RCT-2025-000001"


class TestPaymentRejections:
    """Rejected payments leave no trace."""

    async def test_non_positive_amount(self, db_session: AsyncSession, payments: PaymentService, billed_student):
        with pytest.raises(ValidationError):
            await payments.apply_payment(billed_student.id, Decimal("0"), apply_to_future_terms=False)
        with pytest.raises(ValidationError):
            await payments.apply_payment(billed_student.id, Decimal("-5"), apply_to_future_terms=False)
        assert await _payment_count(db_session) == 0

    async def test_unknown_student(self, payments: PaymentService):
        with pytest.raises(NotFoundError):
            await payments.apply_payment(999, Decimal("100"), apply_to_future_terms=False)

    async def test_nothing_owed(self, db_session: AsyncSession, payments: PaymentService, make_student):
        student = await make_student()
        student_id = student.id

        with pytest.raises(StateConflictError):
            await payments.apply_payment(student_id, Decimal("100"), apply_to_future_terms=False)

        assert await _payment_count(db_session) == 0
        refreshed = await db_session.get(Student, student_id, populate_existing=True)
        assert refreshed.fee_paid == Decimal("0.00")

    async def test_fully_paid_student(self, db_session: AsyncSession, payments: PaymentService, billed_student):
        student_id = billed_student.id
        await payments.apply_payment(student_id, Decimal("2000"), apply_to_future_terms=False)

        with pytest.raises(StateConflictError):
            await payments.apply_payment(student_id, Decimal("1"), apply_to_future_terms=True)

        assert await _payment_count(db_session) == 1


class TestConcurrentPayments:
    async def test_same_student_payments_are_serialized(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        make_student,
        current_term,
        cache,
        locks,
    ):
        student = await make_student(transport_mode=None)
        student_id = student.id
        async with session_factory() as session:
            await AutoBillingService(session, cache=cache, locks=locks, today=TODAY).bill_student(
                student_id, current_term.id
            )

        async def pay():
            async with session_factory() as session:
                service = PaymentService(session, cache=cache, locks=locks, today=TODAY)
                return await service.apply_payment(student_id, Decimal("1000"), apply_to_future_terms=False)

        outcomes = await asyncio.gather(pay(), pay(), return_exceptions=True)

        results = [o for o in outcomes if not isinstance(o, Exception)]
        conflicts = [o for o in outcomes if isinstance(o, StateConflictError)]
        assert len(results) == 1
        assert len(conflicts) == 1
        assert results[0].amount_applied == Decimal("1000.00")

        async with session_factory() as session:
            refreshed = await session.get(Student, student_id)
            assert refreshed.fee_paid == Decimal("1000.00")
            assert refreshed.fee_pending == Decimal("0.00")
            assert await _payment_count(session) == 1


class TestPaymentEndpoints:
    async def test_flag_is_required(self, client: AsyncClient, billed_student):
        response = await client.post(
            "/api/v1/payments", json={"student_id": billed_student.id, "amount": "100"}
        )

        assert response.status_code == 422

    async def test_create_and_list(self, client: AsyncClient, billed_student):
        response = await client.post(
            "/api/v1/payments",
            json={
                "student_id": billed_student.id,
                "amount": "2500",
                "apply_to_future_terms": False,
                "payment_date": "2024-01-15",
            },
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["outcome"] == "credited"
        assert Decimal(data["credit_amount"]) == Decimal("500")

        response = await client.get(f"/api/v1/payments/students/{billed_student.id}")
        payments = response.json()["data"]
        assert len(payments) == 1
        assert payments[0]["receipt_number"] == data["receipt_number"]
        assert len(payments[0]["applications"]) == 3

    async def test_nothing_owed_is_409(self, client: AsyncClient, make_student):
        student = await make_student()

        response = await client.post(
            "/api/v1/payments",
            json={"student_id": student.id, "amount": "100", "apply_to_future_terms": True},
        )

        assert response.status_code == 409
