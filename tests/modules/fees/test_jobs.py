from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from termfees.modules.fees.jobs import run_daily_billing
from termfees.modules.fees.models import FeeStatus
from termfees.modules.students.models import Student
from termfees.modules.terms.models import AcademicTerm, TermStatus


class TestRunDailyBilling:
    async def test_bills_once_then_marks_overdue(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        make_student,
        make_term,
        make_template,
    ):
        term = await make_term(current=True)
        await make_template(term.id, "5", tuition_fee=1000)
        student = await make_student()
        student_id = student.id

        first = await run_daily_billing(session_factory, date(2024, 1, 2))
        second = await run_daily_billing(session_factory, date(2024, 1, 3))
        await run_daily_billing(session_factory, date(2024, 2, 5))

        assert first.success is True
        assert first.billed == 1
        assert second.billed == 0
        assert second.skipped == 1

        async with session_factory() as session:
            refreshed = await session.get(Student, student_id)
            assert refreshed.fee_total == Decimal("1000.00")
            assert refreshed.fee_status == FeeStatus.OVERDUE.value

    async def test_refreshes_term_statuses(
        self, session_factory: async_sessionmaker[AsyncSession], make_term
    ):
        term = await make_term(current=True)
        term_id = term.id

        result = await run_daily_billing(session_factory, date(2024, 4, 1))

        assert result.billed == 0
        async with session_factory() as session:
            assert (await session.get(AcademicTerm, term_id)).status == TermStatus.COMPLETED.value

    async def test_without_current_term(self, session_factory: async_sessionmaker[AsyncSession]):
        result = await run_daily_billing(session_factory, date(2024, 1, 2))

        assert result.success is False
        assert result.outcome == "failed"
