import asyncio
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from termfees.modules.fees import billing
from termfees.modules.fees import service as fee_service
from termfees.modules.fees.billing import AutoBillingService
from termfees.modules.fees.cache import NullUnpaidItemCache, UnpaidItemCache
from termfees.modules.fees.locks import StudentLockRegistry, lock_student_row
from termfees.modules.fees.schemas import FeeItemCreate
from termfees.modules.fees.service import FeeService
from termfees.modules.payments import service as payment_service
from termfees.modules.payments.service import PaymentService
from termfees.modules.students.models import Student

TODAY = date(2024, 1, 2)


class TestUnpaidItemCache:
    def test_put_get_invalidate(self):
        cache = UnpaidItemCache()

        assert cache.get(1) is None
        cache.put(1, (3, 1, 2))
        cache.put(2, ())

        assert cache.get(1) == (3, 1, 2)
        assert cache.get(2) == ()
        assert 1 in cache and len(cache) == 2
        assert (cache.hits, cache.misses) == (2, 1)

        cache.invalidate(1)
        cache.invalidate(42)
        assert cache.get(1) is None
        assert cache.get(2) == ()

        cache.clear()
        assert len(cache) == 0

    def test_null_cache_stores_nothing(self):
        cache = NullUnpaidItemCache()
        cache.put(1, (1,))
        assert cache.get(1) is None


class TestStudentLockRegistry:
    def test_one_lock_per_student(self):
        registry = StudentLockRegistry()
        lock = registry.for_student(1)

        assert registry.for_student(1) is lock
        assert registry.for_student(2) is not lock

    async def test_lock_serializes_same_student(self):
        registry = StudentLockRegistry()
        order: list[str] = []

        async def worker(name: str):
            async with registry.for_student(7):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    async def test_is_locked(self):
        registry = StudentLockRegistry()
        lock = registry.for_student(5)

        async with lock:
            assert registry.is_locked(5)
        assert not registry.is_locked(5)
        assert not registry.is_locked(6)


class TestStudentRowLock:
    async def test_reloads_committed_state(
        self, db_session: AsyncSession, session_factory: async_sessionmaker[AsyncSession], make_student
    ):
        student = await make_student()
        student_id = student.id

        async with session_factory() as session:
            other = await session.get(Student, student_id)
            other.fee_pending = Decimal("250.00")
            await session.commit()

        locked = await lock_student_row(db_session, student_id)

        assert locked is student
        assert locked.fee_pending == Decimal("250.00")
        assert await lock_student_row(db_session, 999) is None

    async def test_fee_writers_take_row_lock(
        self, db_session: AsyncSession, make_student, make_term, make_template, cache, locks, monkeypatch
    ):
        calls: list[int] = []

        async def recording_lock(db, student_id):
            calls.append(student_id)
            return await lock_student_row(db, student_id)

        for module in (billing, fee_service, payment_service):
            monkeypatch.setattr(module, "lock_student_row", recording_lock)

        term = await make_term(current=True)
        await make_template(term.id, "5", tuition_fee=1000)
        student = await make_student(transport_mode=None)
        student_id = student.id
        fees = FeeService(db_session, cache=cache, locks=locks, today=TODAY)

        await AutoBillingService(db_session, cache=cache, locks=locks, today=TODAY).bill_student(
            student_id, term.id
        )
        assert student_id in calls

        calls.clear()
        item = await fees.add_fee_item(student_id, term.id, FeeItemCreate(item_name="Trip", amount=Decimal("50")))
        assert calls == [student_id]

        calls.clear()
        await fees.remove_fee_item(item.id)
        assert calls == [student_id]

        calls.clear()
        await PaymentService(db_session, cache=cache, locks=locks, today=TODAY).apply_payment(
            student_id, Decimal("400"), apply_to_future_terms=False
        )
        assert calls == [student_id]


class TestCacheInPaymentFlow:
    async def test_unpaid_items_cached_and_invalidated(
        self, db_session: AsyncSession, make_student, make_term, make_template, cache, locks
    ):
        term = await make_term(current=True)
        await make_template(term.id, "5", tuition_fee=1000, transport_fee=500)
        student = await make_student()
        await AutoBillingService(db_session, cache=cache, locks=locks, today=TODAY).bill_student(
            student.id, term.id
        )
        payments = PaymentService(db_session, cache=cache, locks=locks, today=TODAY)

        items = await payments.get_unpaid_items(student.id)
        assert cache.get(student.id) == tuple(i.id for i in items)
        assert [i.item_name for i in await payments.get_unpaid_items(student.id)] == [
            "Tuition Fee",
            "Transport Fee",
        ]
        assert cache.hits == 2

        await payments.apply_payment(student.id, Decimal("1000"), apply_to_future_terms=False)
        assert student.id not in cache
        assert [i.item_name for i in await payments.get_unpaid_items(student.id)] == ["Transport Fee"]

        await FeeService(db_session, cache=cache, locks=locks, today=TODAY).add_fee_item(
            student.id, term.id, FeeItemCreate(item_name="Trip", amount=Decimal("50"))
        )
        assert student.id not in cache
        assert len(await payments.get_unpaid_items(student.id)) == 2
