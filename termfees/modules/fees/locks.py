"""Per-student serialization of fee mutations."""

import asyncio
from weakref import WeakValueDictionary

from sqlalchemy.ext.asyncio import AsyncSession

from termfees.modules.students.models import Student


class StudentLockRegistry:
    """
    Hands out one ``asyncio.Lock`` per student.

    Payment application and billing hold the student's lock for the whole
    read-modify-write sequence. Locks are weakly referenced, so a student's
    lock disappears once no coroutine holds or waits on it. Across processes
    ``lock_student_row`` does the same job.
    """

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[int, asyncio.Lock] = WeakValueDictionary()

    def for_student(self, student_id: int) -> asyncio.Lock:
        lock = self._locks.get(student_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[student_id] = lock
        return lock

    def is_locked(self, student_id: int) -> bool:
        lock = self._locks.get(student_id)
        return lock is not None and lock.locked()


async def lock_student_row(db: AsyncSession, student_id: int) -> Student | None:
    """
    SELECT ... FOR UPDATE on the student row, reloading its state.

    Taken first inside every per-student section that writes fee data, so
    writers in other processes queue on the row until this transaction ends.
    """
    return await db.get(Student, student_id, with_for_update=True, populate_existing=True)


_registry = StudentLockRegistry()


def get_student_locks() -> StudentLockRegistry:
    """Process-wide registry (FastAPI dependency)."""
    return _registry
