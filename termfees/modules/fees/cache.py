"""Per-student cache of ordered unpaid line item ids."""

from typing import Protocol

from termfees.core.config import settings


class UnpaidItemCacheProtocol(Protocol):
    def get(self, student_id: int) -> tuple[int, ...] | None: ...

    def put(self, student_id: int, item_ids: tuple[int, ...]) -> None: ...

    def invalidate(self, student_id: int) -> None: ...

    def clear(self) -> None: ...


class UnpaidItemCache:
    """
    Memoizes a student's unpaid items (as ids, in allocation order).

    Entries are keyed by student and each operation is a single dict
    operation, so concurrent readers and writers for different students never
    interfere and no global lock is taken. Any write to a student's line
    items must be followed by ``invalidate(student_id)``.
    """

    def __init__(self) -> None:
        self._entries: dict[int, tuple[int, ...]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, student_id: int) -> tuple[int, ...] | None:
        entry = self._entries.get(student_id)
        if entry is None:
            self.misses += 1
        else:
            self.hits += 1
        return entry

    def put(self, student_id: int, item_ids: tuple[int, ...]) -> None:
        self._entries[student_id] = tuple(item_ids)

    def invalidate(self, student_id: int) -> None:
        self._entries.pop(student_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, student_id: int) -> bool:
        return student_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class NullUnpaidItemCache:
    """Cache that never stores anything; every read goes to the database."""

    def get(self, student_id: int) -> tuple[int, ...] | None:
        return None

    def put(self, student_id: int, item_ids: tuple[int, ...]) -> None:
        pass

    def invalidate(self, student_id: int) -> None:
        pass

    def clear(self) -> None:
        pass


_cache: UnpaidItemCacheProtocol = (
    UnpaidItemCache() if settings.unpaid_cache_enabled else NullUnpaidItemCache()
)


def get_unpaid_item_cache() -> UnpaidItemCacheProtocol:
    """Process-wide cache (FastAPI dependency)."""
    return _cache
