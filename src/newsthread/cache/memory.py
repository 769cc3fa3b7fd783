"""内存缓存表（测试和无持久化部署使用）."""

from datetime import datetime
from typing import Any

from newsthread.cache.base import EntityTable, T


class MemoryEntityTable(EntityTable[T]):
    """基于 dict 的缓存表."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._rows: dict[str, T] = {}

    async def _put_many(self, entities: list[T]) -> None:
        for entity in entities:
            self._rows[self.key_of(entity)] = self.clone(entity)

    async def _get_many(self, keys: list[str]) -> list[T]:
        return [self.clone(self._rows[k]) for k in keys if k in self._rows]

    async def _get_all(self) -> list[T]:
        return [self.clone(row) for row in self._rows.values()]

    async def _delete_many(self, keys: list[str]) -> int:
        removed = 0
        for key in keys:
            if self._rows.pop(key, None) is not None:
                removed += 1
        return removed

    async def _get_expired(self, now: datetime) -> list[T]:
        return [self.clone(r) for r in self._rows.values() if self.is_expired(r, now)]
