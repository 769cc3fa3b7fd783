"""SQLite 缓存表（SQLModel + aiosqlite）."""

from datetime import datetime
from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from newsthread.cache.base import EntityTable, T


class SQLEntityTable(EntityTable[T]):
    """每次操作使用独立会话，读取总能看到最新提交的数据."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._session_factory = session_factory

    @property
    def _key_column(self) -> Any:
        return getattr(self.model, self.key_field)

    async def _put_many(self, entities: list[T]) -> None:
        async with self._session_factory() as session:
            for entity in entities:
                await session.merge(self.clone(entity))
            await session.commit()

    async def _get_many(self, keys: list[str]) -> list[T]:
        async with self._session_factory() as session:
            stmt = select(self.model).where(self._key_column.in_(keys))
            result = await session.execute(stmt)
            rows = {self.key_of(r): r for r in result.scalars().all()}
        # 保持调用方传入的顺序
        return [rows[k] for k in keys if k in rows]

    async def _get_all(self) -> list[T]:
        async with self._session_factory() as session:
            result = await session.execute(select(self.model))
            return list(result.scalars().all())

    async def _delete_many(self, keys: list[str]) -> int:
        async with self._session_factory() as session:
            stmt = delete(self.model).where(self._key_column.in_(keys))
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def _get_expired(self, now: datetime) -> list[T]:
        async with self._session_factory() as session:
            stmt = select(self.model).where(getattr(self.model, self.expires_field) <= now)  # type: ignore[arg-type]
            if self.exempt_field:
                stmt = stmt.where(getattr(self.model, self.exempt_field) == False)  # noqa: E712
            result = await session.execute(stmt)
            return list(result.scalars().all())
