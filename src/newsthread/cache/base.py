"""缓存表抽象基类."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Generic, TypeVar

from sqlmodel import SQLModel

T = TypeVar("T", bound=SQLModel)


class EntityTable(ABC, Generic[T]):
    """以字符串主键存储同一类实体的表.

    子表（cascade_to）与父表共用主键，删除父记录时先删除子记录。
    exempt_field 为真值的记录不参与过期清理。
    """

    def __init__(
        self,
        model: type[T],
        key_field: str,
        expires_field: str | None = "expires_at",
        exempt_field: str | None = None,
    ) -> None:
        self.model = model
        self.key_field = key_field
        self.expires_field = expires_field
        self.exempt_field = exempt_field
        self.cascade_to: list[EntityTable[Any]] = []

    def add_cascade(self, child: "EntityTable[Any]") -> None:
        """注册级联删除的子表."""
        self.cascade_to.append(child)

    def key_of(self, entity: T) -> str:
        return getattr(entity, self.key_field)

    def clone(self, entity: T) -> T:
        """复制实体，避免调用方共享可变对象."""
        return self.model.model_validate(entity.model_dump())

    def is_expired(self, entity: T, now: datetime) -> bool:
        """判断记录是否已过期（豁免记录永不过期）."""
        if self.expires_field is None:
            return False
        if self.exempt_field and getattr(entity, self.exempt_field):
            return False
        return getattr(entity, self.expires_field) <= now

    async def put(self, entity: T) -> None:
        """写入或覆盖单条记录."""
        await self.put_many([entity])

    async def put_many(self, entities: Iterable[T]) -> None:
        """批量写入或覆盖（后写入者生效）."""
        items = list(entities)
        if items:
            await self._put_many(items)

    async def get(self, key: str) -> T | None:
        found = await self._get_many([key])
        return found[0] if found else None

    async def get_many(self, keys: Iterable[str]) -> list[T]:
        """按主键批量读取，忽略不存在的记录."""
        key_list = list(dict.fromkeys(keys))
        if not key_list:
            return []
        return await self._get_many(key_list)

    async def get_all(self) -> list[T]:
        return await self._get_all()

    async def delete(self, key: str) -> bool:
        return await self.delete_many([key]) > 0

    async def delete_many(self, keys: Iterable[str]) -> int:
        """批量删除，先删除子表记录."""
        key_list = list(dict.fromkeys(keys))
        if not key_list:
            return 0
        for child in self.cascade_to:
            await child.delete_many(key_list)
        return await self._delete_many(key_list)

    async def get_expired(self, now: datetime) -> list[T]:
        """获取过期记录."""
        if self.expires_field is None:
            return []
        return await self._get_expired(now)

    async def delete_expired(self, now: datetime) -> int:
        """删除过期记录，返回删除数量."""
        expired = await self.get_expired(now)
        return await self.delete_many(self.key_of(e) for e in expired)

    @abstractmethod
    async def _put_many(self, entities: list[T]) -> None: ...

    @abstractmethod
    async def _get_many(self, keys: list[str]) -> list[T]: ...

    @abstractmethod
    async def _get_all(self) -> list[T]: ...

    @abstractmethod
    async def _delete_many(self, keys: list[str]) -> int: ...

    @abstractmethod
    async def _get_expired(self, now: datetime) -> list[T]: ...
