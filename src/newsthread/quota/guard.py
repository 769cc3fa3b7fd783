"""上游 API 配额守卫."""

import asyncio
import logging
import math
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime

from pydantic import BaseModel

from newsthread.cache.store import CacheStore
from newsthread.models.quota import NEWSAPI_QUOTA_KEY, QuotaState
from newsthread.utils.timeutil import ensure_naive_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 3600


def retry_after_until(
    header: str | None,
    now: datetime,
    default_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
) -> datetime:
    """解析 Retry-After 头（秒数或 HTTP 日期），缺失或非法时使用默认值."""
    if header:
        value = header.strip()
        if value.isdigit():
            return now + timedelta(seconds=int(value))
        try:
            parsed = ensure_naive_utc(parsedate_to_datetime(value))
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return max(parsed, now)
    return now + timedelta(seconds=default_seconds)


class QuotaNotice(BaseModel):
    """配额提示（用于可关闭的倒计时提示条）."""

    rate_limited: bool
    rate_limited_until: datetime | None = None
    minutes_remaining: int = 0
    quota_remaining: int = -1
    daily_limit: int = 100


class QuotaGuard:
    """限流状态守卫.

    读取只访问内存状态，不做 I/O；写入先更新内存，再异步持久化。
    """

    def __init__(self, store: CacheStore | None = None, daily_limit: int = 100) -> None:
        self._store = store
        self._rate_limited_until: datetime | None = None
        self._quota_remaining: int = -1
        self._daily_limit = daily_limit
        self._pending: set[asyncio.Task[None]] = set()
        self._write_lock = asyncio.Lock()

    @property
    def rate_limited_until(self) -> datetime | None:
        return self._rate_limited_until

    @property
    def quota_remaining(self) -> int:
        return self._quota_remaining

    async def load(self) -> None:
        """启动时从缓存恢复配额状态."""
        if self._store is None:
            return
        state = await self._store.get_quota_state()
        if state is None:
            return
        self._rate_limited_until = state.rate_limited_until
        self._quota_remaining = state.quota_remaining
        self._daily_limit = state.daily_limit
        if state.rate_limited_until:
            logger.info(f"已恢复限流状态，直到 {state.rate_limited_until}")

    def is_rate_limited(self, now: datetime | None = None) -> bool:
        """当前是否处于限流冷却期."""
        until = self._rate_limited_until
        return until is not None and (now or utcnow()) < until

    def record_rate_limited(self, until: datetime) -> None:
        """记录 429 限流截止时间."""
        self._rate_limited_until = until
        logger.warning(f"上游 API 触发限流，冷却至 {until}")
        self._persist()

    def record_quota_remaining(self, remaining: int) -> None:
        """记录响应头中的剩余配额."""
        self._quota_remaining = remaining
        self._persist()

    def minutes_remaining(self, now: datetime | None = None) -> int:
        """限流剩余分钟数（限流中至少为 1，否则为 0）."""
        current = now or utcnow()
        if not self.is_rate_limited(current) or self._rate_limited_until is None:
            return 0
        seconds = (self._rate_limited_until - current).total_seconds()
        return max(1, math.ceil(seconds / 60))

    def notice(self, now: datetime | None = None) -> QuotaNotice:
        current = now or utcnow()
        limited = self.is_rate_limited(current)
        return QuotaNotice(
            rate_limited=limited,
            rate_limited_until=self._rate_limited_until if limited else None,
            minutes_remaining=self.minutes_remaining(current),
            quota_remaining=self._quota_remaining,
            daily_limit=self._daily_limit,
        )

    async def clear(self) -> None:
        """用户主动关闭限流提示时清除状态."""
        self._rate_limited_until = None
        self._persist()
        await self.flush()
        logger.info("限流状态已清除")

    async def flush(self) -> None:
        """等待所有挂起的持久化完成."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _snapshot(self) -> QuotaState:
        return QuotaState(
            key=NEWSAPI_QUOTA_KEY,
            rate_limited_until=self._rate_limited_until,
            quota_remaining=self._quota_remaining,
            daily_limit=self._daily_limit,
            updated_at=utcnow(),
        )

    def _persist(self) -> None:
        """触发异步持久化（无事件循环时跳过）."""
        if self._store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("无运行中的事件循环，跳过配额持久化")
            return
        task = loop.create_task(self._write(self._snapshot()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, state: QuotaState) -> None:
        assert self._store is not None
        try:
            async with self._write_lock:
                await self._store.put_quota_state(state)
        except Exception as e:
            logger.exception(f"配额状态持久化失败: {e}")
