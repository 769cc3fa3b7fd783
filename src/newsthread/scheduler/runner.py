"""后台批量分析执行器."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from newsthread.cache.store import CacheStore
from newsthread.core.orchestrator import MatchOrchestrator, PipelineStage
from newsthread.errors import EmbeddingError, PipelineCancelledError
from newsthread.ml.engine import EmbeddingEngine
from newsthread.models.article import CachedArticle
from newsthread.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class AnalysisError:
    """分析错误记录."""

    url: str
    title: str
    error: str
    failed_at: datetime = field(default_factory=utcnow)


@dataclass
class BatchStatus:
    """批量分析状态."""

    batch_id: str
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    status: str = "running"  # running | completed | cancelled
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    current_article: str | None = None
    errors: list[AnalysisError] = field(default_factory=list)


# 全局状态存储
_latest_status: BatchStatus | None = None
_running_runner: "BatchAnalysisRunner | None" = None


def get_latest_batch_status() -> BatchStatus | None:
    """获取最近一次批次状态."""
    return _latest_status


def get_running_runner() -> "BatchAnalysisRunner | None":
    """获取正在运行的执行器."""
    return _running_runner


class BatchAnalysisRunner:
    """为缓存中尚无有效匹配结果的文章预先计算匹配.

    仅用于提前预热，按需对比不依赖它。
    """

    def __init__(
        self,
        orchestrator: MatchOrchestrator,
        store: CacheStore,
        engine: EmbeddingEngine,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.engine = engine
        self._cancel = asyncio.Event()

    def stop(self) -> None:
        """请求停止（当前文章在阶段边界处停止）."""
        self._cancel.set()
        logger.info("已请求停止批量分析")

    @property
    def is_stopped(self) -> bool:
        return self._cancel.is_set()

    async def get_pending(self, limit: int, now: datetime) -> list[CachedArticle]:
        """获取没有有效匹配结果的文章（新发布的优先）."""
        articles = await self.store.articles.get_all()
        articles.sort(key=lambda a: a.published_at or datetime.min, reverse=True)
        pending: list[CachedArticle] = []
        for article in articles:
            if len(pending) >= limit:
                break
            if await self.store.get_valid_match_result(article.url, now) is None:
                pending.append(article)
        return pending

    async def run_batch(self, batch_size: int = 20, concurrency: int = 2) -> BatchStatus:
        """执行一批分析."""
        global _latest_status, _running_runner

        now = utcnow()
        status = BatchStatus(batch_id=now.strftime("%Y%m%d%H%M%S%f"))
        _latest_status = status
        _running_runner = self

        try:
            pending = await self.get_pending(batch_size, now)
            status.total = len(pending)
            if not pending:
                logger.info("没有待分析的文章")
                return status

            # 每批加载一次模型，结束后释放
            try:
                await self.engine.load_model()
            except EmbeddingError as e:
                logger.warning(f"嵌入模型不可用，本批使用关键词匹配: {e}")
            semaphore = asyncio.Semaphore(concurrency)

            async def analyze(article: CachedArticle) -> None:
                async with semaphore:
                    if self.is_stopped:
                        status.skipped += 1
                        return
                    status.current_article = article.title
                    try:
                        outcome = await self.orchestrator.compare(
                            article.to_article(), cancel_event=self._cancel
                        )
                    except PipelineCancelledError:
                        status.skipped += 1
                        return
                    except Exception as e:
                        logger.exception(f"分析失败: {article.url}")
                        status.failed += 1
                        status.errors.append(
                            AnalysisError(url=article.url, title=article.title, error=str(e))
                        )
                        return

                    if outcome.stage is PipelineStage.ERRORED:
                        status.failed += 1
                        status.errors.append(
                            AnalysisError(
                                url=article.url,
                                title=article.title,
                                error=outcome.error_message or str(outcome.error_kind),
                            )
                        )
                    else:
                        status.completed += 1

            await asyncio.gather(*(analyze(a) for a in pending))
        finally:
            self.engine.unload_model()
            status.current_article = None
            status.status = "cancelled" if self.is_stopped else "completed"
            status.completed_at = utcnow()
            _running_runner = None

        logger.info(
            f"批量分析完成: 成功={status.completed}, "
            f"失败={status.failed}, 跳过={status.skipped}"
        )
        return status
