"""服务组装."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsthread.cache import CacheStore, create_cache_store
from newsthread.config import Settings
from newsthread.core.feed import FeedService
from newsthread.core.orchestrator import MatchOrchestrator
from newsthread.core.ratings import SourceRatingProvider, StaticSourceRatings
from newsthread.core.tracking import StoryTracker
from newsthread.fetcher.extractor import TextExtractor
from newsthread.ml.engine import EmbeddingEngine
from newsthread.quota.guard import QuotaGuard
from newsthread.remote.html_fetcher import HtmlFetcher
from newsthread.remote.newsapi import NewsApiClient, NewsApiConfig
from newsthread.scheduler.constraints import ExecutionConstraints, NetworkConstraints
from newsthread.utils.network import NetworkMonitor, StaticNetworkMonitor

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """应用内共享的组件（显式传递，不使用模块级单例）."""

    settings: Settings
    store: CacheStore
    guard: QuotaGuard
    network: NetworkMonitor
    fetcher: HtmlFetcher
    extractor: TextExtractor
    engine: EmbeddingEngine
    ratings: SourceRatingProvider
    orchestrator: MatchOrchestrator
    tracker: StoryTracker
    feed: FeedService
    constraints: ExecutionConstraints
    newsapi: NewsApiClient | None = None

    async def close(self) -> None:
        """释放网络连接和线程池."""
        await self.guard.flush()
        if self.newsapi is not None:
            await self.newsapi.close()
        await self.fetcher.close()
        self.extractor.shutdown()
        self.engine.unload_model()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    network: NetworkMonitor | None = None,
    ratings: SourceRatingProvider | None = None,
    engine: EmbeddingEngine | None = None,
    newsapi: NewsApiClient | None = None,
    fetcher: HtmlFetcher | None = None,
) -> Services:
    """根据配置组装所有组件."""
    store = create_cache_store(settings.cache_backend, session_factory, settings)
    guard = QuotaGuard(store, daily_limit=settings.quota_daily_limit)
    network = network or StaticNetworkMonitor()

    if newsapi is None and settings.newsapi_key:
        newsapi = NewsApiClient(
            NewsApiConfig(
                api_key=settings.newsapi_key,
                base_url=settings.newsapi_base_url,
                timeout_seconds=settings.newsapi_timeout_seconds,
                max_attempts=settings.newsapi_max_attempts,
                rate_limit_default_seconds=settings.rate_limit_default_seconds,
            ),
            guard,
        )
    if newsapi is None:
        logger.warning("未配置 NEWSAPI_KEY，仅使用本地缓存匹配")

    fetcher = fetcher or HtmlFetcher(timeout_seconds=settings.fetch_timeout_seconds)
    extractor = TextExtractor(
        store,
        fetcher,
        network,
        min_content_length=settings.min_content_length,
        max_workers=settings.fetch_concurrency,
    )
    engine = engine or EmbeddingEngine(
        model_name=settings.embedding_model_name,
        version=settings.embedding_model_version,
        dimensions=settings.embedding_dimensions,
        max_chars=settings.embedding_max_chars,
        max_seq_length=settings.embedding_max_seq_length,
    )
    ratings = ratings or StaticSourceRatings()
    orchestrator = MatchOrchestrator(
        store=store,
        extractor=extractor,
        engine=engine,
        guard=guard,
        ratings=ratings,
        newsapi=newsapi,
        settings=settings,
    )
    return Services(
        settings=settings,
        store=store,
        guard=guard,
        network=network,
        fetcher=fetcher,
        extractor=extractor,
        engine=engine,
        ratings=ratings,
        orchestrator=orchestrator,
        tracker=StoryTracker(store, engine, ratings, settings=settings),
        feed=FeedService(store, newsapi, settings),
        constraints=NetworkConstraints(network, settings.analysis_unmetered_only),
        newsapi=newsapi,
    )


# 当前应用使用的服务
_services: Services | None = None


def set_services(services: Services | None) -> None:
    """设置当前服务."""
    global _services
    _services = services


def get_services() -> Services:
    """获取当前服务（用于依赖注入）."""
    if _services is None:
        msg = "服务未初始化"
        raise RuntimeError(msg)
    return _services
