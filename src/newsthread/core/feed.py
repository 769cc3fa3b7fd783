"""离线优先的新闻 Feed."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime

from newsthread.cache.store import CacheStore
from newsthread.config import Settings, get_settings
from newsthread.errors import NewsThreadError, UpstreamNetworkError
from newsthread.models.article import Article, CachedArticle
from newsthread.models.feed_cache import headlines_feed_key, search_feed_key
from newsthread.remote.newsapi import NewsApiClient
from newsthread.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class FeedService:
    """先返回缓存，再按需刷新；有缓存时刷新失败不向调用方报错."""

    def __init__(
        self,
        store: CacheStore,
        newsapi: NewsApiClient | None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.newsapi = newsapi
        self.settings = settings or get_settings()

    async def top_headlines(
        self,
        country: str | None = None,
        category: str | None = None,
        force_refresh: bool = False,
        now: datetime | None = None,
    ) -> AsyncIterator[list[Article]]:
        """头条新闻."""
        country = country or self.settings.newsapi_default_country
        client = self.newsapi

        async def fetch() -> list[Article]:
            assert client is not None
            return await client.top_headlines(
                country, category, page_size=self.settings.newsapi_page_size
            )

        async for batch in self._offline_first(
            headlines_feed_key(country, category),
            lambda a: True,
            fetch,
            force_refresh,
            now or utcnow(),
        ):
            yield batch

    async def search(
        self,
        query: str,
        language: str = "en",
        sort_by: str = "publishedAt",
        force_refresh: bool = False,
        now: datetime | None = None,
    ) -> AsyncIterator[list[Article]]:
        """关键词搜索."""
        terms = [t.lower() for t in query.split() if t.strip()]
        client = self.newsapi

        def matches(article: CachedArticle) -> bool:
            haystack = f"{article.title} {article.description or ''}".lower()
            return any(t in haystack for t in terms)

        async def fetch() -> list[Article]:
            assert client is not None
            return await client.search(
                query,
                language=language,
                sort_by=sort_by,
                page_size=self.settings.newsapi_page_size,
            )

        async for batch in self._offline_first(
            search_feed_key(query, language, sort_by),
            matches,
            fetch,
            force_refresh,
            now or utcnow(),
        ):
            yield batch

    async def _offline_first(
        self,
        feed_key: str,
        predicate: Callable[[CachedArticle], bool],
        fetch: Callable[[], Awaitable[list[Article]]],
        force_refresh: bool,
        now: datetime,
    ) -> AsyncIterator[list[Article]]:
        cached = await self._cached(predicate)
        if cached:
            yield cached

        if not force_refresh and not await self.store.is_feed_stale(feed_key, now):
            return

        if self.newsapi is None:
            if cached:
                return
            msg = "未配置 NewsAPI，且没有缓存数据"
            raise UpstreamNetworkError(msg)

        try:
            fresh = await fetch()
        except NewsThreadError as e:
            if cached:
                logger.warning(f"Feed 刷新失败，继续使用缓存: {feed_key} - {e}")
                return
            raise

        await self.store.upsert_articles(fresh, now)
        await self.store.touch_feed(feed_key, len(fresh), now)
        logger.info(f"Feed 已刷新: {feed_key} ({len(fresh)} 篇)")
        yield fresh

    async def _cached(self, predicate: Callable[[CachedArticle], bool]) -> list[Article]:
        rows = [a for a in await self.store.articles.get_all() if predicate(a)]
        rows.sort(key=lambda a: a.published_at or datetime.min, reverse=True)
        return [a.to_article() for a in rows]
