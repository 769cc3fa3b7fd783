"""缓存存储：聚合文章、嵌入、匹配结果、Feed 标记和配额状态."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from newsthread.cache.base import EntityTable
from newsthread.config import Settings, get_settings
from newsthread.models.article import Article, CachedArticle
from newsthread.models.embedding import ArticleEmbedding
from newsthread.models.feed_cache import FeedCacheMarker
from newsthread.models.match import MatchResult
from newsthread.models.quota import NEWSAPI_QUOTA_KEY, QuotaState
from newsthread.models.story import Story

logger = logging.getLogger(__name__)


@dataclass
class RetentionReport:
    """一次过期清理的统计."""

    feeds: int = 0
    match_results: int = 0
    embeddings: int = 0
    articles: int = 0
    evicted: int = 0

    @property
    def total(self) -> int:
        return self.feeds + self.match_results + self.embeddings + self.articles + self.evicted


class CacheStore:
    """持久化缓存，所有组件通过它读写本地数据."""

    def __init__(
        self,
        articles: EntityTable[CachedArticle],
        embeddings: EntityTable[ArticleEmbedding],
        match_results: EntityTable[MatchResult],
        feeds: EntityTable[FeedCacheMarker],
        quota: EntityTable[QuotaState],
        stories: EntityTable[Story],
        settings: Settings | None = None,
    ) -> None:
        self.articles = articles
        self.embeddings = embeddings
        self.match_results = match_results
        self.feeds = feeds
        self.quota = quota
        self.stories = stories
        self.settings = settings or get_settings()

        # 删除文章时级联删除嵌入和匹配结果
        self.articles.add_cascade(self.embeddings)
        self.articles.add_cascade(self.match_results)

    # ---- TTL ----

    @property
    def article_retention(self) -> timedelta:
        return timedelta(days=self.settings.article_retention_days)

    @property
    def embedding_validity(self) -> timedelta:
        return timedelta(days=self.settings.embedding_ttl_days)

    @property
    def embedding_retention(self) -> timedelta:
        return timedelta(days=self.settings.embedding_retention_days)

    @property
    def match_result_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.match_result_ttl_hours)

    @property
    def feed_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.feed_ttl_hours)

    @property
    def retry_cooldown(self) -> timedelta:
        return timedelta(minutes=self.settings.extraction_retry_cooldown_minutes)

    # ---- 文章 ----

    async def get_article(self, url: str) -> CachedArticle | None:
        return await self.articles.get(url)

    async def get_articles(self, urls: list[str]) -> list[CachedArticle]:
        return await self.articles.get_many(urls)

    async def upsert_article(
        self, article: Article, now: datetime, refresh_retention: bool = True
    ) -> CachedArticle:
        """写入上游文章，保留已有的全文、抓取失败状态和追踪信息."""
        return (await self.upsert_articles([article], now, refresh_retention))[0]

    async def upsert_articles(
        self, articles: list[Article], now: datetime, refresh_retention: bool = True
    ) -> list[CachedArticle]:
        """
        批量写入上游文章.

        refresh_retention 为 False 时已缓存的文章保留原有的缓存时间和过期时间，
        只有从上游重新获取时才延长保留期。
        """
        existing = {a.url: a for a in await self.articles.get_many(a.url for a in articles)}
        rows: list[CachedArticle] = []
        for article in articles:
            fresh = CachedArticle.from_article(article, now, self.article_retention)
            current = existing.get(article.url)
            if current is not None:
                fresh.full_text = current.full_text
                fresh.extraction_failed_at = current.extraction_failed_at
                fresh.extraction_retry_count = current.extraction_retry_count
                fresh.is_tracked = current.is_tracked
                fresh.story_id = current.story_id
                fresh.is_novel = current.is_novel
                fresh.has_new_perspective = current.has_new_perspective
                if not refresh_retention:
                    fresh.fetched_at = current.fetched_at
                    fresh.expires_at = current.expires_at
            rows.append(fresh)
        await self.articles.put_many(rows)
        return rows

    async def mark_extraction_failed(
        self, url: str, now: datetime, increments: int = 1
    ) -> CachedArticle | None:
        """记录一次抓取失败（付费墙一次记两次）."""
        article = await self.articles.get(url)
        if article is None:
            return None
        article.extraction_failed_at = now
        article.extraction_retry_count += increments
        await self.articles.put(article)
        logger.debug(
            f"抓取失败计数: {url} -> {article.extraction_retry_count}"
        )
        return article

    async def record_extraction_success(self, url: str, text: str) -> CachedArticle | None:
        """保存全文并清除失败状态."""
        article = await self.articles.get(url)
        if article is None:
            return None
        article.full_text = text
        article.extraction_failed_at = None
        article.extraction_retry_count = 0
        await self.articles.put(article)
        return article

    def is_permanently_failed(self, article: CachedArticle) -> bool:
        return article.extraction_retry_count >= 2

    def is_retry_eligible(self, article: CachedArticle, now: datetime) -> bool:
        """失败一次的文章在冷却期结束后才能重试."""
        if article.extraction_retry_count == 0:
            return True
        if self.is_permanently_failed(article):
            return False
        if article.extraction_failed_at is None:
            return True
        return now - article.extraction_failed_at > self.retry_cooldown

    async def articles_needing_extraction(
        self, now: datetime, limit: int | None = None
    ) -> list[CachedArticle]:
        """获取需要抓取全文的文章（新发布的优先）."""
        candidates = [
            a
            for a in await self.articles.get_all()
            if a.full_text is None and self.is_retry_eligible(a, now)
        ]
        candidates.sort(key=lambda a: a.published_at or datetime.min, reverse=True)
        return candidates[:limit] if limit else candidates

    async def set_tracked(self, url: str, tracked: bool) -> bool:
        """设置追踪标记，追踪中的文章不会被过期清理."""
        article = await self.articles.get(url)
        if article is None:
            return False
        article.is_tracked = tracked
        if not tracked:
            # 取消追踪的文章同时移出所属故事
            article.story_id = None
        await self.articles.put(article)
        return True

    async def delete_article(self, url: str) -> bool:
        return await self.articles.delete(url)

    # ---- 嵌入 ----

    async def put_embedding(self, embedding: ArticleEmbedding) -> None:
        await self.embeddings.put(embedding)

    async def get_embedding(self, url: str) -> ArticleEmbedding | None:
        return await self.embeddings.get(url)

    def is_embedding_valid(
        self, embedding: ArticleEmbedding, model_version: str, now: datetime
    ) -> bool:
        return embedding.embedding_model == model_version and embedding.expires_at > now

    async def get_valid_embedding(
        self, url: str, model_version: str, now: datetime
    ) -> ArticleEmbedding | None:
        """获取当前模型版本且未过期的嵌入."""
        embedding = await self.embeddings.get(url)
        if embedding is None or not self.is_embedding_valid(embedding, model_version, now):
            return None
        return embedding

    async def get_valid_embeddings(
        self, urls: list[str], model_version: str, now: datetime
    ) -> dict[str, ArticleEmbedding]:
        return {
            e.article_url: e
            for e in await self.embeddings.get_many(urls)
            if self.is_embedding_valid(e, model_version, now)
        }

    # ---- 匹配结果 ----

    async def save_match_result(self, result: MatchResult) -> None:
        await self.match_results.put(result)

    async def get_match_result(self, url: str) -> MatchResult | None:
        """获取匹配结果（可能已过期）."""
        return await self.match_results.get(url)

    async def get_valid_match_result(self, url: str, now: datetime) -> MatchResult | None:
        result = await self.match_results.get(url)
        if result is None or result.expires_at <= now:
            return None
        return result

    # ---- Feed 标记 ----

    async def is_feed_stale(self, feed_key: str, now: datetime) -> bool:
        marker = await self.feeds.get(feed_key)
        return marker is None or marker.expires_at <= now

    async def touch_feed(self, feed_key: str, article_count: int, now: datetime) -> None:
        """记录 Feed 刷新时间."""
        await self.feeds.put(
            FeedCacheMarker(
                feed_key=feed_key,
                fetched_at=now,
                expires_at=now + self.feed_ttl,
                article_count=article_count,
            )
        )

    # ---- 配额 ----

    async def get_quota_state(self) -> QuotaState | None:
        return await self.quota.get(NEWSAPI_QUOTA_KEY)

    async def put_quota_state(self, state: QuotaState) -> None:
        await self.quota.put(state)

    # ---- 追踪故事 ----

    async def put_story(self, story: Story) -> None:
        await self.stories.put(story)

    async def get_story(self, story_id: str) -> Story | None:
        return await self.stories.get(story_id)

    async def get_stories(self) -> list[Story]:
        """获取所有故事（最近更新的在前）."""
        stories = await self.stories.get_all()
        stories.sort(key=lambda s: s.updated_at, reverse=True)
        return stories

    async def count_stories(self) -> int:
        return len(await self.stories.get_all())

    async def story_articles(self, story_id: str) -> list[CachedArticle]:
        """获取故事下的文章（按发布时间倒序）."""
        articles = [a for a in await self.articles.get_all() if a.story_id == story_id]
        articles.sort(key=lambda a: a.published_at or datetime.min, reverse=True)
        return articles

    async def assign_to_story(
        self,
        url: str,
        story_id: str,
        is_novel: bool = False,
        has_new_perspective: bool = False,
    ) -> CachedArticle | None:
        """将文章加入故事，加入后的文章不参与过期清理."""
        article = await self.articles.get(url)
        if article is None:
            return None
        article.story_id = story_id
        article.is_tracked = True
        article.is_novel = is_novel
        article.has_new_perspective = has_new_perspective
        await self.articles.put(article)
        return article

    async def delete_story(self, story_id: str) -> bool:
        """删除故事并解除其文章的追踪."""
        released = [a for a in await self.articles.get_all() if a.story_id == story_id]
        for article in released:
            article.story_id = None
            article.is_tracked = False
            article.is_novel = False
            article.has_new_perspective = False
        await self.articles.put_many(released)
        return await self.stories.delete(story_id)

    # ---- 过期清理 ----

    async def sweep(self, now: datetime) -> RetentionReport:
        """按各类 TTL 清理过期数据."""
        report = RetentionReport()
        report.feeds = await self.feeds.delete_expired(now)
        report.match_results = await self.match_results.delete_expired(now)

        # expires_at = computed_at + 有效期，保留期更长时向前平移截止时间
        embedding_cutoff = now - (self.embedding_retention - self.embedding_validity)
        report.embeddings = await self.embeddings.delete_expired(embedding_cutoff)

        report.articles = await self.articles.delete_expired(now)
        report.evicted = await self._evict_over_capacity()

        if report.total:
            logger.info(
                f"缓存清理完成: feeds={report.feeds}, matches={report.match_results}, "
                f"embeddings={report.embeddings}, articles={report.articles}, "
                f"evicted={report.evicted}"
            )
        return report

    async def _evict_over_capacity(self) -> int:
        """超出容量上限时按缓存时间从旧到新淘汰（追踪文章除外）."""
        limit = self.settings.max_cached_articles
        if limit <= 0:
            return 0
        rows = await self.articles.get_all()
        excess = len(rows) - limit
        if excess <= 0:
            return 0
        untracked = sorted((a for a in rows if not a.is_tracked), key=lambda a: a.fetched_at)
        return await self.articles.delete_many(a.url for a in untracked[:excess])
