"""本地缓存模块."""

from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsthread.cache.base import EntityTable
from newsthread.cache.memory import MemoryEntityTable
from newsthread.cache.sql import SQLEntityTable
from newsthread.cache.store import CacheStore, RetentionReport
from newsthread.config import Settings
from newsthread.models.article import CachedArticle
from newsthread.models.embedding import ArticleEmbedding
from newsthread.models.feed_cache import FeedCacheMarker
from newsthread.models.match import MatchResult
from newsthread.models.quota import QuotaState
from newsthread.models.story import Story


def create_cache_store(
    backend: Literal["sql", "memory"] = "sql",
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
) -> CacheStore:
    """根据配置创建缓存存储."""
    if backend == "memory":
        return CacheStore(
            articles=MemoryEntityTable(CachedArticle, "url", exempt_field="is_tracked"),
            embeddings=MemoryEntityTable(ArticleEmbedding, "article_url"),
            match_results=MemoryEntityTable(MatchResult, "source_article_url"),
            feeds=MemoryEntityTable(FeedCacheMarker, "feed_key"),
            quota=MemoryEntityTable(QuotaState, "key", expires_field=None),
            stories=MemoryEntityTable(Story, "id", expires_field=None),
            settings=settings,
        )

    if backend == "sql":
        if session_factory is None:
            msg = "SQL 缓存需要 session_factory"
            raise ValueError(msg)
        return CacheStore(
            articles=SQLEntityTable(
                session_factory, CachedArticle, "url", exempt_field="is_tracked"
            ),
            embeddings=SQLEntityTable(session_factory, ArticleEmbedding, "article_url"),
            match_results=SQLEntityTable(session_factory, MatchResult, "source_article_url"),
            feeds=SQLEntityTable(session_factory, FeedCacheMarker, "feed_key"),
            quota=SQLEntityTable(session_factory, QuotaState, "key", expires_field=None),
            stories=SQLEntityTable(session_factory, Story, "id", expires_field=None),
            settings=settings,
        )

    msg = f"不支持的缓存后端: {backend}"
    raise ValueError(msg)


__all__ = [
    "CacheStore",
    "EntityTable",
    "MemoryEntityTable",
    "RetentionReport",
    "SQLEntityTable",
    "create_cache_store",
]
