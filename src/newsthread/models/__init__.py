"""数据模型."""

from newsthread.models.app_settings import AppSettings
from newsthread.models.article import Article, CachedArticle
from newsthread.models.embedding import ArticleEmbedding
from newsthread.models.feed_cache import FeedCacheMarker
from newsthread.models.match import MatchMethod, MatchResult
from newsthread.models.quota import QuotaState
from newsthread.models.source_rating import SourceRating
from newsthread.models.story import Story

__all__ = [
    "AppSettings",
    "Article",
    "ArticleEmbedding",
    "CachedArticle",
    "FeedCacheMarker",
    "MatchMethod",
    "MatchResult",
    "QuotaState",
    "SourceRating",
    "Story",
]
