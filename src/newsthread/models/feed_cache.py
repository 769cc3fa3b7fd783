"""Feed 缓存标记模型."""

from datetime import datetime

from sqlalchemy import Column, String
from sqlmodel import Field, SQLModel


def headlines_feed_key(country: str, category: str | None) -> str:
    """头条 Feed 的缓存键."""
    return f"top_headlines_{country}_{category or 'all'}"


def search_feed_key(query: str, language: str, sort_by: str) -> str:
    """搜索 Feed 的缓存键."""
    return f"search_{query}_{language}_{sort_by}"


class FeedCacheMarker(SQLModel, table=True):
    """Feed 缓存时间标记（仅用于判断是否过期）."""

    __tablename__ = "feed_cache"  # type: ignore[assignment]

    feed_key: str = Field(sa_column=Column(String, primary_key=True), description="Feed 缓存键")
    fetched_at: datetime = Field(description="上次刷新时间")
    expires_at: datetime = Field(description="过期时间")
    article_count: int = Field(default=0, description="文章数量")
