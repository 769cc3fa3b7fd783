"""文章模型."""

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Column, String
from sqlmodel import Field, SQLModel


class Article(BaseModel):
    """上游返回的文章记录（不可变）."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: str
    source_id: str | None = None
    source_name: str | None = None
    author: str | None = None
    description: str | None = None
    content: str | None = None  # 上游截断的摘要，不视为全文
    url_to_image: str | None = None
    published_at: datetime | None = None


class CachedArticle(SQLModel, table=True):
    """缓存的文章（含全文抓取状态）."""

    __tablename__ = "cached_articles"  # type: ignore[assignment]

    url: str = Field(sa_column=Column(String, primary_key=True), description="文章链接")
    source_id: str | None = Field(default=None, description="来源 ID")
    source_name: str | None = Field(default=None, description="来源名称")
    author: str | None = Field(default=None, description="作者")
    title: str = Field(description="标题")
    description: str | None = Field(default=None, description="摘要")
    url_to_image: str | None = Field(default=None, description="配图链接")
    published_at: datetime | None = Field(default=None, description="发布时间")
    content: str | None = Field(default=None, description="上游截断内容")
    full_text: str | None = Field(default=None, description="抓取的全文")
    fetched_at: datetime = Field(description="缓存时间")
    expires_at: datetime = Field(description="过期时间")
    extraction_failed_at: datetime | None = Field(
        default=None, description="最近一次抓取失败时间"
    )
    extraction_retry_count: int = Field(
        default=0, description="抓取失败次数: 0=未尝试或成功, 1=可冷却后重试, >=2=永久失败"
    )
    is_tracked: bool = Field(default=False, description="是否被追踪（不参与过期清理）")
    story_id: str | None = Field(default=None, index=True, description="所属追踪故事")
    is_novel: bool = Field(default=False, description="加入故事时是否带来新内容")
    has_new_perspective: bool = Field(
        default=False, description="加入故事时是否带来新的偏向视角"
    )

    @classmethod
    def from_article(
        cls, article: Article, now: datetime, retention: timedelta
    ) -> "CachedArticle":
        """从上游文章创建缓存记录."""
        return cls(
            url=article.url,
            source_id=article.source_id,
            source_name=article.source_name,
            author=article.author,
            title=article.title,
            description=article.description,
            url_to_image=article.url_to_image,
            published_at=article.published_at,
            content=article.content,
            fetched_at=now,
            expires_at=now + retention,
        )

    def to_article(self) -> Article:
        """转换为不可变文章记录."""
        return Article(
            url=self.url,
            title=self.title,
            source_id=self.source_id,
            source_name=self.source_name,
            author=self.author,
            description=self.description,
            content=self.content,
            url_to_image=self.url_to_image,
            published_at=self.published_at,
        )

    def fallback_text(self) -> str:
        """全文不可用时用于嵌入的文本（标题 + 摘要 + 截断内容）."""
        parts = [self.title, self.description or "", self.content or ""]
        return "\n".join(p.strip() for p in parts if p and p.strip())
