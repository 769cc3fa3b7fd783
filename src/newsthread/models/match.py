"""匹配结果模型."""

import json
from datetime import datetime

from sqlalchemy import Column, ForeignKey, String
from sqlmodel import Field, SQLModel


class MatchMethod:
    """匹配方式常量."""

    SEMANTIC = "semantic_similarity_v1"
    KEYWORD_FALLBACK = "keyword_fallback"


class MatchResult(SQLModel, table=True):
    """文章匹配结果（整体重算，不做局部更新）."""

    __tablename__ = "match_results"  # type: ignore[assignment]

    source_article_url: str = Field(
        sa_column=Column(
            String,
            ForeignKey("cached_articles.url", ondelete="CASCADE"),
            primary_key=True,
        ),
        description="源文章",
    )
    matched_article_urls_json: str = Field(default="[]", description="匹配文章 URL 列表 (JSON)")
    match_scores_json: str = Field(default="[]", description="对应相似度分数 (JSON)")
    match_strengths_json: str = Field(default="[]", description="对应匹配强度 (JSON)")
    match_count: int = Field(default=0, description="匹配数量")
    match_method: str = Field(default=MatchMethod.SEMANTIC, description="匹配方式")
    limited: bool = Field(default=False, description="是否因配额限制仅使用本地结果")
    computed_at: datetime = Field(description="计算时间")
    expires_at: datetime = Field(description="过期时间")

    @property
    def matched_urls(self) -> list[str]:
        return json.loads(self.matched_article_urls_json)

    @property
    def scores(self) -> list[float]:
        return json.loads(self.match_scores_json)

    @property
    def strengths(self) -> list[str]:
        return json.loads(self.match_strengths_json)

    @classmethod
    def build(
        cls,
        source_url: str,
        urls: list[str],
        scores: list[float],
        method: str,
        limited: bool,
        computed_at: datetime,
        expires_at: datetime,
        strengths: list[str] | None = None,
    ) -> "MatchResult":
        """根据有序的匹配列表创建结果（强度在计算时确定，读取时不再重新分类）."""
        return cls(
            source_article_url=source_url,
            matched_article_urls_json=json.dumps(urls),
            match_scores_json=json.dumps(scores),
            match_strengths_json=json.dumps(strengths or []),
            match_count=len(urls),
            match_method=method,
            limited=limited,
            computed_at=computed_at,
            expires_at=expires_at,
        )
