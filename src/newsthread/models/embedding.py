"""文章嵌入模型."""

from datetime import datetime

from sqlalchemy import Column, ForeignKey, String
from sqlmodel import Field, SQLModel


class ArticleEmbedding(SQLModel, table=True):
    """文章嵌入向量（小端 float32 字节）."""

    __tablename__ = "article_embeddings"  # type: ignore[assignment]

    article_url: str = Field(
        sa_column=Column(
            String,
            ForeignKey("cached_articles.url", ondelete="CASCADE"),
            primary_key=True,
        ),
        description="关联文章",
    )
    embedding: bytes = Field(description="L2 归一化后的向量字节")
    embedding_model: str = Field(description="模型标识及版本")
    dimensions: int = Field(description="向量维度")
    computed_at: datetime = Field(description="计算时间")
    expires_at: datetime = Field(description="有效期截止时间")
