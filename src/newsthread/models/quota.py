"""API 配额状态模型."""

from datetime import datetime

from sqlalchemy import Column, String
from sqlmodel import Field, SQLModel

NEWSAPI_QUOTA_KEY = "newsapi"


class QuotaState(SQLModel, table=True):
    """上游 API 配额状态（单行存储）."""

    __tablename__ = "quota_state"  # type: ignore[assignment]

    key: str = Field(
        default=NEWSAPI_QUOTA_KEY,
        sa_column=Column(String, primary_key=True),
    )
    rate_limited_until: datetime | None = Field(default=None, description="限流截止时间")
    quota_remaining: int = Field(default=-1, description="剩余配额，-1 表示未知")
    daily_limit: int = Field(default=100, description="每日配额")
    updated_at: datetime | None = Field(default=None)
