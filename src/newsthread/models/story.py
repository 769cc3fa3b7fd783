"""追踪故事模型."""

from datetime import datetime

from sqlalchemy import Column, String
from sqlmodel import Field, SQLModel


class Story(SQLModel, table=True):
    """用户关注的新闻故事（文章通过 story_id 关联）."""

    __tablename__ = "stories"  # type: ignore[assignment]

    id: str = Field(sa_column=Column(String, primary_key=True), description="故事 ID")
    title: str = Field(description="故事标题（取自关注时的文章）")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="最近加入文章的时间")
