"""应用动态配置模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from newsthread.utils.timeutil import utcnow


class AppSettings(SQLModel, table=True):
    """应用动态配置表（单行存储）."""

    __tablename__ = "app_settings"  # type: ignore[assignment]

    id: int = Field(default=1, primary_key=True)

    # 全文抓取偏好: always | unmetered_only | never
    article_fetch_preference: str | None = Field(default=None)
    # 后台分析仅在不计流量网络下执行
    analysis_unmetered_only: bool | None = Field(default=None)

    updated_at: datetime = Field(default_factory=utcnow)

    def to_dynamic_settings(self) -> dict[str, str | int | None]:
        """转换为动态配置缓存."""
        unmetered = self.analysis_unmetered_only
        return {
            "article_fetch_preference": self.article_fetch_preference,
            "analysis_unmetered_only": None if unmetered is None else int(unmetered),
        }
