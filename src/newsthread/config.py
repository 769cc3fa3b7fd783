"""应用配置管理."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

FetchPreference = Literal["always", "unmetered_only", "never"]


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 应用配置
    database_url: str = "sqlite+aiosqlite:///./newsthread.db"
    cache_backend: Literal["sql", "memory"] = "sql"

    # NewsAPI 配置
    newsapi_key: str = ""
    newsapi_base_url: str = "https://newsapi.org/v2/"
    newsapi_timeout_seconds: int = 30
    newsapi_max_attempts: int = 3
    newsapi_page_size: int = 20
    newsapi_default_country: str = "us"
    rate_limit_default_seconds: int = 3600
    quota_daily_limit: int = 100

    # 缓存 TTL 配置
    feed_ttl_hours: int = 3
    match_result_ttl_hours: int = 24
    embedding_ttl_days: int = 7
    article_retention_days: int = 30
    embedding_retention_days: int = 14
    max_cached_articles: int = 0  # 0 表示不限制

    # 全文抓取配置
    article_fetch_preference: FetchPreference = "always"
    fetch_timeout_seconds: int = 15
    fetch_concurrency: int = 4
    extraction_retry_cooldown_minutes: int = 5
    min_content_length: int = 100

    # 嵌入模型配置
    embedding_model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_model_version: int = 1
    embedding_dimensions: int = 384
    embedding_max_chars: int = 1000
    embedding_max_seq_length: int = 128

    # 匹配配置
    strong_match_threshold: float = 0.70
    weak_match_threshold: float = 0.50
    min_matches_before_weak: int = 3
    min_local_matches: int = 3
    cluster_bucket_size: int = 5
    keyword_match_threshold: float = 0.10

    # 后台任务配置
    analysis_enabled: bool = True
    analysis_interval_minutes: int = 15
    analysis_batch_size: int = 20
    analysis_concurrency: int = 2
    analysis_unmetered_only: bool = False
    retention_interval_hours: int = 24

    # 故事追踪配置
    story_tracking_enabled: bool = True
    story_update_interval_hours: int = 2
    max_tracked_stories: int = 1000
    story_novelty_threshold: float = 0.85
    story_candidate_window_hours: int = 24


# 动态配置缓存
_dynamic_settings: dict[str, str | int | None] | None = None


def set_dynamic_settings(settings_dict: dict[str, str | int | None]) -> None:
    """设置动态配置缓存."""
    global _dynamic_settings
    _dynamic_settings = settings_dict


def clear_dynamic_settings() -> None:
    """清除动态配置缓存."""
    global _dynamic_settings
    _dynamic_settings = None


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()


def get_effective_setting(key: str) -> str | int | None:
    """获取有效配置值（动态配置优先）."""
    # 优先使用动态配置
    if _dynamic_settings and key in _dynamic_settings:
        value = _dynamic_settings.get(key)
        if value is not None:
            return value

    # fallback 到环境变量配置
    settings = get_settings()
    return getattr(settings, key, None)
