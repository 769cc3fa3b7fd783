"""NewsAPI 客户端."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from newsthread.errors import RateLimitedError, UpstreamNetworkError
from newsthread.models.article import Article
from newsthread.quota.guard import QuotaGuard, retry_after_until
from newsthread.utils.timeutil import parse_iso_datetime, to_iso_string, utcnow

logger = logging.getLogger(__name__)


@dataclass
class NewsApiConfig:
    """NewsAPI 连接配置."""

    api_key: str
    base_url: str = "https://newsapi.org/v2/"
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_min_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    rate_limit_default_seconds: int = 3600


class _TransientUpstreamError(Exception):
    """可重试的上游错误（网络错误、超时、5xx）."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def parse_articles(payload: dict[str, Any]) -> list[Article]:
    """解析 NewsAPI 响应，丢弃缺少标题或链接的条目."""
    articles: list[Article] = []
    for item in payload.get("articles") or []:
        title = (item.get("title") or "").strip()
        url = (item.get("url") or "").strip()
        if not title or not url:
            continue
        source = item.get("source") or {}
        articles.append(
            Article(
                url=url,
                title=title,
                source_id=source.get("id"),
                source_name=source.get("name"),
                author=item.get("author"),
                description=item.get("description"),
                content=item.get("content"),
                url_to_image=item.get("urlToImage"),
                published_at=parse_iso_datetime(item.get("publishedAt")),
            )
        )
    return articles


class NewsApiClient:
    """NewsAPI 客户端.

    每次请求前检查配额守卫；429 记录冷却时间后直接抛出，不自动重试；
    网络错误和 5xx 按指数退避重试有限次数。
    """

    def __init__(
        self,
        config: NewsApiConfig,
        guard: QuotaGuard,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.guard = guard
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def top_headlines(
        self,
        country: str = "us",
        category: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> list[Article]:
        """获取头条新闻."""
        params: dict[str, Any] = {"country": country, "page": page, "pageSize": page_size}
        if category:
            params["category"] = category
        payload = await self._get("top-headlines", params)
        return parse_articles(payload)

    async def search(
        self,
        query: str,
        language: str = "en",
        sort_by: str = "publishedAt",
        from_: datetime | None = None,
        to: datetime | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> list[Article]:
        """按关键词搜索文章（可限定时间范围）."""
        params: dict[str, Any] = {
            "q": query,
            "language": language,
            "sortBy": sort_by,
            "page": page,
            "pageSize": page_size,
        }
        if from_ is not None:
            params["from"] = to_iso_string(from_)
        if to is not None:
            params["to"] = to_iso_string(to)
        payload = await self._get("everything", params)
        return parse_articles(payload)

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if self.guard.is_rate_limited(utcnow()):
            raise RateLimitedError(self.guard.rate_limited_until)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.max_attempts),
                retry=retry_if_exception_type(_TransientUpstreamError),
                wait=wait_random_exponential(
                    min=self.config.backoff_min_seconds,
                    max=self.config.backoff_max_seconds,
                ),
                reraise=True,
            ):
                with attempt:
                    return await self._send(path, params)
        except _TransientUpstreamError as e:
            logger.warning(f"NewsAPI 请求失败（已重试）: {path} - {e}")
            raise UpstreamNetworkError(str(e), status_code=e.status_code) from e

        msg = f"NewsAPI 请求未执行: {path}"
        raise UpstreamNetworkError(msg)

    async def _send(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.get(
                path,
                params=params,
                headers={"X-Api-Key": self.config.api_key},
            )
        except httpx.HTTPError as e:
            raise _TransientUpstreamError(f"{type(e).__name__}: {e}") from e

        self._record_remaining(response)

        if response.status_code == 429:
            until = retry_after_until(
                response.headers.get("Retry-After"),
                utcnow(),
                self.config.rate_limit_default_seconds,
            )
            self.guard.record_rate_limited(until)
            raise RateLimitedError(until)

        if response.status_code >= 500:
            msg = f"NewsAPI 服务端错误: HTTP {response.status_code}"
            raise _TransientUpstreamError(msg, response.status_code)

        if response.status_code >= 400:
            msg = f"NewsAPI 请求错误: HTTP {response.status_code} {_error_message(response)}"
            raise UpstreamNetworkError(msg, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            msg = f"NewsAPI 响应不是合法 JSON: {e}"
            raise UpstreamNetworkError(msg, status_code=response.status_code) from e

        if payload.get("status") == "error":
            msg = f"NewsAPI 返回错误: {payload.get('code')} {payload.get('message')}"
            raise UpstreamNetworkError(msg, status_code=response.status_code)
        return payload

    def _record_remaining(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is None:
            return
        try:
            self.guard.record_quota_remaining(int(remaining))
        except ValueError:
            logger.debug(f"无法解析 X-RateLimit-Remaining: {remaining}")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("code") or "")
    return ""
