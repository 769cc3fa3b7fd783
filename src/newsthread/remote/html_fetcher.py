"""文章 HTML 抓取."""

import logging
from typing import Literal

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# 模拟浏览器的 User-Agent 以规避简单的 403
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

FailureReason = Literal[
    "not_found", "forbidden", "rate_limited", "timeout", "http_error", "network"
]


class FetchedHtml(BaseModel):
    """抓取成功."""

    url: str
    html: str
    status_code: int = 200


class FetchFailure(BaseModel):
    """抓取失败."""

    url: str
    reason: FailureReason
    message: str
    status_code: int | None = None


FetchOutcome = FetchedHtml | FetchFailure


class HtmlFetcher:
    """抓取文章页面 HTML，所有错误都转换为 FetchFailure，不抛出异常."""

    def __init__(
        self,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            headers={
                "User-Agent": BROWSER_USER_AGENT,
                "Accept": "text/html,application/xhtml+xml",
            },
        )

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def fetch(self, url: str) -> FetchOutcome:
        """抓取指定 URL 的 HTML."""
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            return FetchFailure(url=url, reason="timeout", message=f"请求超时: {e}")
        except httpx.HTTPError as e:
            return FetchFailure(url=url, reason="network", message=f"网络错误: {e}")

        status = response.status_code
        if status == 404:
            return FetchFailure(url=url, reason="not_found", message="页面不存在", status_code=status)
        if status in (401, 403):
            return FetchFailure(url=url, reason="forbidden", message="访问被拒绝", status_code=status)
        if status == 429:
            return FetchFailure(url=url, reason="rate_limited", message="请求过于频繁", status_code=status)
        if status >= 400:
            return FetchFailure(
                url=url, reason="http_error", message=f"HTTP {status}", status_code=status
            )

        logger.debug(f"已抓取页面: {url} ({len(response.text)} 字符)")
        return FetchedHtml(url=url, html=response.text, status_code=status)
