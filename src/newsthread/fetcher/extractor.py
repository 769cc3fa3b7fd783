"""全文提取器."""

import asyncio
import json
import logging
import re
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from enum import Enum

from trafilatura import extract
from trafilatura.settings import use_config

from newsthread.cache.store import CacheStore
from newsthread.config import get_effective_setting
from newsthread.fetcher.detector import PaywallDetector
from newsthread.fetcher.results import (
    ExtractionError,
    ExtractionResult,
    ExtractionSuccess,
    NetworkError,
    NotFetched,
    PaywallDetected,
)
from newsthread.models.article import CachedArticle
from newsthread.remote.html_fetcher import BROWSER_USER_AGENT, FetchFailure, HtmlFetcher
from newsthread.utils.network import NetworkMonitor
from newsthread.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

# 付费墙直接进入永久失败状态
PAYWALL_FAILURE_INCREMENTS = 2


class FetchPreference(str, Enum):
    """全文抓取偏好."""

    ALWAYS = "always"
    UNMETERED_ONLY = "unmetered_only"
    NEVER = "never"

    @classmethod
    def parse(cls, value: object) -> "FetchPreference":
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning(f"未知的抓取偏好 {value!r}，按 always 处理")
            return cls.ALWAYS


def _default_preference() -> FetchPreference:
    return FetchPreference.parse(get_effective_setting("article_fetch_preference"))


class TextExtractor:
    """抓取文章页面并提取正文，同时维护失败重试状态."""

    def __init__(
        self,
        store: CacheStore,
        fetcher: HtmlFetcher,
        network: NetworkMonitor,
        preference_provider: Callable[[], FetchPreference] = _default_preference,
        detector: PaywallDetector | None = None,
        min_content_length: int = 100,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.network = network
        self.preference_provider = preference_provider
        self.detector = detector or PaywallDetector()
        self.min_content_length = min_content_length
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        # 配置 trafilatura
        self._config = use_config()
        self._config.set("DEFAULT", "USER_AGENT", BROWSER_USER_AGENT)

    def shutdown(self) -> None:
        """关闭线程池."""
        self._executor.shutdown(wait=False)

    def _fetch_allowed(self) -> str | None:
        """检查抓取偏好和网络条件，不允许时返回原因."""
        preference = self.preference_provider()
        if preference is FetchPreference.NEVER:
            return "抓取偏好为 never"
        if not self.network.is_network_available():
            return "无可用网络"
        if preference is FetchPreference.UNMETERED_ONLY and not self.network.is_unmetered():
            return "当前为计费网络，抓取偏好为 unmetered_only"
        return None

    async def extract(
        self, article: CachedArticle, now: datetime | None = None
    ) -> ExtractionResult:
        """
        抓取并提取文章正文.

        永久失败和冷却中的文章不会发起网络请求。
        """
        now = now or utcnow()
        current = await self.store.get_article(article.url) or article

        if current.full_text:
            return ExtractionSuccess(text=current.full_text, title=current.title)

        if self.store.is_permanently_failed(current):
            return ExtractionError(message="文章已永久抓取失败")

        if not self.store.is_retry_eligible(current, now):
            return NotFetched(reason="重试冷却中")

        blocked = self._fetch_allowed()
        if blocked:
            return NotFetched(reason=blocked)

        outcome = await self.fetcher.fetch(current.url)
        if isinstance(outcome, FetchFailure):
            await self.store.mark_extraction_failed(current.url, now)
            logger.info(f"页面抓取失败: {current.url} ({outcome.reason}: {outcome.message})")
            return NetworkError(message=f"{outcome.reason}: {outcome.message}")

        paywall = self.detector.detect(outcome.html)
        if paywall:
            await self.store.mark_extraction_failed(
                current.url, now, increments=PAYWALL_FAILURE_INCREMENTS
            )
            logger.info(f"检测到付费墙: {current.url} ({paywall})")
            return PaywallDetected(reason=paywall)

        try:
            loop = asyncio.get_running_loop()
            parsed = await loop.run_in_executor(
                self._executor,
                self._extract_sync,
                outcome.html,
                current.url,
            )
        except Exception as e:
            await self.store.mark_extraction_failed(current.url, now)
            logger.warning(f"正文提取异常: {current.url} - {e}")
            return ExtractionError(message=str(e))

        text = parsed.get("text") or ""
        if len(text) < self.min_content_length:
            await self.store.mark_extraction_failed(current.url, now)
            return PaywallDetected(reason=f"content too short ({len(text)} chars)")

        await self.store.record_extraction_success(current.url, text)
        logger.info(f"正文提取成功: {current.url} ({len(text)} 字符)")
        return ExtractionSuccess(
            text=text,
            title=parsed.get("title") or current.title,
            byline=parsed.get("author") or current.author,
            excerpt=parsed.get("excerpt") or parsed.get("description"),
        )

    async def extract_by_url(self, url: str, now: datetime | None = None) -> ExtractionResult:
        """按 URL 抓取已缓存的文章."""
        article = await self.store.get_article(url)
        if article is None:
            return NotFetched(reason="文章未缓存")
        return await self.extract(article, now)

    async def extract_batch(
        self, limit: int = 20, concurrency: int = 4, now: datetime | None = None
    ) -> dict[str, ExtractionResult]:
        """批量抓取待提取的文章."""
        now = now or utcnow()
        pending = await self.store.articles_needing_extraction(now, limit)
        semaphore = asyncio.Semaphore(concurrency)

        async def run(article: CachedArticle) -> ExtractionResult:
            async with semaphore:
                return await self.extract(article, now)

        results = await asyncio.gather(*(run(a) for a in pending))
        return {a.url: r for a, r in zip(pending, results, strict=True)}

    def _extract_sync(self, html: str, url: str) -> dict[str, str | None]:
        """同步提取正文（trafilatura 是同步库）."""
        raw = extract(
            html,
            url=url,
            output_format="json",
            with_metadata=True,
            include_comments=False,
            include_tables=False,
            favor_precision=True,
            config=self._config,
        )
        if not raw:
            return {}
        data = json.loads(raw)
        text = data.get("text")
        if text:
            data["text"] = self._clean_text(text)
        return data

    def _clean_text(self, text: str) -> str:
        """清理纯文本内容."""
        # 移除多余空行
        text = re.sub(r"\n{3,}", "\n\n", text)
        # 移除行首尾空白
        lines = [line.strip() for line in text.split("\n")]
        text = "\n".join(lines)
        # 移除常见的无效字符
        text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)
        return text.strip()
