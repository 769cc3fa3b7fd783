"""多视角匹配流水线."""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from enum import Enum

import numpy as np
from pydantic import BaseModel

from newsthread.cache.store import CacheStore
from newsthread.config import Settings, get_settings
from newsthread.core.clustering import BiasClusterer, PerspectiveClusters
from newsthread.core.keywords import build_search_query, keyword_matches
from newsthread.core.ratings import SourceRatingProvider
from newsthread.core.similarity import Candidate, MatchStrength, ScoredMatch, SimilarityMatcher
from newsthread.errors import (
    EmbeddingError,
    ErrorKind,
    NewsThreadError,
    PipelineCancelledError,
    RateLimitedError,
    UpstreamNetworkError,
)
from newsthread.fetcher.extractor import TextExtractor
from newsthread.fetcher.results import ExtractionSuccess, error_kind_of
from newsthread.ml.engine import EmbeddingEngine
from newsthread.models.article import Article, CachedArticle
from newsthread.models.match import MatchMethod, MatchResult
from newsthread.quota.guard import QuotaGuard
from newsthread.remote.newsapi import NewsApiClient
from newsthread.utils.timeutil import utcnow
from newsthread.utils.vectors import bytes_to_vector

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """流水线阶段."""

    NOT_STARTED = "not_started"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    MATCHING = "matching"
    CLUSTERING = "clustering"
    CACHED = "cached"
    ERRORED = "errored"


class ComparisonOutcome(BaseModel):
    """一次多视角对比的结果."""

    source: Article
    stage: PipelineStage
    clusters: PerspectiveClusters | None = None
    match_method: str | None = None
    limited: bool = False  # 未能访问上游，仅包含本地结果
    stale: bool = False  # 刷新失败，返回过期的缓存结果
    from_cache: bool = False
    extraction: str | None = None  # 本次抓取失败的类别
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    computed_at: datetime | None = None


class MatchOrchestrator:
    """串联抓取、嵌入、匹配、聚类各阶段.

    每个阶段完成后的数据都已写入缓存，重新执行时会跳过已完成的阶段；
    取消信号只在阶段之间检查。
    """

    STAGE_HISTORY_LIMIT = 1000

    def __init__(
        self,
        store: CacheStore,
        extractor: TextExtractor,
        engine: EmbeddingEngine,
        guard: QuotaGuard,
        ratings: SourceRatingProvider,
        newsapi: NewsApiClient | None = None,
        matcher: SimilarityMatcher | None = None,
        clusterer: BiasClusterer | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.extractor = extractor
        self.engine = engine
        self.guard = guard
        self.ratings = ratings
        self.newsapi = newsapi
        self.matcher = matcher or SimilarityMatcher(
            strong_threshold=self.settings.strong_match_threshold,
            weak_threshold=self.settings.weak_match_threshold,
            min_matches_before_weak=self.settings.min_matches_before_weak,
        )
        self.clusterer = clusterer or BiasClusterer(self.settings.cluster_bucket_size)
        self._stages: OrderedDict[str, PipelineStage] = OrderedDict()

    def stage_of(self, url: str) -> PipelineStage:
        """获取文章当前所处阶段."""
        return self._stages.get(url, PipelineStage.NOT_STARTED)

    def _set_stage(self, url: str, stage: PipelineStage) -> None:
        """记录阶段，只保留最近的 STAGE_HISTORY_LIMIT 篇文章."""
        self._stages[url] = stage
        self._stages.move_to_end(url)
        while len(self._stages) > self.STAGE_HISTORY_LIMIT:
            self._stages.popitem(last=False)

    def _enter(
        self, url: str, stage: PipelineStage, cancel_event: asyncio.Event | None
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"流水线已取消: {url} (进入 {stage.value} 前)")
            raise PipelineCancelledError(url, stage.value)
        self._set_stage(url, stage)

    async def compare(
        self,
        article: Article,
        cancel_event: asyncio.Event | None = None,
        now: datetime | None = None,
    ) -> ComparisonOutcome:
        """为文章查找不同偏向媒体的相同报道."""
        now = now or utcnow()
        url = article.url
        self._set_stage(url, PipelineStage.NOT_STARTED)

        # 重新分析不延长已缓存文章的保留期
        cached = await self.store.upsert_article(article, now, refresh_retention=False)

        existing = await self.store.get_valid_match_result(url, now)
        if existing is not None:
            logger.debug(f"命中匹配缓存: {url}")
            self._set_stage(url, PipelineStage.CACHED)
            return await self._outcome_from_result(cached.to_article(), existing, from_cache=True)

        try:
            return await self._run(cached, cancel_event, now)
        except PipelineCancelledError:
            raise
        except NewsThreadError as e:
            stale = await self.store.get_match_result(url)
            if stale is not None:
                logger.warning(f"匹配刷新失败，返回过期结果: {url} - {e}")
                self._set_stage(url, PipelineStage.CACHED)
                return await self._outcome_from_result(
                    cached.to_article(), stale, from_cache=True, stale=True
                )
            logger.error(f"匹配失败: {url} - {e}")
            self._set_stage(url, PipelineStage.ERRORED)
            return ComparisonOutcome(
                source=cached.to_article(),
                stage=PipelineStage.ERRORED,
                error_kind=e.kind,
                error_message=str(e),
            )

    async def _run(
        self, cached: CachedArticle, cancel_event: asyncio.Event | None, now: datetime
    ) -> ComparisonOutcome:
        url = cached.url
        source = cached.to_article()

        # 阶段 1：全文抓取
        self._enter(url, PipelineStage.EXTRACTING, cancel_event)
        text, extraction_failure = await self._source_text(cached, now)

        # 阶段 2：嵌入
        self._enter(url, PipelineStage.EMBEDDING, cancel_event)
        vector = await self._source_embedding(url, text, now)

        # 阶段 3：匹配
        self._enter(url, PipelineStage.MATCHING, cancel_event)
        if vector is not None:
            matches, limited = await self._semantic_matches(cached, vector, now)
            method = MatchMethod.SEMANTIC
        else:
            matches, limited = await self._keyword_matches(cached, now)
            method = MatchMethod.KEYWORD_FALLBACK

        result = MatchResult.build(
            source_url=url,
            urls=[m.url for m in matches],
            scores=[round(m.score, 6) for m in matches],
            strengths=[m.strength.value for m in matches],
            method=method,
            limited=limited,
            computed_at=now,
            expires_at=now + timedelta(hours=self.settings.match_result_ttl_hours),
        )
        await self.store.save_match_result(result)
        logger.info(
            f"匹配完成: {url} -> {len(matches)} 篇 (方式={method}, 受限={limited})"
        )

        # 阶段 4：聚类
        self._enter(url, PipelineStage.CLUSTERING, cancel_event)
        clusters = await self._cluster(source, matches)

        self._set_stage(url, PipelineStage.CACHED)
        return ComparisonOutcome(
            source=source,
            stage=PipelineStage.CACHED,
            clusters=clusters,
            match_method=method,
            limited=limited,
            extraction=extraction_failure,
            computed_at=now,
        )

    async def _source_text(
        self, cached: CachedArticle, now: datetime
    ) -> tuple[str, str | None]:
        """获取用于嵌入的文本，抓取失败时使用标题和摘要."""
        if cached.full_text:
            return cached.full_text, None

        result = await self.extractor.extract(cached, now)
        match result:
            case ExtractionSuccess(text=text):
                return text, None
            case _:
                kind = error_kind_of(result)
                logger.info(f"全文不可用，使用摘要: {cached.url} ({kind})")
                return cached.fallback_text(), kind.value if kind else None

    async def _source_embedding(self, url: str, text: str, now: datetime) -> np.ndarray | None:
        """复用当前模型版本的有效嵌入，否则重新生成；模型不可用时返回 None."""
        version = self.engine.model_version()
        existing = await self.store.get_valid_embedding(url, version, now)
        if existing is not None:
            return bytes_to_vector(existing.embedding)

        try:
            await self.engine.load_model()
            vector = await self.engine.embed(text)
        except EmbeddingError as e:
            logger.warning(f"嵌入不可用，回退到关键词匹配: {url} - {e}")
            return None

        validity = timedelta(days=self.settings.embedding_ttl_days)
        await self.store.put_embedding(self.engine.to_record(url, vector, now, validity))
        return vector

    def _window(self, cached: CachedArticle, now: datetime) -> tuple[datetime, datetime]:
        return self.matcher.windows.window(cached.published_at or now, now)

    async def _local_candidates(self, cached: CachedArticle) -> list[CachedArticle]:
        return [a for a in await self.store.articles.get_all() if a.url != cached.url]

    async def _semantic_matches(
        self, cached: CachedArticle, vector: np.ndarray, now: datetime
    ) -> tuple[list[ScoredMatch], bool]:
        candidates = await self._embedded_candidates(await self._local_candidates(cached), now)
        matches = self._find(cached, vector, candidates, now)
        if len(matches) >= self.settings.min_local_matches:
            return matches, False

        upstream = await self._search_upstream(cached, now, bool(matches))
        if upstream is None:
            return matches, True

        fresh = await self._embed_candidates(upstream, now)
        known = {c.url for c in candidates}
        candidates.extend(c for c in fresh if c.url not in known)
        return self._find(cached, vector, candidates, now), False

    def _find(
        self,
        cached: CachedArticle,
        vector: np.ndarray,
        candidates: list[Candidate],
        now: datetime,
    ) -> list[ScoredMatch]:
        return self.matcher.find_matches(
            vector, cached.url, cached.published_at or now, candidates, now
        )

    async def _embedded_candidates(
        self, articles: list[CachedArticle], now: datetime
    ) -> list[Candidate]:
        """已有当前版本嵌入的候选文章."""
        embeddings = await self.store.get_valid_embeddings(
            [a.url for a in articles], self.engine.model_version(), now
        )
        return [
            Candidate(
                url=a.url,
                embedding=bytes_to_vector(embeddings[a.url].embedding),
                published_at=a.published_at,
            )
            for a in articles
            if a.url in embeddings
        ]

    async def _embed_candidates(
        self, articles: list[CachedArticle], now: datetime
    ) -> list[Candidate]:
        """为上游候选生成缺失的嵌入."""
        ready = await self._embedded_candidates(articles, now)
        done = {c.url for c in ready}
        missing = [a for a in articles if a.url not in done]
        if not missing:
            return ready

        try:
            await self.engine.load_model()
            vectors = await self.engine.embed_batch(
                [a.full_text or a.fallback_text() for a in missing]
            )
        except EmbeddingError as e:
            logger.warning(f"候选文章嵌入失败: {e}")
            return ready

        validity = timedelta(days=self.settings.embedding_ttl_days)
        records = [
            self.engine.to_record(a.url, v, now, validity)
            for a, v in zip(missing, vectors, strict=True)
        ]
        await self.store.embeddings.put_many(records)
        ready.extend(
            Candidate(url=a.url, embedding=v, published_at=a.published_at)
            for a, v in zip(missing, vectors, strict=True)
        )
        return ready

    async def _keyword_matches(
        self, cached: CachedArticle, now: datetime
    ) -> tuple[list[ScoredMatch], bool]:
        start, end = self._window(cached, now)
        threshold = self.settings.keyword_match_threshold

        def in_window(a: CachedArticle) -> bool:
            return a.published_at is not None and start <= a.published_at <= end

        local = [a for a in await self._local_candidates(cached) if in_window(a)]
        matches = keyword_matches(cached, local, threshold)
        if len(matches) >= self.settings.min_local_matches:
            return matches, False

        upstream = await self._search_upstream(cached, now, bool(matches))
        if upstream is None:
            return matches, True

        seen = {a.url for a in local}
        pool = local + [a for a in upstream if a.url not in seen and in_window(a)]
        return keyword_matches(cached, pool, threshold), False

    async def _search_upstream(
        self, cached: CachedArticle, now: datetime, have_matches: bool
    ) -> list[CachedArticle] | None:
        """
        在上游搜索更多候选.

        上游不可用、配额受限时返回 None（结果标记为受限）；
        网络错误在没有任何本地结果时向上抛出。
        """
        if self.newsapi is None:
            logger.debug("未配置上游 API，仅使用本地候选")
            return None
        if self.guard.is_rate_limited(now):
            logger.info(
                f"上游 API 限流中（剩余 {self.guard.minutes_remaining(now)} 分钟），仅使用本地候选"
            )
            return None

        start, end = self._window(cached, now)
        query = build_search_query(cached.title, cached.source_name)
        try:
            found = await self.newsapi.search(
                query,
                from_=start,
                to=end,
                page_size=self.settings.newsapi_page_size,
            )
        except RateLimitedError as e:
            logger.info(f"上游搜索被限流: {e}")
            return None
        except UpstreamNetworkError as e:
            if have_matches:
                logger.warning(f"上游搜索失败，仅使用本地结果: {e}")
                return None
            raise

        logger.info(f"上游搜索 '{query}' 返回 {len(found)} 篇")
        return await self.store.upsert_articles(found, now) if found else []

    async def _cluster(
        self, source: Article, matches: list[ScoredMatch]
    ) -> PerspectiveClusters:
        articles = {a.url: a for a in await self.store.get_articles([m.url for m in matches])}
        pairs = [(articles[m.url].to_article(), m) for m in matches if m.url in articles]
        return self.clusterer.cluster(source, pairs, await self.ratings.get_all())

    async def _outcome_from_result(
        self,
        source: Article,
        result: MatchResult,
        from_cache: bool = False,
        stale: bool = False,
    ) -> ComparisonOutcome:
        """从缓存的匹配结果恢复聚类."""
        scores = result.scores
        strengths = [MatchStrength(s) for s in result.strengths]
        if len(strengths) != len(scores):
            # 未保存强度的记录按当前阈值重新分类
            strengths = [
                MatchStrength.WEAK
                if result.match_method == MatchMethod.KEYWORD_FALLBACK
                else self.matcher.classify(score)
                for score in scores
            ]
        matches = [
            ScoredMatch(url=url, score=score, strength=strength)
            for url, score, strength in zip(result.matched_urls, scores, strengths, strict=True)
        ]
        return ComparisonOutcome(
            source=source,
            stage=PipelineStage.CACHED,
            clusters=await self._cluster(source, matches),
            match_method=result.match_method,
            limited=result.limited,
            stale=stale,
            from_cache=from_cache,
            computed_at=result.computed_at,
        )
