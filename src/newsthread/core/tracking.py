"""故事追踪：关注文章并自动归入后续报道."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import numpy as np
from pydantic import BaseModel

from newsthread.cache.store import CacheStore
from newsthread.config import Settings, get_settings
from newsthread.core.ratings import RatingIndex, SourceRatingProvider
from newsthread.core.similarity import MatchStrength, SimilarityMatcher
from newsthread.errors import StoryLimitError
from newsthread.ml.engine import EmbeddingEngine
from newsthread.models.article import Article, CachedArticle
from newsthread.models.story import Story
from newsthread.utils.timeutil import utcnow
from newsthread.utils.vectors import bytes_to_vector, l2_normalize

logger = logging.getLogger(__name__)


@dataclass
class StoryMatch:
    """新文章与故事的一次匹配."""

    article_url: str
    story_id: str
    similarity: float
    strength: MatchStrength
    is_novel: bool
    has_new_perspective: bool


class StoryWithArticles(BaseModel):
    """故事及其文章."""

    story: Story
    articles: list[CachedArticle]


class StoryTracker:
    """管理关注的故事.

    更新时以故事内文章嵌入的质心作为故事向量，强匹配的新文章自动加入，
    弱匹配只返回给调用方。与质心相似度低于新颖度阈值的文章标记为带来新内容，
    来源偏向分不在故事已有偏向中的文章标记为带来新视角。
    """

    def __init__(
        self,
        store: CacheStore,
        engine: EmbeddingEngine,
        ratings: SourceRatingProvider,
        matcher: SimilarityMatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.engine = engine
        self.ratings = ratings
        self.matcher = matcher or SimilarityMatcher(
            strong_threshold=self.settings.strong_match_threshold,
            weak_threshold=self.settings.weak_match_threshold,
        )

    async def follow(self, article: Article, now: datetime | None = None) -> Story:
        """以文章为起点创建故事."""
        now = now or utcnow()
        limit = self.settings.max_tracked_stories
        if await self.store.count_stories() >= limit:
            raise StoryLimitError(limit)

        await self.store.upsert_article(article, now, refresh_retention=False)
        story = Story(id=str(uuid.uuid4()), title=article.title, created_at=now, updated_at=now)
        await self.store.put_story(story)
        await self.store.assign_to_story(article.url, story.id)
        logger.info(f"已关注故事: {story.title} ({story.id})")
        return story

    async def unfollow(self, story_id: str) -> bool:
        """取消关注，故事下的文章恢复正常过期."""
        removed = await self.store.delete_story(story_id)
        if removed:
            logger.info(f"已取消关注故事: {story_id}")
        return removed

    async def is_tracked(self, url: str) -> bool:
        article = await self.store.get_article(url)
        return article is not None and article.is_tracked

    async def stories(self) -> list[StoryWithArticles]:
        return [
            StoryWithArticles(story=s, articles=await self.store.story_articles(s.id))
            for s in await self.store.get_stories()
        ]

    async def update_stories(self, now: datetime | None = None) -> list[StoryMatch]:
        """将最近缓存且未归属故事的文章与每个故事匹配."""
        now = now or utcnow()
        stories = await self.store.get_stories()
        if not stories:
            return []

        version = self.engine.model_version()
        since = now - timedelta(hours=self.settings.story_candidate_window_hours)
        all_articles = await self.store.articles.get_all()
        recent = [a for a in all_articles if a.story_id is None and a.fetched_at >= since]
        urls = [a.url for a in all_articles if a.story_id is not None]
        urls.extend(a.url for a in recent)
        embeddings = await self.store.get_valid_embeddings(urls, version, now)
        candidates = [a for a in recent if a.url in embeddings]
        if not candidates:
            logger.debug("没有可匹配的新文章")
            return []

        index = RatingIndex(await self.ratings.get_all())
        assigned: set[str] = set()
        results: list[StoryMatch] = []

        for story in stories:
            members = [a for a in all_articles if a.story_id == story.id]
            vectors = [
                bytes_to_vector(embeddings[a.url].embedding) for a in members if a.url in embeddings
            ]
            if not vectors:
                logger.debug(f"故事 {story.id} 没有可用嵌入，跳过")
                continue

            centroid = l2_normalize(np.mean(np.stack(vectors), axis=0))
            known_bias = {
                r.bias_score
                for r in (index.lookup(a.url, a.source_id, a.source_name) for a in members)
                if r is not None
            }

            added = 0
            for article in candidates:
                if article.url in assigned:
                    continue
                vector = bytes_to_vector(embeddings[article.url].embedding)
                if vector.shape != centroid.shape:
                    continue
                similarity = self.matcher.similarity(vector, centroid)
                strength = self.matcher.classify(similarity)
                if strength is MatchStrength.NONE:
                    continue

                rating = index.lookup(article.url, article.source_id, article.source_name)
                match = StoryMatch(
                    article_url=article.url,
                    story_id=story.id,
                    similarity=similarity,
                    strength=strength,
                    is_novel=similarity < self.settings.story_novelty_threshold,
                    has_new_perspective=rating is not None and rating.bias_score not in known_bias,
                )
                results.append(match)

                if strength is MatchStrength.STRONG:
                    await self.store.assign_to_story(
                        article.url,
                        story.id,
                        is_novel=match.is_novel,
                        has_new_perspective=match.has_new_perspective,
                    )
                    assigned.add(article.url)
                    added += 1

            if added:
                story.updated_at = now
                await self.store.put_story(story)
                logger.info(f"故事 {story.title} 新增 {added} 篇文章")

        return results
