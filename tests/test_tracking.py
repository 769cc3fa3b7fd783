"""故事追踪测试."""

from datetime import timedelta

import numpy as np
import pytest

from newsthread.cache import CacheStore
from newsthread.core import MatchStrength, StaticSourceRatings, StoryTracker
from newsthread.errors import StoryLimitError
from newsthread.ml import EmbeddingEngine
from newsthread.models.source_rating import SourceRating

from .conftest import NOW, make_article, unit, vector_with_score

FOLLOWED_URL = "https://www.cnn.com/2025/03/01/climate-bill"

RATINGS = [
    SourceRating(source_id="cnn", display_name="CNN", domain="cnn.com", bias_score=-1),
    SourceRating(source_id="reuters", display_name="Reuters", domain="reuters.com", bias_score=0),
    SourceRating(source_id="fox-news", display_name="Fox News", domain="foxnews.com", bias_score=2),
]


def _tracker(store: CacheStore, engine: EmbeddingEngine, settings) -> StoryTracker:
    return StoryTracker(store, engine, StaticSourceRatings(RATINGS), settings=settings)


async def _cache(
    store: CacheStore,
    engine: EmbeddingEngine,
    url: str,
    vector: np.ndarray | None,
    cached_at=NOW,
) -> None:
    """写入文章和嵌入（vector 为 None 时不写嵌入）."""
    await store.upsert_article(make_article(url), cached_at)
    if vector is not None:
        await store.put_embedding(engine.to_record(url, vector, NOW, timedelta(days=7)))


class TestFollow:
    """关注和取消关注测试."""

    async def test_follow_creates_story(self, store: CacheStore, engine, settings):
        """关注后文章归入新故事并被追踪."""
        tracker = _tracker(store, engine, settings)

        story = await tracker.follow(make_article(FOLLOWED_URL), now=NOW)

        assert story.title == make_article(FOLLOWED_URL).title
        cached = await store.get_article(FOLLOWED_URL)
        assert cached.story_id == story.id
        assert await tracker.is_tracked(FOLLOWED_URL) is True
        stories = await tracker.stories()
        assert [s.story.id for s in stories] == [story.id]
        assert [a.url for a in stories[0].articles] == [FOLLOWED_URL]

    async def test_story_limit(self, memory_store, engine, settings):
        """达到上限后不能再关注."""
        settings.max_tracked_stories = 1
        tracker = _tracker(memory_store, engine, settings)
        await tracker.follow(make_article(FOLLOWED_URL), now=NOW)

        with pytest.raises(StoryLimitError):
            await tracker.follow(make_article("https://www.foxnews.com/x"), now=NOW)

        assert await memory_store.count_stories() == 1

    async def test_unfollow_releases_articles(self, store: CacheStore, engine, settings):
        """取消关注后文章不再被追踪."""
        tracker = _tracker(store, engine, settings)
        story = await tracker.follow(make_article(FOLLOWED_URL), now=NOW)

        assert await tracker.unfollow(story.id) is True

        assert await tracker.is_tracked(FOLLOWED_URL) is False
        assert await tracker.stories() == []

    async def test_unfollow_unknown_story(self, memory_store, engine, settings):
        assert await _tracker(memory_store, engine, settings).unfollow("missing") is False

    async def test_follow_keeps_retention(self, memory_store, engine, settings):
        """关注已缓存的文章不改变其缓存时间."""
        cached_at = NOW - timedelta(days=3)
        await memory_store.upsert_article(make_article(FOLLOWED_URL), cached_at)

        await _tracker(memory_store, engine, settings).follow(make_article(FOLLOWED_URL), now=NOW)

        assert (await memory_store.get_article(FOLLOWED_URL)).fetched_at == cached_at


class TestUpdateStories:
    """新文章自动归入故事测试."""

    async def test_strong_matches_are_added(self, memory_store, engine, settings):
        """强匹配自动加入，弱匹配只返回，无关文章忽略."""
        tracker = _tracker(memory_store, engine, settings)
        await _cache(memory_store, engine, FOLLOWED_URL, unit(0))
        story = await tracker.follow(make_article(FOLLOWED_URL), now=NOW)
        await _cache(memory_store, engine, "https://www.foxnews.com/a", vector_with_score(0.80, axis=1))
        await _cache(memory_store, engine, "https://www.reuters.com/b", vector_with_score(0.60, axis=2))
        await _cache(memory_store, engine, "https://www.cnn.com/c", vector_with_score(0.30, axis=3))

        results = await tracker.update_stories(now=NOW + timedelta(hours=1))

        by_url = {r.article_url: r for r in results}
        assert set(by_url) == {"https://www.foxnews.com/a", "https://www.reuters.com/b"}
        assert by_url["https://www.foxnews.com/a"].strength is MatchStrength.STRONG
        assert by_url["https://www.reuters.com/b"].strength is MatchStrength.WEAK

        added = await memory_store.get_article("https://www.foxnews.com/a")
        assert added.story_id == story.id
        assert added.is_tracked is True
        assert (await memory_store.get_article("https://www.reuters.com/b")).story_id is None
        assert (await memory_store.get_story(story.id)).updated_at == NOW + timedelta(hours=1)

    async def test_novelty_and_perspective_flags(self, memory_store, engine, settings):
        """低于新颖度阈值为新内容，新的偏向分为新视角."""
        tracker = _tracker(memory_store, engine, settings)
        await _cache(memory_store, engine, FOLLOWED_URL, unit(0))
        await tracker.follow(make_article(FOLLOWED_URL), now=NOW)
        await _cache(memory_store, engine, "https://www.foxnews.com/a", vector_with_score(0.80, axis=1))
        await _cache(memory_store, engine, "https://www.cnn.com/b", vector_with_score(0.95, axis=2))

        results = {r.article_url: r for r in await tracker.update_stories(now=NOW)}

        assert results["https://www.foxnews.com/a"].is_novel is True
        assert results["https://www.foxnews.com/a"].has_new_perspective is True
        assert results["https://www.cnn.com/b"].is_novel is False
        assert results["https://www.cnn.com/b"].has_new_perspective is False

        added = await memory_store.get_article("https://www.foxnews.com/a")
        assert added.is_novel is True
        assert added.has_new_perspective is True

    async def test_centroid_of_story_articles(self, memory_store, engine, settings):
        """故事向量为已有文章嵌入的质心."""
        tracker = _tracker(memory_store, engine, settings)
        await _cache(memory_store, engine, FOLLOWED_URL, unit(0))
        story = await tracker.follow(make_article(FOLLOWED_URL), now=NOW)
        await _cache(memory_store, engine, "https://www.reuters.com/b", unit(1))
        await memory_store.assign_to_story("https://www.reuters.com/b", story.id)
        # 与质心 (unit(0) + unit(1)) / sqrt(2) 的相似度为 1
        candidate = (unit(0) + unit(1)) / np.float32(np.sqrt(2))
        await _cache(memory_store, engine, "https://www.foxnews.com/a", candidate)

        results = await tracker.update_stories(now=NOW)

        assert [r.article_url for r in results] == ["https://www.foxnews.com/a"]
        assert results[0].similarity == pytest.approx(1.0, abs=1e-5)

    async def test_old_and_unembedded_articles_are_skipped(self, memory_store, engine, settings):
        """超过候选窗口或没有嵌入的文章不参与匹配."""
        tracker = _tracker(memory_store, engine, settings)
        await _cache(memory_store, engine, FOLLOWED_URL, unit(0))
        await tracker.follow(make_article(FOLLOWED_URL), now=NOW)
        await _cache(
            memory_store,
            engine,
            "https://www.foxnews.com/old",
            vector_with_score(0.9),
            cached_at=NOW - timedelta(hours=30),
        )
        await _cache(memory_store, engine, "https://www.reuters.com/plain", None)

        assert await tracker.update_stories(now=NOW) == []

    async def test_story_without_embeddings_is_skipped(self, memory_store, engine, settings):
        """故事文章都没有嵌入时跳过."""
        tracker = _tracker(memory_store, engine, settings)
        story = await tracker.follow(make_article(FOLLOWED_URL), now=NOW)
        await _cache(memory_store, engine, "https://www.foxnews.com/a", vector_with_score(0.9))

        assert await tracker.update_stories(now=NOW) == []
        assert (await memory_store.get_story(story.id)).updated_at == NOW

    async def test_no_stories(self, memory_store, engine, settings):
        await _cache(memory_store, engine, "https://www.foxnews.com/a", unit(0))
        assert await _tracker(memory_store, engine, settings).update_stories(now=NOW) == []

    async def test_article_joins_one_story(self, memory_store, engine, settings):
        """同一篇文章只加入第一个强匹配的故事."""
        tracker = _tracker(memory_store, engine, settings)
        await _cache(memory_store, engine, FOLLOWED_URL, unit(0))
        await _cache(memory_store, engine, "https://www.reuters.com/b", unit(0))
        await tracker.follow(make_article(FOLLOWED_URL), now=NOW)
        await tracker.follow(make_article("https://www.reuters.com/b"), now=NOW)
        await _cache(memory_store, engine, "https://www.foxnews.com/a", vector_with_score(0.9))

        results = await tracker.update_stories(now=NOW)

        assert len([r for r in results if r.strength is MatchStrength.STRONG]) == 1
