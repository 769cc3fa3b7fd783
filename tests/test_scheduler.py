"""后台任务测试."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from newsthread.cache import CacheStore
from newsthread.config import clear_dynamic_settings, set_dynamic_settings
from newsthread.core import (
    ComparisonOutcome,
    MatchOrchestrator,
    MatchStrength,
    PipelineStage,
    StaticSourceRatings,
    StoryMatch,
)
from newsthread.errors import ErrorKind, PipelineCancelledError
from newsthread.fetcher import NotFetched
from newsthread.models.match import MatchMethod, MatchResult
from newsthread.quota import QuotaGuard
from newsthread.scheduler import AlwaysEligible, BatchAnalysisRunner, NetworkConstraints
from newsthread.scheduler import runner as runner_module
from newsthread.scheduler import tasks
from newsthread.services import build_services
from newsthread.utils.network import StaticNetworkMonitor
from newsthread.utils.timeutil import utcnow

from .conftest import make_article


def _orchestrator(side_effect) -> AsyncMock:
    orchestrator = AsyncMock()
    orchestrator.compare = AsyncMock(side_effect=side_effect)
    return orchestrator


def _outcome(article, stage: PipelineStage = PipelineStage.CACHED, **kwargs) -> ComparisonOutcome:
    return ComparisonOutcome(source=article, stage=stage, **kwargs)


async def _seed(store: CacheStore, count: int) -> None:
    now = utcnow()
    await store.upsert_articles(
        [
            make_article(f"https://a.example/{i}", published_at=now - timedelta(hours=i))
            for i in range(count)
        ],
        now,
    )


@pytest.fixture(autouse=True)
def reset_runner_state():
    """每个测试前后清理全局状态."""
    runner_module._latest_status = None
    runner_module._running_runner = None
    yield
    runner_module._latest_status = None
    runner_module._running_runner = None
    clear_dynamic_settings()


class TestBatchAnalysisRunner:
    """批量分析执行器测试."""

    async def test_completes_pending_articles(self, memory_store, engine):
        """所有待分析文章执行完成."""
        await _seed(memory_store, 3)

        async def compare(article, cancel_event=None):
            return _outcome(article)

        orchestrator = _orchestrator(compare)
        runner = BatchAnalysisRunner(orchestrator, memory_store, engine)

        status = await runner.run_batch(batch_size=10, concurrency=2)

        assert status.total == 3
        assert status.completed == 3
        assert status.status == "completed"
        assert status.completed_at is not None
        assert runner_module.get_running_runner() is None
        assert runner_module.get_latest_batch_status() is status
        assert engine.is_loaded is False

    async def test_failures_are_recorded(self, memory_store, engine):
        """异常和错误状态都计为失败."""
        await _seed(memory_store, 2)

        async def compare(article, cancel_event=None):
            if article.url.endswith("/0"):
                raise RuntimeError("unexpected")
            return _outcome(
                article,
                PipelineStage.ERRORED,
                error_kind=ErrorKind.NETWORK_ERROR,
                error_message="connection refused",
            )

        runner = BatchAnalysisRunner(_orchestrator(compare), memory_store, engine)
        status = await runner.run_batch(batch_size=10, concurrency=1)

        assert status.failed == 2
        assert status.completed == 0
        assert {e.error for e in status.errors} == {"unexpected", "connection refused"}

    async def test_stop_skips_remaining(self, memory_store, engine):
        """停止后当前文章在阶段边界退出，其余跳过."""
        await _seed(memory_store, 3)
        runner: BatchAnalysisRunner

        async def compare(article, cancel_event=None):
            runner.stop()
            raise PipelineCancelledError(article.url, PipelineStage.EMBEDDING.value)

        runner = BatchAnalysisRunner(_orchestrator(compare), memory_store, engine)
        status = await runner.run_batch(batch_size=10, concurrency=1)

        assert status.skipped == 3
        assert status.status == "cancelled"

    async def test_pending_excludes_valid_results(self, memory_store, engine):
        """已有有效匹配结果的文章不再分析."""
        await _seed(memory_store, 2)
        now = utcnow()
        await memory_store.save_match_result(
            MatchResult.build(
                "https://a.example/0", [], [], MatchMethod.SEMANTIC, False, now, now + timedelta(hours=24)
            )
        )

        runner = BatchAnalysisRunner(_orchestrator(None), memory_store, engine)
        pending = await runner.get_pending(10, now)

        assert [a.url for a in pending] == ["https://a.example/1"]

    async def test_pending_newest_first(self, memory_store, engine):
        """新发布的文章优先."""
        await _seed(memory_store, 3)
        runner = BatchAnalysisRunner(_orchestrator(None), memory_store, engine)

        pending = await runner.get_pending(2, utcnow())

        assert [a.url for a in pending] == ["https://a.example/0", "https://a.example/1"]

    async def test_batch_does_not_extend_retention(self, memory_store, settings, engine):
        """重新分析已缓存的文章不会推迟其过期."""
        now = utcnow()
        url = "https://a.example/old"
        await memory_store.upsert_article(make_article(url), now - timedelta(days=29))
        extractor = AsyncMock()
        extractor.extract = AsyncMock(return_value=NotFetched(reason="抓取偏好为 never"))
        orchestrator = MatchOrchestrator(
            memory_store,
            extractor,
            engine,
            QuotaGuard(),
            StaticSourceRatings(),
            settings=settings,
        )

        status = await BatchAnalysisRunner(orchestrator, memory_store, engine).run_batch(5)

        assert status.completed == 1
        cached = await memory_store.get_article(url)
        assert cached.expires_at == now + timedelta(days=1)
        report = await memory_store.sweep(now + timedelta(days=2))
        assert report.articles == 1
        assert await memory_store.get_article(url) is None

    async def test_empty_batch(self, memory_store, engine):
        """没有待分析文章."""
        runner = BatchAnalysisRunner(_orchestrator(None), memory_store, engine)
        status = await runner.run_batch()

        assert status.total == 0
        assert status.status == "completed"


class TestConstraints:
    """执行条件测试."""

    def test_always_eligible(self):
        assert AlwaysEligible().is_satisfied()

    def test_requires_network(self):
        assert not NetworkConstraints(StaticNetworkMonitor(available=False)).is_satisfied()

    def test_unmetered_only(self):
        metered = StaticNetworkMonitor(available=True, unmetered=False)
        assert NetworkConstraints(metered).is_satisfied()
        assert not NetworkConstraints(metered, unmetered_only=True).is_satisfied()


class TestTasks:
    """定时任务测试."""

    @pytest.fixture
    def services(self, settings, engine):
        settings.cache_backend = "memory"
        return build_services(
            settings,
            network=StaticNetworkMonitor(available=True, unmetered=False),
            engine=engine,
        )

    async def test_analysis_task_runs_batch(self, services, monkeypatch: pytest.MonkeyPatch):
        """满足条件时执行批量分析."""
        run_batch = AsyncMock()
        monkeypatch.setattr(BatchAnalysisRunner, "run_batch", run_batch)

        await tasks.analysis_task(services)

        run_batch.assert_awaited_once()

    async def test_analysis_task_disabled(self, services, monkeypatch: pytest.MonkeyPatch):
        """禁用时跳过."""
        services.settings.analysis_enabled = False
        run_batch = AsyncMock()
        monkeypatch.setattr(BatchAnalysisRunner, "run_batch", run_batch)

        await tasks.analysis_task(services)

        run_batch.assert_not_called()

    async def test_analysis_task_respects_unmetered_setting(
        self, services, monkeypatch: pytest.MonkeyPatch
    ):
        """动态配置要求不计流量网络时，计费网络下跳过."""
        set_dynamic_settings({"analysis_unmetered_only": 1})
        run_batch = AsyncMock()
        monkeypatch.setattr(BatchAnalysisRunner, "run_batch", run_batch)

        await tasks.analysis_task(services)

        run_batch.assert_not_called()

    async def test_story_update_task(self, services, monkeypatch: pytest.MonkeyPatch):
        """执行故事更新."""
        update = AsyncMock(
            return_value=[
                StoryMatch("https://b.example/1", "s1", 0.8, MatchStrength.STRONG, True, False),
                StoryMatch("https://c.example/2", "s1", 0.6, MatchStrength.WEAK, True, True),
            ]
        )
        monkeypatch.setattr(services.tracker, "update_stories", update)

        await tasks.story_update_task(services)

        update.assert_awaited_once()

    async def test_story_update_task_disabled(self, services, monkeypatch: pytest.MonkeyPatch):
        """禁用故事追踪时跳过."""
        services.settings.story_tracking_enabled = False
        update = AsyncMock()
        monkeypatch.setattr(services.tracker, "update_stories", update)

        await tasks.story_update_task(services)

        update.assert_not_called()

    async def test_story_update_failure_is_logged(self, services, monkeypatch: pytest.MonkeyPatch):
        """更新失败不影响调度器."""
        monkeypatch.setattr(
            services.tracker, "update_stories", AsyncMock(side_effect=RuntimeError("boom"))
        )

        await tasks.story_update_task(services)

    async def test_retention_task(self, services):
        """清理任务删除过期 Feed 标记."""
        await services.store.touch_feed("top_headlines_us_all", 5, utcnow() - timedelta(hours=4))

        await tasks.retention_task(services)

        assert await services.store.feeds.get("top_headlines_us_all") is None

    async def test_create_scheduler(self, services):
        """注册分析、清理和故事更新任务."""
        scheduler = tasks.create_scheduler(services.settings, services)
        try:
            job_ids = {job.id for job in scheduler.get_jobs()}
            assert job_ids == {
                "analysis_task",
                "retention_task",
                "retention_task_initial",
                "story_update_task",
            }
        finally:
            await tasks.shutdown_scheduler()
