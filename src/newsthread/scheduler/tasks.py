"""定时任务定义."""

import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from newsthread.config import Settings, get_effective_setting
from newsthread.core.similarity import MatchStrength
from newsthread.scheduler.constraints import NetworkConstraints
from newsthread.scheduler.runner import BatchAnalysisRunner, get_running_runner
from newsthread.services import Services
from newsthread.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def analysis_task(services: Services) -> None:
    """后台分析任务：为缓存中的文章预先计算匹配结果."""
    settings = services.settings
    if not settings.analysis_enabled:
        logger.info("后台分析已禁用，跳过")
        return

    # 检查是否已有任务在运行
    if get_running_runner() is not None:
        logger.info("已有分析任务在运行，跳过本次调度")
        return

    # 动态配置可随时切换是否仅在不计流量网络下执行
    if isinstance(services.constraints, NetworkConstraints):
        unmetered = get_effective_setting("analysis_unmetered_only")
        if unmetered is not None:
            services.constraints.unmetered_only = bool(int(unmetered))

    if not services.constraints.is_satisfied():
        logger.info(f"执行条件不满足 ({services.constraints.describe()})，跳过")
        return

    logger.info("开始后台分析任务...")
    runner = BatchAnalysisRunner(services.orchestrator, services.store, services.engine)
    await runner.run_batch(
        batch_size=settings.analysis_batch_size,
        concurrency=settings.analysis_concurrency,
    )


async def story_update_task(services: Services) -> None:
    """故事更新任务：将新缓存的文章归入关注的故事."""
    if not services.settings.story_tracking_enabled:
        logger.info("故事追踪已禁用，跳过")
        return

    try:
        results = await services.tracker.update_stories()
    except Exception as e:
        logger.exception(f"故事更新失败: {e}")
        return

    strong = sum(1 for r in results if r.strength is MatchStrength.STRONG)
    logger.info(
        f"故事更新完成: 自动加入 {strong} 篇, 待确认 {len(results) - strong} 篇, "
        f"新内容 {sum(r.is_novel for r in results)} 篇, "
        f"新视角 {sum(r.has_new_perspective for r in results)} 篇"
    )


async def retention_task(services: Services) -> None:
    """缓存清理任务."""
    report = await services.store.sweep(utcnow())
    logger.info(f"缓存清理任务完成，共清理 {report.total} 条")


def create_scheduler(settings: Settings, services: Services) -> AsyncIOScheduler:
    """创建并启动定时任务调度器."""
    global _scheduler

    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        analysis_task,
        "interval",
        minutes=settings.analysis_interval_minutes,
        args=[services],
        id="analysis_task",
        name="后台匹配分析",
        replace_existing=True,
    )

    _scheduler.add_job(
        retention_task,
        "interval",
        hours=settings.retention_interval_hours,
        args=[services],
        id="retention_task",
        name="缓存过期清理",
        replace_existing=True,
    )

    _scheduler.add_job(
        story_update_task,
        "interval",
        hours=settings.story_update_interval_hours,
        args=[services],
        id="story_update_task",
        name="关注故事更新",
        replace_existing=True,
    )

    # 启动后稍等片刻执行一次清理
    _scheduler.add_job(
        retention_task,
        "date",  # 一次性任务
        run_date=utcnow() + timedelta(seconds=30),
        timezone="UTC",
        args=[services],
        id="retention_task_initial",
        name="初始缓存清理",
    )

    _scheduler.start()
    logger.info(
        f"定时任务调度器已启动，分析间隔: {settings.analysis_interval_minutes} 分钟"
    )

    return _scheduler


async def shutdown_scheduler() -> None:
    """关闭定时任务调度器."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("定时任务调度器已关闭")
        _scheduler = None
