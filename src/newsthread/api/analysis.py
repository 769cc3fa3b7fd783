"""后台分析 API."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from newsthread.scheduler.runner import (
    BatchAnalysisRunner,
    get_latest_batch_status,
    get_running_runner,
)
from newsthread.services import Services, get_services
from newsthread.utils.timeutil import utcnow

router = APIRouter(prefix="/api/analysis", tags=["analysis"])


@router.get("/progress")
async def get_analysis_progress() -> dict:
    """获取当前或最近一次批量分析进度."""
    status = get_latest_batch_status()
    if status is None:
        return {"status": "idle"}
    return {
        "batch_id": status.batch_id,
        "status": status.status,
        "total": status.total,
        "completed": status.completed,
        "failed": status.failed,
        "skipped": status.skipped,
        "started_at": status.started_at.isoformat(),
        "completed_at": status.completed_at.isoformat() if status.completed_at else None,
        "current_item": status.current_article,
        "errors": [{"url": e.url, "title": e.title, "error": e.error} for e in status.errors],
    }


@router.post("/trigger")
async def trigger_analysis(
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
) -> dict[str, str]:
    """手动触发一次批量分析."""
    if get_running_runner() is not None:
        raise HTTPException(status_code=409, detail="已有分析任务在运行")

    runner = BatchAnalysisRunner(services.orchestrator, services.store, services.engine)
    background_tasks.add_task(
        runner.run_batch,
        batch_size=services.settings.analysis_batch_size,
        concurrency=services.settings.analysis_concurrency,
    )
    return {"message": "批量分析已启动"}


@router.post("/stop")
async def stop_analysis() -> dict[str, str]:
    """停止正在运行的批量分析."""
    runner = get_running_runner()
    if runner is None:
        raise HTTPException(status_code=404, detail="没有正在运行的分析任务")
    runner.stop()
    return {"message": "已请求停止"}


@router.post("/sweep")
async def sweep_cache(services: Services = Depends(get_services)) -> dict[str, int]:
    """立即执行一次缓存过期清理."""
    report = await services.store.sweep(utcnow())
    return {
        "feeds": report.feeds,
        "match_results": report.match_results,
        "embeddings": report.embeddings,
        "articles": report.articles,
        "evicted": report.evicted,
    }
