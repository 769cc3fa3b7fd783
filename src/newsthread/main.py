"""NewsThread 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from newsthread.api import analysis, comparison, feed, quota, settings, stories
from newsthread.config import get_settings
from newsthread.models.database import async_session_maker, close_db, init_db
from newsthread.scheduler.tasks import create_scheduler, shutdown_scheduler
from newsthread.services import build_services, set_services

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()

    # 启动时初始化
    logger.info("正在初始化数据库...")
    await init_db(app_settings.database_url)

    # 加载动态配置
    logger.info("正在加载动态配置...")
    session_factory = async_session_maker()
    async with session_factory() as session:
        await settings.load_dynamic_settings(session)

    services = build_services(app_settings, session_factory)
    await services.guard.load()
    set_services(services)

    logger.info("正在启动定时任务...")
    create_scheduler(app_settings, services)

    logger.info("NewsThread 启动完成！")
    yield

    # 关闭时清理
    logger.info("正在关闭...")
    await shutdown_scheduler()
    await services.close()
    set_services(None)
    await close_db()
    logger.info("NewsThread 已关闭")


app = FastAPI(
    title="NewsThread",
    description="本地新闻多视角匹配 - 同一事件的左中右报道对比",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(feed.router)
app.include_router(comparison.router)
app.include_router(quota.router)
app.include_router(analysis.router)
app.include_router(settings.router)
app.include_router(stories.router)


@app.get("/")
async def root() -> dict:
    """根路径."""
    return {
        "name": "NewsThread",
        "version": "0.1.0",
        "description": "本地新闻多视角匹配",
    }


@app.get("/health")
async def health() -> dict:
    """健康检查."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "newsthread.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
