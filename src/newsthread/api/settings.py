"""设置 API."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from newsthread.config import get_effective_setting, set_dynamic_settings
from newsthread.fetcher.extractor import FetchPreference
from newsthread.models.app_settings import AppSettings
from newsthread.models.database import get_session
from newsthread.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


class PreferencesResponse(BaseModel):
    """用户偏好响应."""

    article_fetch_preference: str
    analysis_unmetered_only: bool


class PreferencesUpdate(BaseModel):
    """用户偏好更新请求."""

    article_fetch_preference: Literal["always", "unmetered_only", "never"] | None = None
    analysis_unmetered_only: bool | None = None


def _current_preferences() -> PreferencesResponse:
    unmetered = get_effective_setting("analysis_unmetered_only")
    return PreferencesResponse(
        article_fetch_preference=FetchPreference.parse(
            get_effective_setting("article_fetch_preference")
        ).value,
        analysis_unmetered_only=bool(int(unmetered)) if unmetered is not None else False,
    )


async def load_dynamic_settings(session: AsyncSession) -> None:
    """从数据库加载动态配置到缓存."""
    result = await session.execute(select(AppSettings).where(AppSettings.id == 1))
    db_settings = result.scalar_one_or_none()
    if db_settings:
        set_dynamic_settings(db_settings.to_dynamic_settings())
        logger.debug("动态配置已加载")


@router.get("/preferences")
async def get_preferences(
    session: AsyncSession = Depends(get_session),
) -> PreferencesResponse:
    """获取当前偏好（动态配置优先）."""
    await load_dynamic_settings(session)
    return _current_preferences()


@router.put("/preferences")
async def update_preferences(
    update: PreferencesUpdate,
    session: AsyncSession = Depends(get_session),
) -> PreferencesResponse:
    """更新偏好并刷新动态配置缓存."""
    result = await session.execute(select(AppSettings).where(AppSettings.id == 1))
    db_settings = result.scalar_one_or_none() or AppSettings(id=1)

    if update.article_fetch_preference is not None:
        db_settings.article_fetch_preference = update.article_fetch_preference
    if update.analysis_unmetered_only is not None:
        db_settings.analysis_unmetered_only = update.analysis_unmetered_only
    db_settings.updated_at = utcnow()

    session.add(db_settings)
    await session.commit()

    set_dynamic_settings(db_settings.to_dynamic_settings())
    return _current_preferences()
