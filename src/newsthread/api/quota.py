"""配额状态 API."""

from fastapi import APIRouter, Depends

from newsthread.quota.guard import QuotaNotice
from newsthread.services import Services, get_services

router = APIRouter(prefix="/api/quota", tags=["quota"])


@router.get("")
async def get_quota_notice(services: Services = Depends(get_services)) -> QuotaNotice:
    """获取限流提示（含倒计时分钟数）."""
    return services.guard.notice()


@router.delete("")
async def dismiss_quota_notice(services: Services = Depends(get_services)) -> QuotaNotice:
    """关闭限流提示并清除限流状态."""
    await services.guard.clear()
    return services.guard.notice()
