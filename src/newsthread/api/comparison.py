"""多视角对比 API."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from newsthread.core.orchestrator import ComparisonOutcome
from newsthread.models.article import Article
from newsthread.services import Services, get_services

router = APIRouter(prefix="/api/compare", tags=["compare"])


class TrackRequest(BaseModel):
    """追踪设置请求."""

    tracked: bool = True


@router.get("")
async def compare_cached_article(
    url: str,
    services: Services = Depends(get_services),
) -> ComparisonOutcome:
    """对比已缓存的文章."""
    cached = await services.store.get_article(url)
    if cached is None:
        raise HTTPException(status_code=404, detail="文章未缓存")
    return await services.orchestrator.compare(cached.to_article())


@router.post("")
async def compare_article(
    article: Article,
    services: Services = Depends(get_services),
) -> ComparisonOutcome:
    """对比任意文章（先写入缓存）."""
    return await services.orchestrator.compare(article)


@router.get("/stage")
async def get_stage(
    url: str,
    services: Services = Depends(get_services),
) -> dict[str, str]:
    """获取文章当前所处的流水线阶段."""
    return {"url": url, "stage": services.orchestrator.stage_of(url).value}


@router.put("/track")
async def set_tracked(
    url: str,
    request: TrackRequest,
    services: Services = Depends(get_services),
) -> dict[str, str | bool]:
    """设置文章追踪（追踪中的文章不会被过期清理）."""
    if not await services.store.set_tracked(url, request.tracked):
        raise HTTPException(status_code=404, detail="文章未缓存")
    return {"url": url, "tracked": request.tracked}
