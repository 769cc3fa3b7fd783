"""新闻 Feed API."""

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from newsthread.errors import NewsThreadError
from newsthread.models.article import Article
from newsthread.services import Services, get_services

router = APIRouter(prefix="/api/feed", tags=["feed"])


class FeedResponse(BaseModel):
    """Feed 响应."""

    items: list[Article]
    batches: int  # 收到的批次数，2 表示先返回缓存后又刷新


async def _collect(stream: AsyncIterator[list[Article]]) -> FeedResponse:
    """收集离线优先 Feed 的所有输出并去重."""
    batches: list[list[Article]] = []
    try:
        async for batch in stream:
            batches.append(batch)
    except NewsThreadError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    if not batches:
        return FeedResponse(items=[], batches=0)

    # 后到的批次是上游数据，合并时优先展示
    items: dict[str, Article] = {}
    for batch in reversed(batches):
        for article in batch:
            items.setdefault(article.url, article)
    return FeedResponse(items=list(items.values()), batches=len(batches))


@router.get("/headlines")
async def get_headlines(
    country: str | None = None,
    category: str | None = None,
    refresh: bool = False,
    services: Services = Depends(get_services),
) -> FeedResponse:
    """获取头条新闻（缓存优先）."""
    return await _collect(
        services.feed.top_headlines(country, category, force_refresh=refresh)
    )


@router.get("/search")
async def search_articles(
    q: str,
    language: str = "en",
    sort_by: str = "publishedAt",
    refresh: bool = False,
    services: Services = Depends(get_services),
) -> FeedResponse:
    """搜索新闻（缓存优先）."""
    return await _collect(
        services.feed.search(q, language, sort_by, force_refresh=refresh)
    )
