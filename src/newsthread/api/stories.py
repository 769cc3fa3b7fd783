"""故事追踪 API."""

from fastapi import APIRouter, Depends, HTTPException

from newsthread.core.tracking import StoryMatch, StoryWithArticles
from newsthread.errors import StoryLimitError
from newsthread.models.article import Article
from newsthread.models.story import Story
from newsthread.services import Services, get_services

router = APIRouter(prefix="/api/stories", tags=["stories"])


@router.get("")
async def list_stories(services: Services = Depends(get_services)) -> list[StoryWithArticles]:
    """获取关注的故事（最近更新的在前）."""
    return await services.tracker.stories()


@router.post("")
async def follow_story(
    article: Article,
    services: Services = Depends(get_services),
) -> Story:
    """以文章为起点关注故事."""
    try:
        return await services.tracker.follow(article)
    except StoryLimitError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.delete("/{story_id}")
async def unfollow_story(
    story_id: str,
    services: Services = Depends(get_services),
) -> dict[str, str]:
    """取消关注故事."""
    if not await services.tracker.unfollow(story_id):
        raise HTTPException(status_code=404, detail="故事不存在")
    return {"id": story_id, "status": "unfollowed"}


@router.get("/tracked")
async def is_article_tracked(
    url: str,
    services: Services = Depends(get_services),
) -> dict[str, str | bool]:
    return {"url": url, "tracked": await services.tracker.is_tracked(url)}


@router.post("/update")
async def update_stories(services: Services = Depends(get_services)) -> list[StoryMatch]:
    """立即将新文章归入关注的故事."""
    return await services.tracker.update_stories()
