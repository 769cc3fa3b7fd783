"""来源评级数据."""

from abc import ABC, abstractmethod
from urllib.parse import urlparse

from newsthread.models.source_rating import SourceRating


def extract_domain(url: str) -> str:
    """提取 URL 的域名（去掉 www. 前缀）."""
    host = (urlparse(url).hostname or "").lower()
    return host.removeprefix("www.")


class SourceRatingProvider(ABC):
    """来源评级数据提供者（只读）."""

    @abstractmethod
    async def get_all(self) -> list[SourceRating]:
        """获取所有来源评级."""
        ...


class StaticSourceRatings(SourceRatingProvider):
    """内存中的固定评级数据."""

    def __init__(self, ratings: list[SourceRating] | None = None) -> None:
        self._ratings = list(ratings or [])

    async def get_all(self) -> list[SourceRating]:
        return list(self._ratings)


class RatingIndex:
    """按域名、来源 ID、来源名称查找评级."""

    def __init__(self, ratings: list[SourceRating]) -> None:
        self._by_domain = {r.domain.lower().removeprefix("www."): r for r in ratings}
        self._by_id = {r.source_id.lower(): r for r in ratings}
        self._by_name = {r.display_name.lower(): r for r in ratings}

    def lookup(
        self, url: str, source_id: str | None = None, source_name: str | None = None
    ) -> SourceRating | None:
        rating = self._by_domain.get(extract_domain(url))
        if rating is None and source_id:
            rating = self._by_id.get(source_id.lower())
        if rating is None and source_name:
            rating = self._by_name.get(source_name.lower())
        return rating
