"""按媒体偏向聚类匹配结果."""

import math
from enum import Enum

from pydantic import BaseModel

from newsthread.core.ratings import RatingIndex
from newsthread.core.similarity import MatchStrength, ScoredMatch
from newsthread.models.article import Article
from newsthread.models.source_rating import SourceRating


class BiasBucket(str, Enum):
    """偏向分组."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class MatchQuality(str, Enum):
    """整体匹配质量（仅用于界面提示，不参与过滤）."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PerspectiveArticle(BaseModel):
    """带评分和来源评级的匹配文章."""

    article: Article
    score: float
    strength: MatchStrength
    rating: SourceRating | None = None


class PerspectiveClusters(BaseModel):
    """左/中/右三组视角."""

    left: list[PerspectiveArticle] = []
    center: list[PerspectiveArticle] = []
    right: list[PerspectiveArticle] = []
    quality: MatchQuality = MatchQuality.NONE
    total: int = 0


class BiasClusterer:
    """将匹配文章按来源偏向分为左、中、右三组."""

    def __init__(self, bucket_size: int = 5) -> None:
        self.bucket_size = bucket_size

    @staticmethod
    def bucket_for(rating: SourceRating | None) -> BiasBucket:
        """偏向分 <= -1 为左，>= +1 为右，其余（含未评级）为中."""
        if rating is None:
            return BiasBucket.CENTER
        if rating.bias_score <= -1:
            return BiasBucket.LEFT
        if rating.bias_score >= 1:
            return BiasBucket.RIGHT
        return BiasBucket.CENTER

    @staticmethod
    def quality(total: int, has_left: bool, has_right: bool) -> MatchQuality:
        if total == 0:
            return MatchQuality.NONE
        diverse = has_left and has_right
        if total >= 10 and diverse:
            return MatchQuality.HIGH
        if total >= 5 and diverse:
            return MatchQuality.MEDIUM
        return MatchQuality.LOW

    def cluster(
        self,
        source: Article,
        matches: list[tuple[Article, ScoredMatch]],
        ratings: list[SourceRating],
    ) -> PerspectiveClusters:
        """
        聚类匹配文章.

        Args:
            source: 源文章
            matches: (文章, 匹配分数) 列表
            ratings: 来源评级

        Returns:
            每组最多 bucket_size 篇，强匹配在前，其次按与源文章发布时间的接近程度排序
        """
        index = RatingIndex(ratings)
        buckets: dict[BiasBucket, list[PerspectiveArticle]] = {b: [] for b in BiasBucket}

        for article, match in matches:
            rating = index.lookup(article.url, article.source_id, article.source_name)
            buckets[self.bucket_for(rating)].append(
                PerspectiveArticle(
                    article=article,
                    score=match.score,
                    strength=match.strength,
                    rating=rating,
                )
            )

        def sort_key(item: PerspectiveArticle) -> tuple[int, float]:
            strength_rank = 0 if item.strength is MatchStrength.STRONG else 1
            if source.published_at is None or item.article.published_at is None:
                return strength_rank, math.inf
            distance = abs((item.article.published_at - source.published_at).total_seconds())
            return strength_rank, distance

        for items in buckets.values():
            items.sort(key=sort_key)

        return PerspectiveClusters(
            left=buckets[BiasBucket.LEFT][: self.bucket_size],
            center=buckets[BiasBucket.CENTER][: self.bucket_size],
            right=buckets[BiasBucket.RIGHT][: self.bucket_size],
            quality=self.quality(
                len(matches),
                has_left=bool(buckets[BiasBucket.LEFT]),
                has_right=bool(buckets[BiasBucket.RIGHT]),
            ),
            total=len(matches),
        )
