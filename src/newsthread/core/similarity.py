"""语义相似度匹配."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

import numpy as np

from newsthread.utils.timeutil import to_iso_string

logger = logging.getLogger(__name__)


class MatchStrength(str, Enum):
    """匹配强度."""

    STRONG = "strong"
    WEAK = "weak"
    NONE = "none"


@dataclass(frozen=True)
class Candidate:
    """待匹配的候选文章."""

    url: str
    embedding: np.ndarray
    published_at: datetime | None


@dataclass(frozen=True)
class ScoredMatch:
    """一条匹配结果."""

    url: str
    score: float
    strength: MatchStrength
    published_at: datetime | None = None


class TimeWindowCalculator:
    """根据源文章发布时间计算匹配时间窗口（越新的新闻窗口越窄）."""

    BREAKING_AGE = timedelta(hours=24)
    RECENT_AGE = timedelta(days=7)

    BREAKING_WINDOW = timedelta(hours=48)
    RECENT_WINDOW = timedelta(days=7)
    OLD_WINDOW = timedelta(days=14)

    def window(self, published_at: datetime, now: datetime) -> tuple[datetime, datetime]:
        """返回 (from, to) 时间窗口."""
        age = now - published_at
        if age < self.BREAKING_AGE:
            span = self.BREAKING_WINDOW
        elif age < self.RECENT_AGE:
            span = self.RECENT_WINDOW
        else:
            span = self.OLD_WINDOW
        return published_at - span, published_at + span

    def window_strings(self, published_at: datetime, now: datetime) -> tuple[str, str]:
        """返回上游搜索使用的 ISO 时间字符串."""
        start, end = self.window(published_at, now)
        return to_iso_string(start), to_iso_string(end)

    def is_within_window(
        self, candidate_published_at: datetime, published_at: datetime, now: datetime
    ) -> bool:
        start, end = self.window(published_at, now)
        return start <= candidate_published_at <= end


class SimilarityMatcher:
    """基于归一化嵌入向量点积的相似度匹配."""

    def __init__(
        self,
        strong_threshold: float = 0.70,
        weak_threshold: float = 0.50,
        min_matches_before_weak: int = 3,
        window_calculator: TimeWindowCalculator | None = None,
    ) -> None:
        self.strong_threshold = strong_threshold
        self.weak_threshold = weak_threshold
        self.min_matches_before_weak = min_matches_before_weak
        self.windows = window_calculator or TimeWindowCalculator()

    @staticmethod
    def similarity(a: np.ndarray, b: np.ndarray) -> float:
        """余弦相似度（输入已归一化，等价于点积），结果限制在 [-1, 1]."""
        if a.shape != b.shape:
            msg = f"向量维度不一致: {a.shape} vs {b.shape}"
            raise ValueError(msg)
        return float(np.clip(np.dot(a, b), -1.0, 1.0))

    def classify(self, score: float) -> MatchStrength:
        if score >= self.strong_threshold:
            return MatchStrength.STRONG
        if score >= self.weak_threshold:
            return MatchStrength.WEAK
        return MatchStrength.NONE

    def find_matches(
        self,
        source_embedding: np.ndarray,
        source_url: str,
        source_published_at: datetime | None,
        candidates: list[Candidate],
        now: datetime,
    ) -> list[ScoredMatch]:
        """
        在候选文章中查找匹配.

        排除源文章本身、时间窗口外和缺少发布时间的候选；
        强匹配达到数量要求时只保留强匹配，否则同时保留弱匹配。
        """
        eligible = [
            c
            for c in candidates
            if c.url != source_url
            and c.embedding.shape == source_embedding.shape
            and self._in_window(c, source_published_at, now)
        ]
        skipped = len(candidates) - len(eligible)
        if skipped:
            logger.debug(f"跳过 {skipped} 个不符合条件的候选")
        if not eligible:
            return []

        matrix = np.vstack([c.embedding for c in eligible]).astype(np.float32)
        scores = np.clip(matrix @ source_embedding.astype(np.float32), -1.0, 1.0)

        matches: list[ScoredMatch] = []
        for candidate, raw_score in zip(eligible, scores, strict=True):
            score = float(raw_score)
            strength = self.classify(score)
            if strength is MatchStrength.NONE:
                continue
            matches.append(
                ScoredMatch(
                    url=candidate.url,
                    score=score,
                    strength=strength,
                    published_at=candidate.published_at,
                )
            )
        return self.select(matches)

    def select(self, matches: list[ScoredMatch]) -> list[ScoredMatch]:
        """按分数排序，匹配总数足够时丢弃弱匹配."""
        ordered = sorted(matches, key=lambda m: m.score, reverse=True)
        if len(ordered) >= self.min_matches_before_weak:
            return [m for m in ordered if m.strength is MatchStrength.STRONG]
        return ordered

    def _in_window(
        self, candidate: Candidate, source_published_at: datetime | None, now: datetime
    ) -> bool:
        if source_published_at is None:
            return True
        if candidate.published_at is None:
            return False
        return self.windows.is_within_window(candidate.published_at, source_published_at, now)
