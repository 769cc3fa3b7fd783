"""核心业务逻辑."""

from newsthread.core.clustering import (
    BiasBucket,
    BiasClusterer,
    MatchQuality,
    PerspectiveArticle,
    PerspectiveClusters,
)
from newsthread.core.feed import FeedService
from newsthread.core.orchestrator import ComparisonOutcome, MatchOrchestrator, PipelineStage
from newsthread.core.ratings import RatingIndex, SourceRatingProvider, StaticSourceRatings
from newsthread.core.similarity import (
    Candidate,
    MatchStrength,
    ScoredMatch,
    SimilarityMatcher,
    TimeWindowCalculator,
)
from newsthread.core.tracking import StoryMatch, StoryTracker, StoryWithArticles

__all__ = [
    "BiasBucket",
    "BiasClusterer",
    "Candidate",
    "ComparisonOutcome",
    "FeedService",
    "MatchOrchestrator",
    "MatchQuality",
    "MatchStrength",
    "PerspectiveArticle",
    "PerspectiveClusters",
    "PipelineStage",
    "RatingIndex",
    "ScoredMatch",
    "SimilarityMatcher",
    "SourceRatingProvider",
    "StaticSourceRatings",
    "StoryMatch",
    "StoryTracker",
    "StoryWithArticles",
    "TimeWindowCalculator",
]
