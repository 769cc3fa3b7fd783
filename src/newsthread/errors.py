"""异常定义."""

from datetime import datetime
from enum import Enum


class ErrorKind(str, Enum):
    """错误类别（用于流水线 Errored 状态）."""

    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    PAYWALL_DETECTED = "paywall_detected"
    EXTRACTION_ERROR = "extraction_error"
    NOT_FETCHED = "not_fetched"
    EMBEDDING_ERROR = "embedding_error"
    STORY_LIMIT = "story_limit"


class NewsThreadError(Exception):
    """所有业务异常的基类."""

    kind: ErrorKind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class RateLimitedError(NewsThreadError):
    """上游 API 处于限流冷却期."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, until: datetime | None, message: str | None = None) -> None:
        self.until = until
        super().__init__(message or f"上游 API 限流中，直到 {until}")


class UpstreamNetworkError(NewsThreadError):
    """上游 API 网络或服务端错误（已重试后）."""

    kind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class EmbeddingError(NewsThreadError):
    """嵌入模型加载或推理失败."""

    kind = ErrorKind.EMBEDDING_ERROR


class ModelNotLoadedError(EmbeddingError):
    """调用 embed 前未加载模型."""


class PipelineCancelledError(NewsThreadError):
    """匹配流水线在阶段之间被取消."""

    def __init__(self, url: str, stage: str) -> None:
        self.url = url
        self.stage = stage
        super().__init__(f"流水线已取消: {url} (阶段: {stage})")


class StoryLimitError(NewsThreadError):
    """关注的故事数量已达上限."""

    kind = ErrorKind.STORY_LIMIT

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"关注的故事已达上限 ({limit})，请先取消关注部分故事")
