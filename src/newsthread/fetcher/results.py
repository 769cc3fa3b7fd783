"""全文抓取结果."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from newsthread.errors import ErrorKind


class ExtractionSuccess(BaseModel):
    """抓取并提取成功."""

    kind: Literal["success"] = "success"
    text: str
    title: str | None = None
    byline: str | None = None
    excerpt: str | None = None


class PaywallDetected(BaseModel):
    """检测到付费墙（或正文过短）."""

    kind: Literal["paywall_detected"] = "paywall_detected"
    reason: str


class NetworkError(BaseModel):
    """网络请求失败."""

    kind: Literal["network_error"] = "network_error"
    message: str


class ExtractionError(BaseModel):
    """正文提取失败或已永久失败."""

    kind: Literal["extraction_error"] = "extraction_error"
    message: str


class NotFetched(BaseModel):
    """未执行抓取（冷却中、抓取偏好或网络条件不允许）."""

    kind: Literal["not_fetched"] = "not_fetched"
    reason: str


ExtractionResult = Annotated[
    ExtractionSuccess | PaywallDetected | NetworkError | ExtractionError | NotFetched,
    Field(discriminator="kind"),
]


def error_kind_of(result: ExtractionResult) -> ErrorKind | None:
    """抓取结果对应的错误类别，成功时返回 None."""
    match result:
        case ExtractionSuccess():
            return None
        case PaywallDetected():
            return ErrorKind.PAYWALL_DETECTED
        case NetworkError():
            return ErrorKind.NETWORK_ERROR
        case ExtractionError():
            return ErrorKind.EXTRACTION_ERROR
        case NotFetched():
            return ErrorKind.NOT_FETCHED
