"""时间工具（统一使用 naive UTC）."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """获取当前 UTC 时间（不带时区信息，与数据库存储一致）."""
    return datetime.now(UTC).replace(tzinfo=None)


def ensure_naive_utc(value: datetime | None) -> datetime | None:
    """将带时区的时间转换为 naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """解析 ISO-8601 时间字符串（支持 Z 结尾）."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_naive_utc(parsed)


def to_iso_string(value: datetime) -> str:
    """格式化为上游 API 接受的 ISO 字符串（秒级，Z 结尾）."""
    return value.replace(microsecond=0).isoformat() + "Z"
