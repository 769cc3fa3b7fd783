"""配额守卫模块."""

from newsthread.quota.guard import QuotaGuard, QuotaNotice, retry_after_until

__all__ = ["QuotaGuard", "QuotaNotice", "retry_after_until"]
