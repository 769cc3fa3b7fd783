"""后台任务模块."""

from newsthread.scheduler.constraints import (
    AlwaysEligible,
    ExecutionConstraints,
    NetworkConstraints,
)
from newsthread.scheduler.runner import BatchAnalysisRunner, BatchStatus

__all__ = [
    "AlwaysEligible",
    "BatchAnalysisRunner",
    "BatchStatus",
    "ExecutionConstraints",
    "NetworkConstraints",
]
