"""后台任务执行条件."""

from abc import ABC, abstractmethod

from newsthread.utils.network import NetworkMonitor


class ExecutionConstraints(ABC):
    """后台任务执行条件（不满足时跳过本次调度）."""

    @abstractmethod
    def is_satisfied(self) -> bool:
        """当前是否允许执行."""
        ...

    def describe(self) -> str:
        return type(self).__name__


class AlwaysEligible(ExecutionConstraints):
    """无约束环境."""

    def is_satisfied(self) -> bool:
        return True


class NetworkConstraints(ExecutionConstraints):
    """要求有网络，可选要求不计流量网络."""

    def __init__(self, monitor: NetworkMonitor, unmetered_only: bool = False) -> None:
        self.monitor = monitor
        self.unmetered_only = unmetered_only

    def is_satisfied(self) -> bool:
        if not self.monitor.is_network_available():
            return False
        return not self.unmetered_only or self.monitor.is_unmetered()

    def describe(self) -> str:
        return "unmetered network" if self.unmetered_only else "any network"
