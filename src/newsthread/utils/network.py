"""网络状态信号."""

from abc import ABC, abstractmethod


class NetworkMonitor(ABC):
    """网络状态抽象（由宿主环境提供）."""

    @abstractmethod
    def is_network_available(self) -> bool:
        """当前是否有可用网络."""
        ...

    @abstractmethod
    def is_unmetered(self) -> bool:
        """当前网络是否不计流量（如 WiFi）."""
        ...


class StaticNetworkMonitor(NetworkMonitor):
    """固定值的网络状态（服务端部署和测试使用）."""

    def __init__(self, available: bool = True, unmetered: bool = True) -> None:
        self.available = available
        self.unmetered = unmetered

    def is_network_available(self) -> bool:
        return self.available

    def is_unmetered(self) -> bool:
        return self.available and self.unmetered
