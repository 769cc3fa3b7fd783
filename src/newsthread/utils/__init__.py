"""工具函数."""

from newsthread.utils.network import NetworkMonitor, StaticNetworkMonitor
from newsthread.utils.timeutil import ensure_naive_utc, utcnow
from newsthread.utils.vectors import bytes_to_vector, l2_normalize, vector_to_bytes

__all__ = [
    "NetworkMonitor",
    "StaticNetworkMonitor",
    "bytes_to_vector",
    "ensure_naive_utc",
    "l2_normalize",
    "utcnow",
    "vector_to_bytes",
]
