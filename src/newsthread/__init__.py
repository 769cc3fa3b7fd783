"""NewsThread: 本地新闻多视角匹配."""

__version__ = "0.1.0"
