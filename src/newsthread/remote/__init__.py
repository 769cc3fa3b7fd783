"""上游服务客户端."""

from newsthread.remote.html_fetcher import (
    FetchedHtml,
    FetchFailure,
    FetchOutcome,
    HtmlFetcher,
)
from newsthread.remote.newsapi import NewsApiClient, NewsApiConfig, parse_articles

__all__ = [
    "FetchFailure",
    "FetchOutcome",
    "FetchedHtml",
    "HtmlFetcher",
    "NewsApiClient",
    "NewsApiConfig",
    "parse_articles",
]
