"""全文提取器测试."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from newsthread.cache import CacheStore
from newsthread.fetcher import (
    ExtractionError,
    ExtractionSuccess,
    FetchPreference,
    NetworkError,
    NotFetched,
    PaywallDetected,
    TextExtractor,
    error_kind_of,
)
from newsthread.errors import ErrorKind
from newsthread.remote import FetchedHtml, FetchFailure
from newsthread.utils.network import StaticNetworkMonitor

from .conftest import NOW, make_article

URL = "https://www.example-news.com/politics/climate-bill"

PARAGRAPH = (
    "The Senate passed the climate bill late on Friday after a marathon debate that "
    "stretched well past midnight, sending the measure to the House where leaders "
    "expect a close vote next week."
)

ARTICLE_HTML = f"""
<html>
<head><title>Senate passes climate bill</title>
<meta name="author" content="Jane Doe"></head>
<body>
<nav><a href="/">Home</a></nav>
<article>
<h1>Senate passes climate bill</h1>
<p>{PARAGRAPH}</p>
<p>Supporters said the package would cut emissions across the power sector and fund
new transmission lines, while opponents warned about the cost to consumers.</p>
<p>The vote split largely along party lines, with two members crossing over in the
final tally after amendments on agricultural exemptions were adopted.</p>
</article>
<footer>Copyright</footer>
</body>
</html>
"""

PAYWALL_HTML = '<html><body><p>Teaser</p><div class="paywall">Subscribe</div></body></html>'


def _fetcher(outcome) -> AsyncMock:
    fetcher = AsyncMock()
    fetcher.fetch = AsyncMock(return_value=outcome)
    return fetcher


def _extractor(
    store: CacheStore,
    fetcher,
    network: StaticNetworkMonitor | None = None,
    preference: FetchPreference = FetchPreference.ALWAYS,
) -> TextExtractor:
    return TextExtractor(
        store,
        fetcher,
        network or StaticNetworkMonitor(),
        preference_provider=lambda: preference,
    )


async def _cached(store: CacheStore):
    return await store.upsert_article(make_article(URL), NOW)


class TestExtractSuccess:
    """成功提取测试."""

    async def test_extracts_article_body(self, store: CacheStore):
        """提取正文并保存."""
        article = await _cached(store)
        extractor = _extractor(store, _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML)))

        result = await extractor.extract(article, NOW)

        assert isinstance(result, ExtractionSuccess)
        assert "marathon debate" in result.text
        cached = await store.get_article(URL)
        assert cached is not None
        assert cached.full_text == result.text
        assert cached.extraction_retry_count == 0

    async def test_existing_full_text_short_circuits(self, store: CacheStore):
        """已有全文时不再抓取."""
        article = await _cached(store)
        await store.record_extraction_success(URL, "already extracted")
        fetcher = _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML))

        result = await _extractor(store, fetcher).extract(article, NOW)

        assert isinstance(result, ExtractionSuccess)
        assert result.text == "already extracted"
        fetcher.fetch.assert_not_called()

    async def test_retry_success_resets_state(self, store: CacheStore):
        """冷却后重试成功，失败状态清零."""
        article = await _cached(store)
        await store.mark_extraction_failed(URL, NOW)
        extractor = _extractor(store, _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML)))

        result = await extractor.extract(article, NOW + timedelta(minutes=6))

        assert isinstance(result, ExtractionSuccess)
        cached = await store.get_article(URL)
        assert cached.extraction_retry_count == 0
        assert cached.extraction_failed_at is None


class TestExtractFailures:
    """失败路径测试."""

    async def test_paywall_is_permanent(self, store: CacheStore):
        """付费墙直接进入永久失败."""
        article = await _cached(store)
        extractor = _extractor(store, _fetcher(FetchedHtml(url=URL, html=PAYWALL_HTML)))

        result = await extractor.extract(article, NOW)

        assert isinstance(result, PaywallDetected)
        assert result.reason == "paywall element: .paywall"
        cached = await store.get_article(URL)
        assert cached.extraction_retry_count == 2
        assert store.is_permanently_failed(cached)

    async def test_structured_data_paywall_in_single_call(self, store: CacheStore):
        """结构化数据声明非免费时，一次调用即进入永久失败."""
        article = await _cached(store)
        html = (
            '<html><head><script type="application/ld+json">'
            '{"@type":"NewsArticle","isAccessibleForFree":false}'
            f"</script></head><body><article><p>{PARAGRAPH}</p></article></body></html>"
        )
        extractor = _extractor(store, _fetcher(FetchedHtml(url=URL, html=html)))

        result = await extractor.extract(article, NOW)

        assert isinstance(result, PaywallDetected)
        assert (await store.get_article(URL)).extraction_retry_count >= 2

    async def test_network_failure_increments_once(self, store: CacheStore):
        """网络失败计一次."""
        article = await _cached(store)
        failure = FetchFailure(url=URL, reason="timeout", message="请求超时")
        result = await _extractor(store, _fetcher(failure)).extract(article, NOW)

        assert isinstance(result, NetworkError)
        cached = await store.get_article(URL)
        assert cached.extraction_retry_count == 1
        assert cached.extraction_failed_at == NOW

    async def test_short_content_counts_as_paywall(self, store: CacheStore):
        """正文过短视为付费墙，但只计一次."""
        article = await _cached(store)
        html = "<html><body><article><p>Too short.</p></article></body></html>"
        result = await _extractor(store, _fetcher(FetchedHtml(url=URL, html=html))).extract(
            article, NOW
        )

        assert isinstance(result, PaywallDetected)
        assert result.reason.startswith("content too short")
        assert (await store.get_article(URL)).extraction_retry_count == 1

    async def test_parser_exception(self, store: CacheStore, monkeypatch: pytest.MonkeyPatch):
        """提取异常记为提取错误."""
        article = await _cached(store)
        extractor = _extractor(store, _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML)))

        def boom(html: str, url: str) -> dict:
            raise RuntimeError("parser crashed")

        monkeypatch.setattr(extractor, "_extract_sync", boom)
        result = await extractor.extract(article, NOW)

        assert isinstance(result, ExtractionError)
        assert (await store.get_article(URL)).extraction_retry_count == 1

    async def test_cooldown_blocks_retry(self, store: CacheStore):
        """冷却期内不发起请求."""
        article = await _cached(store)
        await store.mark_extraction_failed(URL, NOW)
        fetcher = _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML))

        result = await _extractor(store, fetcher).extract(article, NOW + timedelta(minutes=3))

        assert isinstance(result, NotFetched)
        fetcher.fetch.assert_not_called()

    async def test_permanent_failure_does_no_io(self, store: CacheStore):
        """永久失败的文章不再发起请求."""
        article = await _cached(store)
        await store.mark_extraction_failed(URL, NOW, increments=2)
        fetcher = _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML))

        result = await _extractor(store, fetcher).extract(article, NOW + timedelta(days=1))

        assert isinstance(result, ExtractionError)
        fetcher.fetch.assert_not_called()
        assert (await store.get_article(URL)).extraction_retry_count == 2

    async def test_failure_count_never_decreases(self, store: CacheStore):
        """连续失败时计数单调递增."""
        article = await _cached(store)
        failure = FetchFailure(url=URL, reason="network", message="down")
        extractor = _extractor(store, _fetcher(failure))

        counts = []
        for minutes in (0, 6, 12):
            await extractor.extract(article, NOW + timedelta(minutes=minutes))
            counts.append((await store.get_article(URL)).extraction_retry_count)

        assert counts == [1, 2, 2]


class TestFetchPreference:
    """抓取偏好和网络条件测试."""

    async def test_never(self, store: CacheStore):
        """偏好为 never 时不抓取."""
        article = await _cached(store)
        fetcher = _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML))

        result = await _extractor(store, fetcher, preference=FetchPreference.NEVER).extract(
            article, NOW
        )

        assert isinstance(result, NotFetched)
        fetcher.fetch.assert_not_called()

    async def test_unmetered_only_on_metered_network(self, store: CacheStore):
        """计费网络下不抓取."""
        article = await _cached(store)
        fetcher = _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML))
        network = StaticNetworkMonitor(available=True, unmetered=False)

        result = await _extractor(
            store, fetcher, network, FetchPreference.UNMETERED_ONLY
        ).extract(article, NOW)

        assert isinstance(result, NotFetched)
        fetcher.fetch.assert_not_called()
        assert (await store.get_article(URL)).extraction_retry_count == 0

    async def test_offline(self, store: CacheStore):
        """离线时不抓取."""
        article = await _cached(store)
        fetcher = _fetcher(FetchedHtml(url=URL, html=ARTICLE_HTML))

        result = await _extractor(
            store, fetcher, StaticNetworkMonitor(available=False)
        ).extract(article, NOW)

        assert isinstance(result, NotFetched)
        fetcher.fetch.assert_not_called()

    def test_parse_unknown_value(self):
        """未知偏好按 always 处理."""
        assert FetchPreference.parse("WIFI_ONLY") is FetchPreference.ALWAYS
        assert FetchPreference.parse("UNMETERED_ONLY") is FetchPreference.UNMETERED_ONLY


class TestBatch:
    """批量抓取测试."""

    async def test_extract_batch(self, store: CacheStore):
        """批量抓取所有待处理文章."""
        await store.upsert_articles(
            [make_article(f"https://www.example-news.com/{i}") for i in range(3)], NOW
        )
        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(
            side_effect=lambda url: FetchedHtml(url=url, html=ARTICLE_HTML)
        )

        results = await _extractor(store, fetcher).extract_batch(limit=10, now=NOW)

        assert len(results) == 3
        assert all(isinstance(r, ExtractionSuccess) for r in results.values())

    async def test_extract_by_url_missing(self, store: CacheStore):
        """未缓存的 URL."""
        result = await _extractor(store, _fetcher(None)).extract_by_url("https://nope.example")
        assert isinstance(result, NotFetched)


class TestErrorKind:
    """结果到错误类别的映射."""

    def test_mapping(self):
        assert error_kind_of(ExtractionSuccess(text="x")) is None
        assert error_kind_of(PaywallDetected(reason="x")) is ErrorKind.PAYWALL_DETECTED
        assert error_kind_of(NetworkError(message="x")) is ErrorKind.NETWORK_ERROR
        assert error_kind_of(ExtractionError(message="x")) is ErrorKind.EXTRACTION_ERROR
        assert error_kind_of(NotFetched(reason="x")) is ErrorKind.NOT_FETCHED
