"""全文抓取模块."""

from newsthread.fetcher.detector import PaywallDetector
from newsthread.fetcher.extractor import FetchPreference, TextExtractor
from newsthread.fetcher.results import (
    ExtractionError,
    ExtractionResult,
    ExtractionSuccess,
    NetworkError,
    NotFetched,
    PaywallDetected,
    error_kind_of,
)

__all__ = [
    "ExtractionError",
    "ExtractionResult",
    "ExtractionSuccess",
    "FetchPreference",
    "NetworkError",
    "NotFetched",
    "PaywallDetected",
    "PaywallDetector",
    "TextExtractor",
    "error_kind_of",
]
