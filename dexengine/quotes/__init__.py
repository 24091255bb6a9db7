"""Quote aggregation across native pools and external venues."""

from dexengine.quotes.aggregator import BestQuote, QuoteAggregator
from dexengine.quotes.sources import HttpQuoteSource, NativePoolSource, Quote, QuoteSource

__all__ = [
    "BestQuote",
    "QuoteAggregator",
    "HttpQuoteSource",
    "NativePoolSource",
    "Quote",
    "QuoteSource",
]
