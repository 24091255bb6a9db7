"""Tests for the HTTP quote venue."""

import asyncio

import httpx

from dexengine.quotes.sources import HttpQuoteSource, QuoteSource
from tests.helpers import USDC, WETH


def make_source(handler, **kwargs) -> HttpQuoteSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpQuoteSource("oneinch", "https://quotes.example/v6.0/1/", client=client, **kwargs)


class TestHttpQuoteSource:
    def test_parses_amount_and_route(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"dstAmount": "39486", "tx": "0xdeadbeef"})

        quote = asyncio.run(make_source(handler).quote(USDC, WETH, 10_000))

        assert quote.venue == "oneinch"
        assert quote.amount_out == 39486
        assert quote.route_ref == "0xdeadbeef"
        request = seen[0]
        assert request.url.path == "/v6.0/1/quote"
        assert request.url.params["src"] == USDC
        assert request.url.params["dst"] == WETH
        assert request.url.params["amount"] == "10000"

    def test_custom_amount_field_and_headers(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer key"
            return httpx.Response(200, json={"toAmount": 77})

        source = make_source(handler, amount_field="toAmount", headers={"Authorization": "Bearer key"})
        quote = asyncio.run(source.quote(USDC, WETH, 1))
        assert quote.amount_out == 77
        assert quote.route_ref is None

    def test_http_error_returns_none(self):
        source = make_source(lambda request: httpx.Response(429, json={"error": "rate limited"}))
        assert asyncio.run(source.quote(USDC, WETH, 1)) is None

    def test_malformed_body_returns_none(self):
        source = make_source(lambda request: httpx.Response(200, json={"unexpected": 1}))
        assert asyncio.run(source.quote(USDC, WETH, 1)) is None

    def test_non_numeric_amount_returns_none(self):
        source = make_source(lambda request: httpx.Response(200, json={"dstAmount": "lots"}))
        assert asyncio.run(source.quote(USDC, WETH, 1)) is None

    def test_network_error_returns_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        assert asyncio.run(make_source(handler).quote(USDC, WETH, 1)) is None

    def test_satisfies_protocol(self):
        assert isinstance(make_source(lambda request: httpx.Response(200)), QuoteSource)
