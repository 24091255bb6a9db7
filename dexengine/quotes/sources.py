"""Quote sources consulted by the aggregator.

A source answers "how much `token_out` for `amount_in` of `token_in`" or
returns None when it has no route. External sources are untrusted: their
answers still go through the aggregator's sanity floor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from dexengine.constants import NATIVE_VENUE
from dexengine.errors import DexError
from dexengine.pools.registry import PoolRegistry

logger = structlog.get_logger()


@dataclass(frozen=True)
class Quote:
    """A single venue's answer.

    Attributes:
        venue: Source name
        amount_out: Output in atomic units of token_out
        route_ref: Pool id for native quotes, calldata or route id for external ones
        price_impact: Display-only percentage, None when the venue doesn't report it
    """

    venue: str
    amount_out: int
    route_ref: str | None = None
    price_impact: float | None = None
    details: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class QuoteSource(Protocol):
    name: str

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> Quote | None: ...


class NativePoolSource:
    """Quotes against the engine's own pools."""

    name = NATIVE_VENUE

    def __init__(self, registry: PoolRegistry) -> None:
        self.registry = registry

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> Quote | None:
        try:
            pool = self.registry.find(token_in, token_out)
        except DexError:
            return None
        if pool is None or not pool.active or not pool.has_liquidity:
            return None

        with pool.lock:
            direction = pool.direction_for(token_in)
            reserve_in, reserve_out = pool.reserves_for(direction)
            amount_out = pool.amm.quote_out(amount_in, reserve_in, reserve_out, pool.fee_bps)

        if amount_out <= 0:
            return None
        impact = pool.amm.price_impact_pct(amount_in, amount_out, reserve_in, reserve_out)
        return Quote(
            venue=self.name,
            amount_out=amount_out,
            route_ref=pool.pool_id,
            price_impact=impact,
            details={"reserve_in": reserve_in, "reserve_out": reserve_out},
        )


class HttpQuoteSource:
    """External aggregator reached over HTTP.

    Issues `GET {base_url}/quote?src=..&dst=..&amount=..` and reads the output
    amount from `amount_field` of the JSON body. Route data, when present
    under `route_field`, is passed through as the route reference.

    Any failure (network error, non-2xx status, malformed body) yields None.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        amount_field: str = "dstAmount",
        route_field: str = "tx",
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 3.0,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.amount_field = amount_field
        self.route_field = route_field
        self.headers = {"accept": "application/json", **(headers or {})}
        self.timeout = timeout
        self._client = client

    async def _get(self, params: dict[str, str]) -> httpx.Response:
        url = f"{self.base_url}/quote"
        if self._client is not None:
            return await self._client.get(url, params=params, headers=self.headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, params=params, headers=self.headers)

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> Quote | None:
        params = {"src": token_in, "dst": token_out, "amount": str(amount_in)}
        try:
            response = await self._get(params)
            response.raise_for_status()
            body = response.json()
            amount_out = int(body[self.amount_field])
        except httpx.HTTPStatusError as e:
            logger.warning(
                "venue_quote_rejected",
                venue=self.name,
                status=e.response.status_code,
            )
            return None
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("venue_quote_failed", venue=self.name, error=str(e))
            return None

        route = body.get(self.route_field)
        return Quote(
            venue=self.name,
            amount_out=amount_out,
            route_ref=route if isinstance(route, str) else None,
            details={"raw": body},
        )


__all__ = ["Quote", "QuoteSource", "NativePoolSource", "HttpQuoteSource"]
