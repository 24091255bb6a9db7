"""Best-quote selection across the native pools and external venues.

The aggregator fee comes off the input first; every venue is then asked to
quote the net amount concurrently, each under its own timeout, so a slow
venue never holds up the others.

Selection rule:
    native wins when native_out >= best_external_out * (1 - preference),
    otherwise the strict maximum by output wins.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from dexengine.amm.constant_product import ConstantProductAMM, constant_product
from dexengine.config import AggregatorConfig
from dexengine.constants import BPS_DENOMINATOR, NATIVE_VENUE, NO_ROUTE_VENUE, SANITY_FLOOR_DIVISOR
from dexengine.errors import InvalidAmount
from dexengine.models.types import canonical_pair, normalize_token
from dexengine.quotes.sources import Quote, QuoteSource

logger = structlog.get_logger()


@dataclass(frozen=True)
class BestQuote:
    """Aggregated answer.

    `venue == "none"` means no route: `amount_out` is zero and the caller
    must not execute a swap, but `fee_taken` still reports the fee that
    would have been deducted.
    """

    venue: str
    amount_out: int
    fee_taken: int
    net_in: int
    route_ref: str | None = None
    price_impact: float | None = None
    candidates: list[Quote] = field(default_factory=list)

    @property
    def has_route(self) -> bool:
        return self.venue != NO_ROUTE_VENUE


class QuoteAggregator:
    def __init__(
        self,
        sources: Sequence[QuoteSource],
        config: AggregatorConfig | None = None,
        amm: ConstantProductAMM | None = None,
    ) -> None:
        self.sources = list(sources)
        self.config = config or AggregatorConfig()
        self.amm = amm or constant_product

    async def _ask(
        self,
        source: QuoteSource,
        token_in: str,
        token_out: str,
        net_in: int,
    ) -> Quote | None:
        try:
            return await asyncio.wait_for(
                source.quote(token_in, token_out, net_in),
                timeout=self.config.venue_timeout,
            )
        except TimeoutError:
            logger.warning("venue_timeout", venue=source.name, timeout=self.config.venue_timeout)
            return None
        except Exception:
            logger.exception("venue_error", venue=source.name)
            return None

    def _passes_floor(self, quote: Quote, net_in: int) -> bool:
        if quote.venue == NATIVE_VENUE:
            return quote.amount_out > 0
        floor = net_in // SANITY_FLOOR_DIVISOR
        if quote.amount_out <= 0 or quote.amount_out < floor:
            logger.warning(
                "venue_quote_below_floor",
                venue=quote.venue,
                amount_out=quote.amount_out,
                floor=floor,
            )
            return False
        return True

    def select(self, quotes: Sequence[Quote]) -> Quote | None:
        """Apply the native-preference rule to already-filtered quotes."""
        if not quotes:
            return None
        native = next((q for q in quotes if q.venue == NATIVE_VENUE), None)
        external = [q for q in quotes if q.venue != NATIVE_VENUE]
        if native is not None and external:
            best_external = max(external, key=lambda q: q.amount_out)
            threshold_bps = BPS_DENOMINATOR - self.config.native_preference_bps
            if native.amount_out * BPS_DENOMINATOR >= best_external.amount_out * threshold_bps:
                return native
            return best_external
        return max(quotes, key=lambda q: q.amount_out)

    async def get_best_quote(self, token_in: str, token_out: str, amount_in: int) -> BestQuote:
        """Best quote for swapping `amount_in` of token_in into token_out.

        Raises:
            InvalidToken, IdenticalTokens: On malformed or identical tokens
            InvalidAmount: If amount_in is not positive
        """
        canonical_pair(token_in, token_out)
        token_in, token_out = normalize_token(token_in), normalize_token(token_out)
        if amount_in <= 0:
            raise InvalidAmount(f"Amount in must be positive, got {amount_in}")

        net_in, fee = self.amm.split_fee(amount_in, self.config.fee_bps)
        answers = await asyncio.gather(
            *(self._ask(source, token_in, token_out, net_in) for source in self.sources)
        )
        quotes = [q for q in answers if q is not None and self._passes_floor(q, net_in)]
        chosen = self.select(quotes)

        if chosen is None:
            logger.info("no_route", token_in=token_in, token_out=token_out, amount_in=amount_in)
            return BestQuote(venue=NO_ROUTE_VENUE, amount_out=0, fee_taken=fee, net_in=net_in)

        logger.info(
            "best_quote_selected",
            venue=chosen.venue,
            amount_out=chosen.amount_out,
            candidates=len(quotes),
        )
        return BestQuote(
            venue=chosen.venue,
            amount_out=chosen.amount_out,
            fee_taken=fee,
            net_in=net_in,
            route_ref=chosen.route_ref,
            price_impact=chosen.price_impact,
            candidates=quotes,
        )


__all__ = ["BestQuote", "QuoteAggregator"]
