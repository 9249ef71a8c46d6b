"""Price Oracle — base-per-target exchange rate for a strategy.

Primary path: an on-chain swap quote for ``amount_in`` of the base asset.
Fallback path (only when the quote reports *no route*): a USD cross-rate
from reference prices.  Fallback rates are lower-confidence and tagged as
such so callers can surface it.
"""

import logging
from dataclasses import dataclass

from swaprunner.chain.models import resolve_asset
from swaprunner.chain.networks import get_network
from swaprunner.errors import NoLiquidityError, NoRouteError, QuoteError
from swaprunner.models.strategy import Strategy

logger = logging.getLogger("swaprunner")

SOURCE_QUOTE = "quote"
SOURCE_USD_FALLBACK = "usd_fallback"


@dataclass(frozen=True)
class PriceQuote:
    """A resolved rate and where it came from."""

    rate: float  # base units per 1 target unit
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_USD_FALLBACK


class PriceOracle:
    """Resolves base-per-target rates.

    Args:
        rpc: A ``JsonRpcClient`` (or duck-type exposing ``get_swap_quote``).
        reference_prices: A ``ReferencePriceService`` (or duck-type
            exposing ``get_usd_price``).
    """

    def __init__(self, rpc, reference_prices) -> None:
        self._rpc = rpc
        self._reference = reference_prices

    async def price_base_per_target(self, strategy: Strategy) -> PriceQuote:
        """Return the current rate for *strategy*.

        Raises:
            QuoteError: the quote failed for a reason other than *no route*,
                or returned zero output.
            NoLiquidityError: no route and no usable USD reference prices.
        """
        network = get_network(strategy.network)
        base = resolve_asset(network, strategy.base_asset, strategy.base_symbol)
        target = resolve_asset(network, strategy.target_asset, strategy.target_symbol)
        amount_in = strategy.amount_in_decimal

        try:
            amount_out = await self._rpc.get_swap_quote(network, base, target, amount_in)
        except NoRouteError as exc:
            logger.info("No on-chain route (%s) — using USD reference prices", exc)
            return await self._usd_fallback(network, base, target)

        if amount_out <= 0:
            raise QuoteError("Quote output is zero")
        return PriceQuote(rate=float(amount_in / amount_out), source=SOURCE_QUOTE)

    async def _usd_fallback(self, network, base, target) -> PriceQuote:
        base_usd = await self._reference.get_usd_price(network, base)
        target_usd = await self._reference.get_usd_price(network, target)
        if not base_usd or base_usd <= 0:
            raise NoLiquidityError(
                f"No pool and no USD price for base {base.symbol or base.address}"
            )
        if not target_usd or target_usd <= 0:
            raise NoLiquidityError(
                f"No pool and no USD price for target {target.symbol or target.address}"
            )
        return PriceQuote(rate=target_usd / base_usd, source=SOURCE_USD_FALLBACK)
