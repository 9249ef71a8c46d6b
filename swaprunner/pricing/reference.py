"""USD reference prices from the DexScreener public API.

Best-effort: the highest-liquidity pair on the strategy's chain wins.
Results (including failures) are cached briefly to stay under the rate
limit.
"""

import asyncio
import logging
import time
from typing import Optional

import httpx

from swaprunner.chain.models import ResolvedAsset
from swaprunner.chain.networks import NetworkInfo

logger = logging.getLogger("swaprunner")

DEXSCREENER_BASE = "https://api.dexscreener.com/latest/dex"
DEFAULT_TTL_SECONDS = 60.0
ERROR_TTL_SECONDS = 10.0

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


def best_pair_price(pairs: list[dict], chain_id: str) -> Optional[float]:
    """Return ``priceUsd`` of the most liquid valid pair on *chain_id*."""
    best: Optional[float] = None
    best_liq = -1.0
    for p in pairs:
        if (p.get("chainId") or "").lower() != chain_id:
            continue
        try:
            px = float(p.get("priceUsd") or "nan")
        except (TypeError, ValueError):
            continue
        if not px > 0:
            continue
        liq = float((p.get("liquidity") or {}).get("usd") or 0)
        if liq > best_liq:
            best = px
            best_liq = liq
    return best


class ReferencePriceService:
    """Resolves USD prices for assets, treating the stable reference as 1.0.

    Args:
        ttl_seconds: How long a successful lookup is reused.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        timeout: float = 12.0,
        clock=time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._timeout = timeout
        self._clock = clock
        self._cache: dict[str, tuple[Optional[float], float]] = {}

    async def get_usd_price(
        self,
        network: NetworkInfo,
        asset: ResolvedAsset,
    ) -> Optional[float]:
        """USD price of *asset*, or ``None`` when unavailable."""
        if asset.is_stable:
            return 1.0
        if not network.dexscreener_chain:
            return None

        address = asset.quote_address(network).lower()
        key = f"{network.dexscreener_chain}:{address}"
        now = self._clock()
        hit = self._cache.get(key)
        if hit and hit[1] > now:
            return hit[0]

        try:
            price = await self._fetch(network.dexscreener_chain, address)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("DexScreener lookup failed for %s: %s", key, exc)
            self._cache[key] = (None, now + ERROR_TTL_SECONDS)
            return None

        self._cache[key] = (price, now + self._ttl)
        return price

    async def _fetch(self, chain_id: str, address: str) -> Optional[float]:
        url = f"{DEXSCREENER_BASE}/tokens/{address}"
        resp = await self._get_with_retry(url)
        return best_pair_price(resp.json().get("pairs") or [], chain_id)

    async def _get_with_retry(self, url: str) -> httpx.Response:
        """GET *url* with exponential-backoff retry.

        Retries on rate-limits (429), transient server errors (502, 503,
        504) and transport errors.  Other errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(url, timeout=self._timeout)

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "DexScreener returned %d — retry %d/%d in %.1fs",
                        resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "DexScreener transport error (%s) — retry %d/%d in %.1fs",
                    exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]
