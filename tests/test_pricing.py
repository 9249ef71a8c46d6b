"""Tests for swaprunner.pricing — DexScreener reference prices and the oracle."""

from decimal import Decimal

import httpx
import pytest

from swaprunner.chain.models import resolve_asset
from swaprunner.chain.networks import get_network
from swaprunner.errors import NoLiquidityError, NoRouteError, QuoteError
from swaprunner.models.strategy import Strategy
from swaprunner.pricing import reference
from swaprunner.pricing.oracle import SOURCE_QUOTE, SOURCE_USD_FALLBACK, PriceOracle
from swaprunner.pricing.reference import ReferencePriceService, best_pair_price

TOKEN = "0x1111111111111111111111111111111111111111"
BASE = get_network("base")

MOCK_DEXSCREENER_RESPONSE = {
    "pairs": [
        {"chainId": "base", "priceUsd": "2.00", "liquidity": {"usd": 10_000}},
        {"chainId": "base", "priceUsd": "2.10", "liquidity": {"usd": 250_000}},
        {"chainId": "ethereum", "priceUsd": "9.99", "liquidity": {"usd": 9_000_000}},
        {"chainId": "base", "priceUsd": None, "liquidity": {"usd": 1_000_000}},
    ]
}


def _make_strategy(**overrides) -> Strategy:
    defaults = dict(
        network="base",
        base_asset="USDC",
        target_asset=TOKEN,
        amount_in="50",
        take_profit_pct=2.0,
        stop_loss_pct=2.0,
    )
    defaults.update(overrides)
    return Strategy(**defaults)


@pytest.fixture(autouse=True)
def _no_retry_delay(monkeypatch):
    monkeypatch.setattr(reference, "_RETRY_BASE_DELAY", 0.0)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


# ── Reference prices ─────────────────────────────────────────────────────


def test_best_pair_price_picks_most_liquid_on_chain():
    assert best_pair_price(MOCK_DEXSCREENER_RESPONSE["pairs"], "base") == pytest.approx(2.10)
    assert best_pair_price([], "base") is None


@pytest.mark.asyncio
async def test_stable_asset_is_one_dollar():
    service = ReferencePriceService()
    assert await service.get_usd_price(BASE, resolve_asset(BASE, "USDC")) == 1.0


@pytest.mark.asyncio
async def test_network_without_dexscreener_returns_none():
    sepolia = get_network("sepolia")
    service = ReferencePriceService()
    assert await service.get_usd_price(sepolia, resolve_asset(sepolia, TOKEN)) is None


@pytest.mark.asyncio
async def test_usd_price_is_cached(monkeypatch):
    requests = []

    async def _mock_get(self, url, *, timeout=None):
        requests.append(url)
        return httpx.Response(
            200, json=MOCK_DEXSCREENER_RESPONSE, request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    clock = FakeClock()
    service = ReferencePriceService(ttl_seconds=60, clock=clock)
    token = resolve_asset(BASE, TOKEN)

    assert await service.get_usd_price(BASE, token) == pytest.approx(2.10)
    assert await service.get_usd_price(BASE, token) == pytest.approx(2.10)
    assert len(requests) == 1
    assert requests[0].endswith(f"/tokens/{TOKEN.lower()}")

    clock.now += 61
    await service.get_usd_price(BASE, token)
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_native_asset_is_looked_up_as_wrapped(monkeypatch):
    requests = []

    async def _mock_get(self, url, *, timeout=None):
        requests.append(url)
        return httpx.Response(200, json={"pairs": []}, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    service = ReferencePriceService()
    assert await service.get_usd_price(BASE, resolve_asset(BASE, "NATIVE")) is None
    assert requests[0].endswith(BASE.wrapped_native.lower())


@pytest.mark.asyncio
async def test_lookup_retries_rate_limit_then_succeeds(monkeypatch):
    requests = []

    async def _mock_get(self, url, *, timeout=None):
        requests.append(url)
        if len(requests) == 1:
            return httpx.Response(429, request=httpx.Request("GET", url))
        return httpx.Response(
            200,
            json={"pairs": [{"chainId": "base", "priceUsd": "2.0", "liquidity": {"usd": 1}}]},
            request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    service = ReferencePriceService()
    assert await service.get_usd_price(BASE, resolve_asset(BASE, TOKEN)) == pytest.approx(2.0)
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_lookup_failure_returns_none_and_backs_off(monkeypatch):
    requests = []

    async def _mock_get(self, url, *, timeout=None):
        requests.append(url)
        return httpx.Response(429, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    clock = FakeClock()
    service = ReferencePriceService(clock=clock)
    token = resolve_asset(BASE, TOKEN)

    assert await service.get_usd_price(BASE, token) is None
    assert len(requests) == reference._MAX_RETRIES
    assert await service.get_usd_price(BASE, token) is None
    assert len(requests) == reference._MAX_RETRIES

    clock.now += 11
    await service.get_usd_price(BASE, token)
    assert len(requests) == 2 * reference._MAX_RETRIES


@pytest.mark.asyncio
async def test_lookup_does_not_retry_client_errors(monkeypatch):
    requests = []

    async def _mock_get(self, url, *, timeout=None):
        requests.append(url)
        return httpx.Response(404, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    service = ReferencePriceService()
    assert await service.get_usd_price(BASE, resolve_asset(BASE, TOKEN)) is None
    assert len(requests) == 1


# ── Oracle ───────────────────────────────────────────────────────────────


class MockQuoter:
    def __init__(self, out=None, error: Exception | None = None) -> None:
        self.out = out
        self.error = error
        self.requests = []

    async def get_swap_quote(self, network, token_in, token_out, amount_in):
        self.requests.append((network.name, token_in.address, token_out.address, amount_in))
        if self.error is not None:
            raise self.error
        return self.out


class MockReference:
    def __init__(self, prices: dict) -> None:
        self.prices = prices

    async def get_usd_price(self, network, asset):
        return self.prices.get(asset.address)


@pytest.mark.asyncio
async def test_oracle_rate_from_quote():
    quoter = MockQuoter(out=Decimal("0.5"))
    oracle = PriceOracle(quoter, MockReference({}))

    quote = await oracle.price_base_per_target(_make_strategy())

    assert quote.rate == pytest.approx(100.0)
    assert quote.source == SOURCE_QUOTE
    assert not quote.is_fallback
    assert quoter.requests == [("Base", BASE.usdc, TOKEN, Decimal("50"))]


@pytest.mark.asyncio
async def test_oracle_falls_back_only_on_no_route():
    oracle = PriceOracle(
        MockQuoter(error=NoRouteError("no pool")),
        MockReference({BASE.usdc: 1.0, TOKEN: 2.5}),
    )
    quote = await oracle.price_base_per_target(_make_strategy())
    assert quote.rate == pytest.approx(2.5)
    assert quote.is_fallback
    assert quote.source == SOURCE_USD_FALLBACK


@pytest.mark.asyncio
async def test_oracle_transient_failure_does_not_fall_back():
    oracle = PriceOracle(
        MockQuoter(error=QuoteError("timeout")),
        MockReference({BASE.usdc: 1.0, TOKEN: 2.5}),
    )
    with pytest.raises(QuoteError) as excinfo:
        await oracle.price_base_per_target(_make_strategy())
    assert not isinstance(excinfo.value, NoLiquidityError)


@pytest.mark.asyncio
async def test_oracle_no_route_and_no_usd_price():
    oracle = PriceOracle(
        MockQuoter(error=NoRouteError("no pool")),
        MockReference({BASE.usdc: 1.0}),
    )
    with pytest.raises(NoLiquidityError):
        await oracle.price_base_per_target(_make_strategy())


@pytest.mark.asyncio
async def test_oracle_zero_output_is_quote_error():
    oracle = PriceOracle(MockQuoter(out=Decimal(0)), MockReference({}))
    with pytest.raises(QuoteError, match="zero"):
        await oracle.price_base_per_target(_make_strategy())
