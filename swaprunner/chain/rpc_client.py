"""EVM JSON-RPC async client.

Handles the read side of chain access: native and ERC-20 balances, token
decimals, and Uniswap V3 swap quotes through QuoterV2 ``eth_call``.
"""

import asyncio
import itertools
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional

import httpx

from swaprunner.chain.models import ResolvedAsset
from swaprunner.chain.networks import NetworkInfo
from swaprunner.errors import NoRouteError, QuoteError, RunnerError

logger = logging.getLogger("swaprunner")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

# Uniswap V3 fee tiers to scan: 0.05%, 0.3%, 1%
FEE_TIERS = (500, 3000, 10000)

_SELECTOR_BALANCE_OF = "0x70a08231"
_SELECTOR_DECIMALS = "0x313ce567"
# quoteExactInputSingle((address,address,uint256,uint24,uint160))
_SELECTOR_QUOTE_EXACT_INPUT_SINGLE = "0xc6a5026a"

_DEFAULT_DECIMALS = 18


class RpcError(RunnerError):
    """A JSON-RPC call returned an ``error`` object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message

    @property
    def is_revert(self) -> bool:
        return self.code == 3 or "revert" in self.message.lower()


# ── ABI helpers ──────────────────────────────────────────────────────────


def _encode_address(address: str) -> str:
    return address.lower().removeprefix("0x").rjust(64, "0")


def _encode_uint(value: int) -> str:
    return format(value, "x").rjust(64, "0")


def _decode_uint(data: str, word: int = 0) -> int:
    body = data.removeprefix("0x")
    chunk = body[word * 64:(word + 1) * 64]
    if not chunk:
        raise ValueError(f"eth_call returned no data for word {word}")
    return int(chunk, 16)


def to_raw_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount to integer base units (truncating)."""
    scaled = amount * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_raw_units(raw: int, decimals: int) -> Decimal:
    """Convert integer base units to a human amount."""
    return Decimal(raw) / (Decimal(10) ** decimals)


class JsonRpcClient:
    """Async client wrapping the standard Ethereum JSON-RPC API."""

    def __init__(self, rpc_url: str, timeout: float = 30.0) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._headers = {"Content-Type": "application/json"}
        self._ids = itertools.count(1)
        self._decimals_cache: dict[str, int] = {}

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(self, payload: dict) -> httpx.Response:
        """POST a JSON-RPC payload with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504), rate-limits
        (429) and transport errors.  Non-retryable errors are raised
        immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(
                        self._rpc_url,
                        headers=self._headers,
                        json=payload,
                        timeout=self._timeout,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "RPC %s returned %d — retry %d/%d in %.1fs",
                        payload.get("method"), resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
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
                    "RPC %s transport error (%s) — retry %d/%d in %.1fs",
                    payload.get("method"), exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        # All retries exhausted: raise the last error
        raise last_exc  # type: ignore[misc]

    async def call(self, method: str, params: list) -> Any:
        """Execute one JSON-RPC call and return its ``result``.

        Raises ``RpcError`` when the node answers with an error object.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        resp = await self._request_with_retry(payload)
        body = resp.json()
        if body.get("error"):
            err = body["error"]
            raise RpcError(int(err.get("code", 0)), str(err.get("message", "")))
        return body.get("result")

    async def eth_call(self, to: str, data: str) -> str:
        return await self.call("eth_call", [{"to": to, "data": data}, "latest"])

    # ── Tokens ───────────────────────────────────────────────────────────

    async def get_decimals(self, asset: ResolvedAsset) -> int:
        """Return the asset's decimals (native = 18; unreadable = 18)."""
        if asset.is_native:
            return _DEFAULT_DECIMALS
        key = asset.address.lower()
        if key in self._decimals_cache:
            return self._decimals_cache[key]
        try:
            result = await self.eth_call(asset.address, _SELECTOR_DECIMALS)
            decimals = _decode_uint(result)
        except (RpcError, ValueError) as exc:
            logger.warning(
                "decimals() failed for %s (%s) — defaulting to %d",
                asset.address, exc, _DEFAULT_DECIMALS,
            )
            return _DEFAULT_DECIMALS
        self._decimals_cache[key] = decimals
        return decimals

    async def get_token_balance(self, asset: ResolvedAsset, owner: str) -> Decimal:
        """Return *owner*'s balance of *asset* in human units.

        Errors propagate: a balance that cannot be read must never be
        mistaken for an empty one.
        """
        if asset.is_native:
            raw = int(await self.call("eth_getBalance", [owner, "latest"]), 16)
            return from_raw_units(raw, _DEFAULT_DECIMALS)

        data = _SELECTOR_BALANCE_OF + _encode_address(owner)
        raw = _decode_uint(await self.eth_call(asset.address, data))
        decimals = await self.get_decimals(asset)
        return from_raw_units(raw, decimals)

    # ── Quotes ───────────────────────────────────────────────────────────

    async def get_swap_quote(
        self,
        network: NetworkInfo,
        token_in: ResolvedAsset,
        token_out: ResolvedAsset,
        amount_in: Decimal,
    ) -> Decimal:
        """Quote *amount_in* of *token_in* into *token_out*.

        Scans every fee tier and keeps the largest output.

        Raises:
            NoRouteError: every fee tier reverted (no pool for the pair).
            QuoteError: transport or node failure.
        """
        decimals_in = await self.get_decimals(token_in)
        decimals_out = await self.get_decimals(token_out)
        raw_in = to_raw_units(amount_in, decimals_in)
        if raw_in <= 0:
            raise QuoteError(f"amount_in {amount_in} rounds to zero base units")

        addr_in = token_in.quote_address(network)
        addr_out = token_out.quote_address(network)
        best_out = 0
        best_fee: Optional[int] = None
        answered = 0

        for fee in FEE_TIERS:
            data = (
                _SELECTOR_QUOTE_EXACT_INPUT_SINGLE
                + _encode_address(addr_in)
                + _encode_address(addr_out)
                + _encode_uint(raw_in)
                + _encode_uint(fee)
                + _encode_uint(0)
            )
            try:
                result = await self.eth_call(network.quoter_v2, data)
                out = _decode_uint(result or "0x")
            except RpcError as exc:
                if exc.is_revert:
                    logger.debug("Fee tier %d: no pool (%s)", fee, exc.message)
                    continue
                raise QuoteError(f"Quote failed at fee tier {fee}: {exc}") from exc
            except httpx.HTTPError as exc:
                raise QuoteError(f"Quote request failed: {exc}") from exc
            except ValueError as exc:
                raise QuoteError(f"Malformed quote at fee tier {fee}: {exc}") from exc

            answered += 1
            if out > best_out:
                best_out = out
                best_fee = fee

        if answered and best_fee is None:
            raise QuoteError("Quote output is zero")
        if best_fee is None:
            raise NoRouteError(
                f"No liquidity pool for {token_in.symbol or addr_in} → "
                f"{token_out.symbol or addr_out} (tried fee tiers {FEE_TIERS})"
            )

        logger.debug("Best quote at fee tier %d: %d raw units", best_fee, best_out)
        return from_raw_units(best_out, decimals_out)
