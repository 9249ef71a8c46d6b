"""Chain data models — typed representations of assets and submissions."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from swaprunner.chain.networks import NetworkInfo
from swaprunner.models.strategy import BASE_NATIVE, BASE_STABLE

NATIVE = "NATIVE"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class SwapDirection(str, Enum):
    BUY = "BUY"    # base -> target
    SELL = "SELL"  # target -> base


@dataclass(frozen=True)
class ResolvedAsset:
    """An asset resolved to something the chain client can query.

    ``address`` is ``"NATIVE"`` for the chain's native coin.
    """

    address: str
    is_native: bool = False
    is_stable: bool = False
    symbol: str = ""

    def quote_address(self, network: NetworkInfo) -> str:
        """Address to use in pool quotes (native coin → wrapped native)."""
        return network.wrapped_native if self.is_native else self.address


@dataclass(frozen=True)
class TxHandle:
    """A submitted transaction — the engine only ever reads ``hash``."""

    hash: str
    direction: SwapDirection
    amount: str
    submitted_at_ms: Optional[int] = None


def resolve_asset(network: NetworkInfo, asset: str, symbol: str = "") -> ResolvedAsset:
    """Resolve a strategy asset identifier (``USDC``/``NATIVE``/address)."""
    key = asset.strip()
    if key.upper() == BASE_NATIVE or key.lower() == ZERO_ADDRESS:
        return ResolvedAsset(NATIVE, is_native=True, symbol=symbol or network.native_symbol)
    if key.upper() == BASE_STABLE:
        return ResolvedAsset(network.usdc, is_stable=True, symbol=symbol or "USDC")
    is_usdc = key.lower() == network.usdc.lower()
    return ResolvedAsset(key, is_stable=is_usdc, symbol=symbol)
