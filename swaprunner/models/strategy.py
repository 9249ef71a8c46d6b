"""Strategy dataclass.

Represents the immutable trading parameters of one runner instance.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

MIN_POLL_SECONDS = 10

# Designated base-asset keywords; anything else is a token address.
BASE_STABLE = "USDC"
BASE_NATIVE = "NATIVE"


@dataclass(frozen=True)
class Strategy:
    """Trading parameters for a single runner.

    ``base_asset`` is ``"USDC"`` (the network's stable reference),
    ``"NATIVE"`` (the chain's native coin) or an ERC-20 address.
    """

    network: str
    base_asset: str
    target_asset: str
    amount_in: str
    take_profit_pct: float
    stop_loss_pct: float
    reentry_drop_pct: float = 1.0
    poll_seconds: int = 20
    base_symbol: str = ""
    target_symbol: str = ""

    def __post_init__(self) -> None:
        try:
            amount = Decimal(self.amount_in)
        except (InvalidOperation, TypeError):
            raise ValueError(f"amount_in must be a decimal string, got {self.amount_in!r}")
        if amount <= 0:
            raise ValueError(f"amount_in must be positive, got {self.amount_in}")
        if not self.target_asset:
            raise ValueError("target_asset is required")
        if self.take_profit_pct <= 0:
            raise ValueError(
                f"take_profit_pct must be positive, got {self.take_profit_pct}"
            )
        if self.reentry_drop_pct < 0:
            raise ValueError(
                f"reentry_drop_pct must be >= 0, got {self.reentry_drop_pct}"
            )
        if self.poll_seconds < MIN_POLL_SECONDS:
            raise ValueError(
                f"poll_seconds must be >= {MIN_POLL_SECONDS}, got {self.poll_seconds}"
            )

    @property
    def amount_in_decimal(self) -> Decimal:
        return Decimal(self.amount_in)

    @property
    def base_is_stable(self) -> bool:
        return self.base_asset.upper() == BASE_STABLE

    @property
    def base_is_native(self) -> bool:
        return self.base_asset.upper() == BASE_NATIVE

    @property
    def key(self) -> str:
        """Namespace for this strategy's persisted records."""
        return f"{self.network}:{self.base_asset}:{self.target_asset}".lower()
