"""SwapRunner — application configuration.

Loads .env variables into a typed config object and the trading strategy
from ``runner.json``.  Validates required variables on startup.
"""

import json
import os
import pathlib
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from swaprunner.chain.networks import NETWORKS
from swaprunner.models.strategy import Strategy


_REQUIRED_VARS = [
    "RPC_URL",
    "WALLET_ADDRESS",
]


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    rpc_url: str
    wallet_address: str
    network: str
    db_path: str
    log_level: str
    api_port: int
    runner_json: str
    private_key: Optional[str] = None

    def __repr__(self) -> str:
        # Keep key material out of logs and tracebacks.
        return (
            f"Config(rpc_url={self.rpc_url!r}, wallet_address={self.wallet_address!r}, "
            f"network={self.network!r}, db_path={self.db_path!r}, "
            f"log_level={self.log_level!r}, api_port={self.api_port}, "
            f"runner_json={self.runner_json!r}, "
            f"private_key={'<set>' if self.private_key else None})"
        )


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or when ``NETWORK`` is not configured.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    network = os.environ.get("NETWORK", "mainnet")
    if network not in NETWORKS:
        raise ValueError(
            f"Unknown NETWORK '{network}'. Available: {', '.join(NETWORKS)}"
        )

    return Config(
        rpc_url=os.environ["RPC_URL"],
        wallet_address=os.environ["WALLET_ADDRESS"],
        network=network,
        db_path=os.environ.get("DB_PATH", "data/swaprunner.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
        runner_json=os.environ.get("RUNNER_JSON", "runner.json"),
        private_key=os.environ.get("BOT_PRIVATE_KEY") or None,
    )


def load_strategy(path: str | pathlib.Path, network: str | None = None) -> Strategy:
    """Build a ``Strategy`` from a ``runner.json`` file.

    The file holds a single ``"strategy"`` object; ``network`` falls back
    to the *network* argument when the file omits it.

    Raises ``ValueError`` for a missing file, missing keys or invalid values.
    """
    p = pathlib.Path(path)
    if not p.exists():
        raise ValueError(f"Strategy file not found: {p}")

    data = json.loads(p.read_text(encoding="utf-8"))
    raw = data.get("strategy", data)

    for key in ("target_asset", "amount_in", "take_profit_pct", "stop_loss_pct"):
        if key not in raw:
            raise ValueError(f"Strategy file {p} is missing '{key}'")

    net = raw.get("network", network)
    if not net:
        raise ValueError(f"Strategy file {p} is missing 'network'")
    if net not in NETWORKS:
        raise ValueError(f"Unknown network '{net}' in {p}")

    return Strategy(
        network=net,
        base_asset=raw.get("base_asset", "USDC"),
        base_symbol=raw.get("base_symbol", ""),
        target_asset=raw["target_asset"],
        target_symbol=raw.get("target_symbol", ""),
        amount_in=str(raw["amount_in"]),
        take_profit_pct=float(raw["take_profit_pct"]),
        stop_loss_pct=float(raw["stop_loss_pct"]),
        reentry_drop_pct=float(raw.get("reentry_drop_pct", 1.0)),
        poll_seconds=int(raw.get("poll_seconds", 20)),
    )
