"""Per-network contract addresses used by the runner.

Only networks with a Uniswap V3 QuoterV2 deployment are listed.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class NetworkInfo:
    """Static addresses for one EVM network."""

    name: str
    chain_id: int
    native_symbol: str
    wrapped_native: str
    usdc: str
    quoter_v2: str
    dexscreener_chain: Optional[str] = None


NETWORKS: dict[str, NetworkInfo] = {
    "mainnet": NetworkInfo(
        name="Ethereum",
        chain_id=1,
        native_symbol="ETH",
        wrapped_native="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        usdc="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        quoter_v2="0x61fFE014bA17989E743c5F6cB21bF9697530B21e",
        dexscreener_chain="ethereum",
    ),
    "polygon": NetworkInfo(
        name="Polygon",
        chain_id=137,
        native_symbol="POL",
        wrapped_native="0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
        usdc="0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
        quoter_v2="0x61fFE014bA17989E743c5F6cB21bF9697530B21e",
        dexscreener_chain="polygon",
    ),
    "optimism": NetworkInfo(
        name="Optimism",
        chain_id=10,
        native_symbol="ETH",
        wrapped_native="0x4200000000000000000000000000000000000006",
        usdc="0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
        quoter_v2="0x61fFE014bA17989E743c5F6cB21bF9697530B21e",
        dexscreener_chain="optimism",
    ),
    "arbitrum": NetworkInfo(
        name="Arbitrum",
        chain_id=42161,
        native_symbol="ETH",
        wrapped_native="0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
        usdc="0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        quoter_v2="0x61fFE014bA17989E743c5F6cB21bF9697530B21e",
        dexscreener_chain="arbitrum",
    ),
    "base": NetworkInfo(
        name="Base",
        chain_id=8453,
        native_symbol="ETH",
        wrapped_native="0x4200000000000000000000000000000000000006",
        usdc="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        quoter_v2="0x3d4e44Eb1374240CE5F1B871ab261CD16335B76a",
        dexscreener_chain="base",
    ),
    "sepolia": NetworkInfo(
        name="Sepolia",
        chain_id=11155111,
        native_symbol="SepoliaETH",
        wrapped_native="0xfFf9976782d46CC05630D1f6eBAb18b2324d6B14",
        usdc="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
        quoter_v2="0xEd1f6473345F45b75F8179591dd5bA1888cf2FB3",
    ),
}


def get_network(key: str) -> NetworkInfo:
    """Look up a network by key.

    Raises ``KeyError`` if the network is not configured.
    """
    if key not in NETWORKS:
        raise KeyError(
            f"Unknown network '{key}'. "
            f"Available: {', '.join(NETWORKS.keys())}"
        )
    return NETWORKS[key]
