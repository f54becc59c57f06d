"""Lookup tables for chain names, token symbols and protocol names."""

from __future__ import annotations

from typing import Dict, List

NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

MAX_UINT256 = str(2 ** 256 - 1)

CHAIN_IDS: Dict[str, int] = {
    "ethereum": 1,
    "eth": 1,
    "mainnet": 1,
    "polygon": 137,
    "matic": 137,
    "bsc": 56,
    "binance": 56,
    "arbitrum": 42161,
    "arb": 42161,
    "optimism": 10,
    "op": 10,
    "avalanche": 43114,
    "avax": 43114,
    "base": 8453,
    "zksync": 324,
    "linea": 59144,
    "scroll": 534352,
    "blast": 81457,
    "mantle": 5000,
    "mode": 34443,
}

# Mainnet addresses; native coins share the conventional placeholder address.
TOKEN_ADDRESSES: Dict[str, str] = {
    "eth": NATIVE_TOKEN_ADDRESS,
    "ethereum": NATIVE_TOKEN_ADDRESS,
    "matic": NATIVE_TOKEN_ADDRESS,
    "bnb": NATIVE_TOKEN_ADDRESS,
    "avax": NATIVE_TOKEN_ADDRESS,
    "usdt": "0xdAC17F958D2ee523a2206206994597C13D831ec7",
    "usdc": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    "dai": "0x6B175474E89094C44Da98b954EedeAC495271d0F",
    "wbtc": "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599",
    "uni": "0x1f9840a85d5aF5b3D1D9fD83d7e75E1B0De7aDbf",
    "link": "0x514910771AF9Ca656af840dff83E8264EcF986CA",
    "aave": "0x7Fc66500c84A76Ad7e9c93437bFc5Ac33E2DDaE9",
    "comp": "0xc00e94Cb662C3520282E6f5717214004A7f26888",
    "crv": "0xD533a949740bb3306d119CC777fa900bA034cd52",
    "sushi": "0x6B3595068778DD592e39A122f4f5a5cF09C90fE2",
    "yfi": "0x0bc529c00C6401aEF6D220BE8C6Ea1667F6Ad93e",
}

PROTOCOLS: List[str] = [
    "uniswap",
    "sushiswap",
    "pancakeswap",
    "curve",
    "balancer",
    "aave",
    "compound",
    "1inch",
    "lifi",
    "socket",
    "hop",
    "stargate",
    "multichain",
]


def chain_id_for(name: str) -> int | None:
    return CHAIN_IDS.get(name.strip().lower())


def token_address_for(symbol: str) -> str | None:
    """Canonical address for a symbol; addresses are returned unchanged."""
    if symbol.lower().startswith("0x"):
        return symbol
    return TOKEN_ADDRESSES.get(symbol.strip().lower())
