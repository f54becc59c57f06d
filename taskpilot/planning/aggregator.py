"""Quoting collaborator used by the planner for swap, bridge and stake routes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True, slots=True)
class Quote:
    """Best route for one operation."""

    protocol: str
    estimated_gas: int
    estimated_time: float  # seconds
    output_amount: str = "0"
    price_impact: float = 0.0
    needs_bridge: bool = False
    bridge_protocol: Optional[str] = None
    bridge_token: Optional[str] = None
    bridge_amount: Optional[str] = None


class QuoteProvider(Protocol):
    async def get_swap_quote(self, from_token: str, to_token: str, amount: str, from_chain: int,
                             to_chain: int, slippage: float, preference: str) -> Quote: ...

    async def get_bridge_quote(self, token: str, amount: str, from_chain: int, to_chain: int,
                               recipient: str) -> Quote: ...

    async def get_stake_quote(self, token: str, amount: str, chain_id: int) -> Quote: ...


class StaticAggregator:
    """Fixed quotes for environments without a live aggregator.

    Cross-chain swaps are routed through USDC over Hop.
    """

    def __init__(self, swap_protocol: str = "1inch", bridge_protocol: str = "Hop",
                 stake_protocol: str = "Aave", price_impact: float = 0.1) -> None:
        self.swap_protocol = swap_protocol
        self.bridge_protocol = bridge_protocol
        self.stake_protocol = stake_protocol
        self.price_impact = price_impact

    async def get_swap_quote(self, from_token: str, to_token: str, amount: str, from_chain: int,
                             to_chain: int, slippage: float, preference: str) -> Quote:
        needs_bridge = from_chain != to_chain
        return Quote(
            protocol=self.swap_protocol,
            estimated_gas=200000,
            estimated_time=30,
            output_amount="0",
            price_impact=self.price_impact,
            needs_bridge=needs_bridge,
            bridge_protocol=self.bridge_protocol if needs_bridge else None,
            bridge_token="USDC" if needs_bridge else None,
            bridge_amount=amount if needs_bridge else None,
        )

    async def get_bridge_quote(self, token: str, amount: str, from_chain: int, to_chain: int,
                               recipient: str) -> Quote:
        return Quote(protocol=self.bridge_protocol, estimated_gas=150000, estimated_time=300, output_amount=amount)

    async def get_stake_quote(self, token: str, amount: str, chain_id: int) -> Quote:
        return Quote(protocol=self.stake_protocol, estimated_gas=100000, estimated_time=60)
