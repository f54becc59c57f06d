"""Collaborator interfaces consumed by the builtin tools.

Wallet/chain access and page automation live outside this package; the
builtin tools only talk to these protocols, found on ``ToolContext.chain``
and ``ToolContext.page``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class ChainAdapter(Protocol):
    """Narrow interface to wallet and RPC operations."""

    async def get_balance(self, address: str, token: Optional[str], chain_id: int) -> Dict[str, Any]: ...

    async def send_transaction(self, to: str, amount: str, token: str, chain_id: int) -> Dict[str, Any]: ...

    async def approve(self, token: str, spender: str, amount: str, chain_id: int) -> Dict[str, Any]: ...

    async def swap(self, params: Dict[str, Any]) -> Dict[str, Any]: ...

    async def bridge(self, params: Dict[str, Any]) -> Dict[str, Any]: ...

    async def stake(self, params: Dict[str, Any]) -> Dict[str, Any]: ...

    async def switch_network(self, chain_id: int) -> Dict[str, Any]: ...

    async def connect(self, dapp_name: Optional[str], dapp_url: Optional[str]) -> Dict[str, Any]: ...


@runtime_checkable
class PageAutomation(Protocol):
    """Narrow interface to browser page primitives."""

    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> Dict[str, Any]: ...

    async def click(self, selector: Optional[str] = None, text: Optional[str] = None) -> Dict[str, Any]: ...

    async def fill(self, fields: List[Dict[str, Any]], submit: bool = False) -> Dict[str, Any]: ...

    async def extract_content(self, selector: str) -> Dict[str, Any]: ...

    async def screenshot(self, selector: Optional[str] = None) -> Dict[str, Any]: ...

    async def scroll(self, direction: str) -> Dict[str, Any]: ...

    async def wait_for(self, condition: Optional[str], timeout_ms: int) -> Dict[str, Any]: ...
