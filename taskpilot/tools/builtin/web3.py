"""Wallet and chain tools delegating to the ChainAdapter in the call context."""

from __future__ import annotations

from typing import Any, Dict, List

from taskpilot.models import RiskLevel, StepType
from taskpilot.utils.error_handler import ConfigurationError

from ..registry import ToolContext, ToolDefinition


def _chain(context: ToolContext):
    if context.chain is None:
        raise ConfigurationError("No chain adapter configured", user_message="Wallet is not connected.")
    return context.chain


def _chain_id(params: Dict[str, Any], context: ToolContext) -> int:
    return int(params.get("chain_id") or context.chain_id or 1)


def _schema(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


async def check_balance(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _chain(context).get_balance(params["address"], params.get("token"), _chain_id(params, context))


async def send_transaction(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _chain(context).send_transaction(
        params["to"], str(params["amount"]), params["token"], _chain_id(params, context)
    )


async def approve_token(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _chain(context).approve(
        params["token"], params["spender"], str(params["amount"]), _chain_id(params, context)
    )


async def swap_tokens(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _chain(context).swap({**params, "chain_id": _chain_id(params, context)})


async def bridge_tokens(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _chain(context).bridge(dict(params))


async def stake_tokens(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _chain(context).stake({**params, "chain_id": _chain_id(params, context)})


async def switch_network(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _chain(context).switch_network(int(params["chain_id"]))


async def connect_wallet(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _chain(context).connect(params.get("dapp_name"), params.get("dapp_url"))


def build_web3_tools() -> List[ToolDefinition]:
    """Default wallet/chain tool set."""

    amount = {"type": "string", "description": "Token amount in display units"}
    chain_id = {"type": "integer", "description": "EVM chain id"}
    token = {"type": "string", "description": "Token symbol or contract address"}

    return [
        ToolDefinition(
            name=StepType.CHECK_BALANCE.value,
            description="Check native or token balance for an address",
            handler=check_balance,
            parameters=_schema({"address": {"type": "string"}, "token": token, "chain_id": chain_id}, ["address"]),
            risk_level=RiskLevel.LOW,
            category="web3",
            timeout_ms=10000,
            retryable=True,
        ),
        ToolDefinition(
            name=StepType.SEND_TRANSACTION.value,
            description="Send tokens to an address",
            handler=send_transaction,
            parameters=_schema(
                {"to": {"type": "string"}, "amount": amount, "token": token, "chain_id": chain_id},
                ["to", "amount", "token"],
            ),
            risk_level=RiskLevel.HIGH,
            category="web3",
            timeout_ms=60000,
            retryable=False,
        ),
        ToolDefinition(
            name=StepType.APPROVE_TOKEN.value,
            description="Approve a spender to use tokens",
            handler=approve_token,
            parameters=_schema(
                {"token": token, "spender": {"type": "string"}, "amount": amount, "chain_id": chain_id},
                ["token", "spender", "amount"],
            ),
            risk_level=RiskLevel.MEDIUM,
            category="web3",
            timeout_ms=45000,
            retryable=True,
        ),
        ToolDefinition(
            name=StepType.SWAP_TOKENS.value,
            description="Swap one token for another through a DEX aggregator",
            handler=swap_tokens,
            parameters=_schema(
                {
                    "from_token": token,
                    "to_token": token,
                    "amount": amount,
                    "slippage": {"type": "number", "description": "Max slippage in percent"},
                    "recipient": {"type": "string"},
                    "protocol": {"type": "string"},
                    "chain_id": chain_id,
                },
                ["from_token", "to_token", "amount"],
            ),
            risk_level=RiskLevel.HIGH,
            category="web3",
            timeout_ms=90000,
            retryable=True,
        ),
        ToolDefinition(
            name=StepType.BRIDGE_TOKENS.value,
            description="Bridge tokens between chains",
            handler=bridge_tokens,
            parameters=_schema(
                {
                    "token": token,
                    "amount": amount,
                    "from_chain": chain_id,
                    "to_chain": chain_id,
                    "recipient": {"type": "string"},
                    "protocol": {"type": "string"},
                },
                ["token", "amount", "from_chain", "to_chain"],
            ),
            risk_level=RiskLevel.HIGH,
            category="web3",
            timeout_ms=120000,
            retryable=True,
        ),
        ToolDefinition(
            name=StepType.STAKE_TOKENS.value,
            description="Stake tokens in a staking or lending protocol",
            handler=stake_tokens,
            parameters=_schema(
                {
                    "token": token,
                    "amount": amount,
                    "staking_contract": {"type": "string"},
                    "protocol": {"type": "string"},
                    "chain_id": chain_id,
                },
                ["token", "amount"],
            ),
            risk_level=RiskLevel.MEDIUM,
            category="web3",
            timeout_ms=60000,
            retryable=True,
        ),
        ToolDefinition(
            name=StepType.SWITCH_NETWORK.value,
            description="Switch the wallet to another network",
            handler=switch_network,
            parameters=_schema({"chain_id": chain_id}, ["chain_id"]),
            risk_level=RiskLevel.LOW,
            category="system",
            timeout_ms=15000,
            retryable=True,
        ),
        ToolDefinition(
            name=StepType.CONNECT_WALLET.value,
            description="Connect the wallet to a dApp",
            handler=connect_wallet,
            parameters=_schema({"dapp_name": {"type": "string"}, "dapp_url": {"type": "string"}}, []),
            risk_level=RiskLevel.MEDIUM,
            category="system",
            timeout_ms=30000,
            retryable=True,
        ),
    ]
