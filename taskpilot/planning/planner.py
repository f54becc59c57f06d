"""Turns an Intent into an ExecutionPlan of dependency-annotated steps."""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from taskpilot.config.settings import ZERO_ADDRESS
from taskpilot.execution.ordering import topological_order
from taskpilot.intent.tables import MAX_UINT256, NATIVE_TOKEN_ADDRESS
from taskpilot.models import (
    READ_ONLY_STEPS,
    ActionStep,
    ActionType,
    ExecutionPlan,
    Intent,
    RiskLevel,
    StepType,
    max_risk,
)
from taskpilot.utils.error_handler import (
    ActionNotImplementedError,
    ParseError,
    PlanningError,
    UnsupportedActionError,
)
from taskpilot.utils.logging_utils import log_plan_created
from taskpilot.utils.structured_output import parse_structured

from .aggregator import QuoteProvider, StaticAggregator

LOGGER = logging.getLogger(__name__)

APPROVE_GAS = 50000
APPROVE_TIME = 30
SEND_GAS = 21000
DEFAULT_WAIT_MS = 5000

_NOT_IMPLEMENTED = frozenset({ActionType.ADD_LIQUIDITY, ActionType.REMOVE_LIQUIDITY, ActionType.UNSTAKE})

# Floor risk per step kind; drafts proposed by a model may raise it, never lower it.
STEP_RISK: Dict[StepType, RiskLevel] = {
    StepType.CHECK_BALANCE: RiskLevel.LOW,
    StepType.SEND_TRANSACTION: RiskLevel.HIGH,
    StepType.APPROVE_TOKEN: RiskLevel.MEDIUM,
    StepType.SWAP_TOKENS: RiskLevel.LOW,
    StepType.BRIDGE_TOKENS: RiskLevel.MEDIUM,
    StepType.STAKE_TOKENS: RiskLevel.MEDIUM,
    StepType.SWITCH_NETWORK: RiskLevel.LOW,
    StepType.CONNECT_WALLET: RiskLevel.LOW,
    StepType.NAVIGATE_TO_URL: RiskLevel.LOW,
    StepType.CLICK_ELEMENT: RiskLevel.LOW,
    StepType.FILL_FORM: RiskLevel.MEDIUM,
    StepType.EXTRACT_CONTENT: RiskLevel.LOW,
    StepType.TAKE_SCREENSHOT: RiskLevel.LOW,
    StepType.SCROLL_PAGE: RiskLevel.LOW,
    StepType.WAIT_FOR: RiskLevel.LOW,
}

_DURATION_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(ms|milliseconds?|s|secs?|seconds?|m|mins?|minutes?|毫秒|秒|分钟)",
    re.IGNORECASE,
)


class PlanDraftStep(BaseModel):
    """One step of a model-proposed plan."""

    id: str = Field(min_length=1)
    type: StepType
    description: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    risk_level: Optional[RiskLevel] = None


class PlanDraft(BaseModel):
    steps: List[PlanDraftStep] = Field(min_length=1)


def risk_from_price_impact(price_impact: float) -> RiskLevel:
    if price_impact < 0.5:
        return RiskLevel.LOW
    if price_impact < 2.0:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def requires_confirmation(steps: List[ActionStep]) -> bool:
    """True when any state-changing step is above LOW risk."""
    return any(step.type not in READ_ONLY_STEPS and step.risk_level != RiskLevel.LOW for step in steps)


def parse_duration_ms(text: str, default: int = DEFAULT_WAIT_MS) -> int:
    """``"5 seconds"`` -> 5000. Falls back to ``default`` when no duration is named."""
    match = _DURATION_RE.search(text or "")
    if not match:
        return default
    value = float(match.group(1))
    unit = match.group(2).lower()
    if unit.startswith("ms") or unit.startswith("milli") or unit == "毫秒":
        return int(value)
    if unit.startswith("m") or unit == "分钟":
        return int(value * 60000)
    return int(value * 1000)


def is_native(token: Optional[str]) -> bool:
    return bool(token) and token.lower() == NATIVE_TOKEN_ADDRESS.lower()


class ActionPlanner:
    """Dispatches on ``intent.action`` to a per-action step builder.

    Builders return the step list; aggregate risk, confirmation flag and
    cost totals are derived from it afterwards. Quotes come from the
    injected ``aggregator`` (``StaticAggregator`` when none is given).
    """

    def __init__(
        self,
        aggregator: Optional[QuoteProvider] = None,
        default_account: str = ZERO_ADDRESS,
        spenders: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.aggregator = aggregator or StaticAggregator()
        self.default_account = default_account
        self.spenders = {name.lower(): address for name, address in (spenders or {}).items()}
        self._builders: Dict[ActionType, Callable[[Intent], Awaitable[List[ActionStep]]]] = {
            ActionType.SWAP: self._plan_swap,
            ActionType.BRIDGE: self._plan_bridge,
            ActionType.STAKE: self._plan_stake,
            ActionType.SEND: self._plan_send,
            ActionType.APPROVE: self._plan_approve,
            ActionType.QUERY: self._plan_query,
            ActionType.CONNECT_WALLET: self._plan_connect,
            ActionType.SWITCH_NETWORK: self._plan_switch,
            ActionType.NAVIGATE: self._plan_navigate,
            ActionType.CLICK: self._plan_click,
            ActionType.FILL_FORM: self._plan_fill_form,
            ActionType.WAIT: self._plan_wait,
            ActionType.SCROLL: self._plan_scroll,
            ActionType.SCREENSHOT: self._plan_screenshot,
        }

    def supports(self, action: ActionType) -> bool:
        return action in self._builders

    async def create_plan(self, intent: Intent) -> ExecutionPlan:
        if intent.action in _NOT_IMPLEMENTED:
            raise ActionNotImplementedError(intent.action.value)
        builder = self._builders.get(intent.action)
        if builder is None:
            raise UnsupportedActionError(intent.action.value)

        steps = await builder(intent)
        return self.build_plan(intent, steps)

    def build_plan(self, intent: Intent, steps: List[ActionStep]) -> ExecutionPlan:
        """Wrap ``steps`` into a plan, deriving risk, confirmation and totals."""
        if not steps:
            raise PlanningError(f"No steps planned for {intent.action.value}")
        topological_order(steps)

        plan = ExecutionPlan(
            intent=intent,
            actions=steps,
            aggregate_risk=max_risk(step.risk_level for step in steps),
            requires_confirmation=requires_confirmation(steps),
            estimated_total_gas=sum(step.estimated_gas for step in steps),
            estimated_total_time=sum(step.estimated_time for step in steps),
        )
        log_plan_created(LOGGER, plan)
        return plan

    def plan_from_response(self, raw: str, intent: Intent) -> ExecutionPlan:
        """Build a plan from a model-proposed JSON draft.

        A draft that cannot be parsed or validated yields :meth:`default_plan`.
        A draft whose dependencies form a cycle raises
        ``CircularDependencyError``; its edges are never dropped.
        """
        try:
            draft = parse_structured(raw, PlanDraft)
        except ParseError as e:
            LOGGER.warning(f"Plan draft rejected, using default plan: {e}")
            return self.default_plan(intent)

        steps = []
        for item in draft.steps:
            floor = STEP_RISK[item.type]
            risk = max_risk([floor, item.risk_level]) if item.risk_level else floor
            steps.append(ActionStep(
                id=item.id,
                type=item.type,
                description=item.description or item.type.value.replace("_", " "),
                params=item.params,
                dependencies=item.dependencies,
                risk_level=risk,
            ))
        return self.build_plan(intent, steps)

    def default_plan(self, intent: Intent) -> ExecutionPlan:
        """Conservative fallback: a single balance query at half the confidence."""
        fallback_intent = intent.model_copy(update={"confidence": intent.confidence * 0.5})
        step = ActionStep(
            id="query-1",
            type=StepType.CHECK_BALANCE,
            description="Check wallet balance",
            params=self._balance_params(intent),
            risk_level=RiskLevel.LOW,
        )
        return self.build_plan(fallback_intent, [step])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require(intent: Intent, *names: str) -> Dict[str, Any]:
        missing = [name for name in names if not intent.entities.get(name)]
        if missing:
            raise PlanningError(
                f"Missing entities for {intent.action.value}: {', '.join(missing)}",
                user_message=f"Please specify {', '.join(missing)}.",
            )
        return intent.entities

    @staticmethod
    def _token_ref(entities: Mapping[str, Any], name: str) -> Optional[str]:
        return entities.get(f"{name}_address") or entities.get(name)

    @staticmethod
    def _source_chain(intent: Intent) -> int:
        return int(intent.entities.get("chain_id") or (intent.chains[0] if intent.chains else 1))

    def _target_chain(self, intent: Intent) -> int:
        if intent.entities.get("to_chain_id"):
            return int(intent.entities["to_chain_id"])
        if len(intent.chains) > 1:
            return intent.chains[1]
        return self._source_chain(intent)

    def _spender(self, protocol: str) -> str:
        return self.spenders.get(protocol.lower(), ZERO_ADDRESS)

    def _balance_params(self, intent: Intent) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "address": intent.entities.get("address") or self.default_account,
            "chain_id": self._source_chain(intent),
        }
        token = self._token_ref(intent.entities, "token")
        if token:
            params["token"] = token
        return params

    def _approval_step(self, token: str, spender: str, amount: str, chain_id: int, protocol: str) -> ActionStep:
        return ActionStep(
            id="approve-1",
            type=StepType.APPROVE_TOKEN,
            description=f"Approve {protocol} to spend tokens",
            protocol=protocol,
            params={"token": token, "spender": spender, "amount": amount, "chain_id": chain_id},
            risk_level=RiskLevel.MEDIUM,
            estimated_gas=APPROVE_GAS,
            estimated_time=APPROVE_TIME,
        )

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    async def _plan_swap(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "from_token", "to_token", "amount")
        from_token = self._token_ref(entities, "from_token")
        to_token = self._token_ref(entities, "to_token")
        amount = str(entities["amount"])
        from_chain = self._source_chain(intent)
        to_chain = self._target_chain(intent)
        slippage = float(intent.constraints.get("slippage", 0.5))
        recipient = entities.get("recipient") or self.default_account

        quote = await self.aggregator.get_swap_quote(
            from_token, to_token, amount, from_chain, to_chain,
            slippage, intent.constraints.get("preference", "BEST_RATE"),
        )

        steps: List[ActionStep] = []
        if not is_native(from_token):
            steps.append(self._approval_step(from_token, self._spender(quote.protocol), amount, from_chain, quote.protocol))
        first_deps = [steps[0].id] if steps else []

        if not quote.needs_bridge:
            steps.append(ActionStep(
                id="swap-1",
                type=StepType.SWAP_TOKENS,
                description=f"Swap {amount} {entities['from_token']} to {entities['to_token']} on {quote.protocol}",
                protocol=quote.protocol,
                params={
                    "from_token": from_token,
                    "to_token": to_token,
                    "amount": amount,
                    "slippage": slippage,
                    "recipient": recipient,
                    "protocol": quote.protocol,
                    "chain_id": from_chain,
                },
                dependencies=first_deps,
                risk_level=risk_from_price_impact(quote.price_impact),
                estimated_gas=quote.estimated_gas,
                estimated_time=quote.estimated_time,
            ))
            return steps

        bridge_token = quote.bridge_token or "USDC"
        bridge_amount = quote.bridge_amount or amount
        bridge_protocol = quote.bridge_protocol or "Hop"
        swap_risk = risk_from_price_impact(quote.price_impact)
        steps.extend([
            ActionStep(
                id="swap-1",
                type=StepType.SWAP_TOKENS,
                description=f"Swap {entities['from_token']} to {bridge_token} on chain {from_chain}",
                protocol=quote.protocol,
                params={
                    "from_token": from_token,
                    "to_token": bridge_token,
                    "amount": amount,
                    "slippage": slippage,
                    "protocol": quote.protocol,
                    "chain_id": from_chain,
                },
                dependencies=first_deps,
                risk_level=swap_risk,
                estimated_gas=quote.estimated_gas,
                estimated_time=quote.estimated_time,
            ),
            ActionStep(
                id="bridge-1",
                type=StepType.BRIDGE_TOKENS,
                description=f"Bridge {bridge_token} from chain {from_chain} to {to_chain} via {bridge_protocol}",
                protocol=bridge_protocol,
                params={
                    "token": bridge_token,
                    "amount": bridge_amount,
                    "from_chain": from_chain,
                    "to_chain": to_chain,
                    "recipient": recipient,
                    "protocol": bridge_protocol,
                },
                dependencies=["swap-1"],
                risk_level=RiskLevel.MEDIUM,
                estimated_gas=quote.estimated_gas,
                estimated_time=quote.estimated_time,
            ),
            ActionStep(
                id="swap-2",
                type=StepType.SWAP_TOKENS,
                description=f"Swap {bridge_token} to {entities['to_token']} on chain {to_chain}",
                protocol=quote.protocol,
                params={
                    "from_token": bridge_token,
                    "to_token": to_token,
                    "amount": bridge_amount,
                    "slippage": slippage,
                    "recipient": recipient,
                    "protocol": quote.protocol,
                    "chain_id": to_chain,
                },
                dependencies=["bridge-1"],
                risk_level=swap_risk,
                estimated_gas=quote.estimated_gas,
                estimated_time=quote.estimated_time,
            ),
        ])
        return steps

    async def _plan_bridge(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "token", "amount")
        token = self._token_ref(entities, "token")
        amount = str(entities["amount"])
        from_chain = self._source_chain(intent)
        to_chain = self._target_chain(intent)
        if from_chain == to_chain:
            raise PlanningError(
                f"Bridge source and destination are both chain {from_chain}",
                user_message="Please name the destination chain for the bridge.",
            )
        recipient = entities.get("recipient") or self.default_account

        quote = await self.aggregator.get_bridge_quote(token, amount, from_chain, to_chain, recipient)

        steps: List[ActionStep] = []
        if not is_native(token):
            steps.append(self._approval_step(token, self._spender(quote.protocol), amount, from_chain, quote.protocol))
        steps.append(ActionStep(
            id="bridge-1",
            type=StepType.BRIDGE_TOKENS,
            description=f"Bridge {amount} {entities['token']} from chain {from_chain} to {to_chain} via {quote.protocol}",
            protocol=quote.protocol,
            params={
                "token": token,
                "amount": amount,
                "from_chain": from_chain,
                "to_chain": to_chain,
                "recipient": recipient,
                "protocol": quote.protocol,
            },
            dependencies=[steps[0].id] if steps else [],
            risk_level=RiskLevel.MEDIUM,
            estimated_gas=quote.estimated_gas,
            estimated_time=quote.estimated_time,
        ))
        return steps

    async def _plan_stake(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "token", "amount")
        token = self._token_ref(entities, "token")
        amount = str(entities["amount"])
        chain_id = self._source_chain(intent)

        quote = await self.aggregator.get_stake_quote(token, amount, chain_id)
        spender = entities.get("staking_contract") or self._spender(quote.protocol)

        steps: List[ActionStep] = []
        if not is_native(token):
            steps.append(self._approval_step(token, spender, amount, chain_id, quote.protocol))
        params = {"token": token, "amount": amount, "protocol": quote.protocol, "chain_id": chain_id}
        if entities.get("staking_contract"):
            params["staking_contract"] = entities["staking_contract"]
        steps.append(ActionStep(
            id="stake-1",
            type=StepType.STAKE_TOKENS,
            description=f"Stake {amount} {entities['token']} on {quote.protocol}",
            protocol=quote.protocol,
            params=params,
            dependencies=[steps[0].id] if steps else [],
            risk_level=RiskLevel.MEDIUM,
            estimated_gas=quote.estimated_gas,
            estimated_time=quote.estimated_time,
        ))
        return steps

    async def _plan_send(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "token", "amount", "recipient")
        return [ActionStep(
            id="send-1",
            type=StepType.SEND_TRANSACTION,
            description=f"Send {entities['amount']} {entities['token']} to {entities['recipient']}",
            params={
                "to": entities["recipient"],
                "amount": str(entities["amount"]),
                "token": self._token_ref(entities, "token"),
                "chain_id": self._source_chain(intent),
            },
            risk_level=RiskLevel.HIGH,
            estimated_gas=SEND_GAS,
            estimated_time=30,
        )]

    async def _plan_approve(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "token", "spender")
        step = self._approval_step(
            self._token_ref(entities, "token"),
            entities["spender"],
            str(entities.get("amount") or MAX_UINT256),
            self._source_chain(intent),
            entities.get("protocol", "custom"),
        )
        step.description = f"Approve {entities['spender']} to spend {entities['token']}"
        return [step]

    async def _plan_query(self, intent: Intent) -> List[ActionStep]:
        token = intent.entities.get("token")
        return [ActionStep(
            id="query-1",
            type=StepType.CHECK_BALANCE,
            description=f"Check {token} balance" if token else "Check wallet balance",
            params=self._balance_params(intent),
            risk_level=RiskLevel.LOW,
            estimated_time=2,
        )]

    async def _plan_connect(self, intent: Intent) -> List[ActionStep]:
        entities = intent.entities
        params = {key: entities[key] for key in ("dapp_name", "dapp_url") if entities.get(key)}
        return [ActionStep(
            id="connect-1",
            type=StepType.CONNECT_WALLET,
            description=f"Connect wallet to {entities.get('dapp_name', 'dApp')}",
            params=params,
            risk_level=RiskLevel.LOW,
            estimated_time=5,
        )]

    async def _plan_switch(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "chain_id")
        return [ActionStep(
            id="switch-1",
            type=StepType.SWITCH_NETWORK,
            description=f"Switch to {entities.get('network', entities['chain_id'])}",
            params={"chain_id": int(entities["chain_id"])},
            risk_level=RiskLevel.LOW,
            estimated_time=5,
        )]

    async def _plan_navigate(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "url")
        params: Dict[str, Any] = {"url": entities["url"]}
        if entities.get("timeout"):
            params["timeout"] = int(entities["timeout"])
        return [ActionStep(
            id="navigate-1",
            type=StepType.NAVIGATE_TO_URL,
            description=f"Navigate to {entities['url']}",
            params=params,
            risk_level=RiskLevel.LOW,
            estimated_time=5,
        )]

    async def _plan_click(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "element")
        params = {key: entities[key] for key in ("selector", "text") if entities.get(key)}
        if not params:
            params["text"] = entities["element"]
        return [ActionStep(
            id="click-1",
            type=StepType.CLICK_ELEMENT,
            description=f"Click {entities['element']}",
            params=params,
            risk_level=RiskLevel.LOW,
            estimated_time=2,
        )]

    async def _plan_fill_form(self, intent: Intent) -> List[ActionStep]:
        entities = self._require(intent, "fields")
        return [ActionStep(
            id="fill-1",
            type=StepType.FILL_FORM,
            description=f"Fill form with {len(entities['fields'])} field(s)",
            params={"fields": list(entities["fields"]), "submit": bool(entities.get("submit", False))},
            risk_level=RiskLevel.MEDIUM,
            estimated_time=5,
        )]

    async def _plan_wait(self, intent: Intent) -> List[ActionStep]:
        condition = intent.entities.get("condition", "")
        timeout = int(intent.entities.get("timeout") or parse_duration_ms(condition))
        return [ActionStep(
            id="wait-1",
            type=StepType.WAIT_FOR,
            description=f"Wait for {condition}" if condition else "Wait",
            params={"condition": condition, "timeout": timeout},
            risk_level=RiskLevel.LOW,
            estimated_time=timeout / 1000,
        )]

    async def _plan_scroll(self, intent: Intent) -> List[ActionStep]:
        direction = intent.entities.get("direction", "down")
        return [ActionStep(
            id="scroll-1",
            type=StepType.SCROLL_PAGE,
            description=f"Scroll {direction}",
            params={"direction": direction},
            risk_level=RiskLevel.LOW,
            estimated_time=1,
        )]

    async def _plan_screenshot(self, intent: Intent) -> List[ActionStep]:
        params = {"selector": intent.entities["selector"]} if intent.entities.get("selector") else {}
        return [ActionStep(
            id="screenshot-1",
            type=StepType.TAKE_SCREENSHOT,
            description="Take a screenshot",
            params=params,
            risk_level=RiskLevel.LOW,
            estimated_time=2,
        )]
