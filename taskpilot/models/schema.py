"""Core data model: intents, plan steps and execution plans."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ActionType(str, Enum):
    """Closed set of actions an instruction can resolve to."""

    SWAP = "SWAP"
    BRIDGE = "BRIDGE"
    STAKE = "STAKE"
    UNSTAKE = "UNSTAKE"
    SEND = "SEND"
    APPROVE = "APPROVE"
    ADD_LIQUIDITY = "ADD_LIQUIDITY"
    REMOVE_LIQUIDITY = "REMOVE_LIQUIDITY"
    QUERY = "QUERY"
    CONNECT_WALLET = "CONNECT_WALLET"
    SWITCH_NETWORK = "SWITCH_NETWORK"
    NAVIGATE = "NAVIGATE"
    CLICK = "CLICK"
    FILL_FORM = "FILL_FORM"
    SCREENSHOT = "SCREENSHOT"
    WAIT = "WAIT"
    SCROLL = "SCROLL"
    CREATE_PLAN = "CREATE_PLAN"
    VALIDATE_TASK = "VALIDATE_TASK"
    COORDINATE_AGENTS = "COORDINATE_AGENTS"
    ANALYZE_TASK = "ANALYZE_TASK"


class StepType(str, Enum):
    """Closed set of step kinds; each value is the name of the tool that runs it."""

    CHECK_BALANCE = "check_balance"
    SEND_TRANSACTION = "send_transaction"
    APPROVE_TOKEN = "approve_token"
    SWAP_TOKENS = "swap_tokens"
    BRIDGE_TOKENS = "bridge_tokens"
    STAKE_TOKENS = "stake_tokens"
    SWITCH_NETWORK = "switch_network"
    CONNECT_WALLET = "connect_wallet"
    NAVIGATE_TO_URL = "navigate_to_url"
    CLICK_ELEMENT = "click_element"
    FILL_FORM = "fill_form"
    EXTRACT_CONTENT = "extract_content"
    TAKE_SCREENSHOT = "take_screenshot"
    SCROLL_PAGE = "scroll_page"
    WAIT_FOR = "wait_for"


READ_ONLY_STEPS = frozenset({StepType.CHECK_BALANCE, StepType.EXTRACT_CONTENT})


class RiskLevel(str, Enum):
    """Ordinal risk classification, LOW < MEDIUM < HIGH."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "RiskLevel":
        if isinstance(value, RiskLevel):
            return value
        return cls(str(value).upper())


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


def max_risk(levels: Iterable[RiskLevel]) -> RiskLevel:
    """Highest risk in ``levels`` (LOW when empty)."""
    result = RiskLevel.LOW
    for level in levels:
        if level.rank > result.rank:
            result = level
    return result


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED})


class Intent(BaseModel):
    """Structured interpretation of an instruction. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    action: ActionType
    entities: Dict[str, Any] = Field(default_factory=dict)
    chains: List[int] = Field(default_factory=list)
    protocols: List[str] = Field(default_factory=list)
    constraints: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(ge=0.0, le=1.0)
    raw_instruction: str = ""


class ActionStep(BaseModel):
    """One atomic unit of planned work."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(min_length=1)
    type: StepType
    description: str = ""
    protocol: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    status: StepStatus = StepStatus.PENDING
    result: Optional[Any] = None
    error: Optional[str] = None
    attempts: int = 0
    duration_ms: Optional[float] = None
    estimated_gas: int = 0
    estimated_time: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ExecutionPlan(BaseModel):
    """Ordered, dependency-annotated steps derived from one intent."""

    id: str = Field(default_factory=lambda: f"plan-{uuid.uuid4().hex[:12]}")
    intent: Intent
    actions: List[ActionStep]
    aggregate_risk: RiskLevel = RiskLevel.LOW
    requires_confirmation: bool = False
    estimated_total_gas: int = 0
    estimated_total_time: float = 0.0
    created_at: float = Field(default_factory=time.time)

    def get_step(self, step_id: str) -> Optional[ActionStep]:
        for step in self.actions:
            if step.id == step_id:
                return step
        return None
