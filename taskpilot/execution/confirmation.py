"""Confirmation gating for plans that change state above LOW risk."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, runtime_checkable

from taskpilot.config.settings import AgentSettings
from taskpilot.models import ActionStep, ExecutionPlan, RiskLevel

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ConfirmationProvider(Protocol):
    """UI-side collaborator; may answer synchronously or as a coroutine."""

    def request_confirmation(self, plan: ExecutionPlan, simulation: Optional[Any] = None) -> Any: ...


@dataclass
class ConfirmationDecision:
    needs_confirmation: bool
    reason: str = ""
    risk_level: RiskLevel = RiskLevel.LOW


class CallbackConfirmation:
    """Adapts a plain callable ``(plan, simulation) -> bool`` to the provider protocol."""

    def __init__(self, callback: Callable[[ExecutionPlan, Optional[Any]], Any]):
        self.callback = callback

    def request_confirmation(self, plan: ExecutionPlan, simulation: Optional[Any] = None) -> Any:
        return self.callback(plan, simulation)


class ConfirmationPolicy:
    """Decides whether a plan needs the user's go-ahead and when to ask.

    Rules, first match wins:
    1. plan does not require confirmation and auto-confirm is on: no
    2. aggregate HIGH and high-risk confirmation is required: yes
    3. aggregate MEDIUM: yes
    4. otherwise: only when auto-confirm is off
    """

    def __init__(self, settings: Optional[AgentSettings] = None):
        self.settings = settings or AgentSettings()

    def evaluate(self, plan: ExecutionPlan) -> ConfirmationDecision:
        risk = plan.aggregate_risk
        if not plan.requires_confirmation and self.settings.auto_confirm_low_risk:
            return ConfirmationDecision(False, "auto-confirmed", risk)
        if risk == RiskLevel.HIGH and self.settings.require_confirmation_high_risk:
            return ConfirmationDecision(True, "high-risk plan", risk)
        if risk == RiskLevel.MEDIUM:
            return ConfirmationDecision(True, "medium-risk plan", risk)
        if not self.settings.auto_confirm_low_risk:
            return ConfirmationDecision(True, "auto-confirm disabled", risk)
        return ConfirmationDecision(False, "auto-confirmed", risk)

    def needs_confirmation(self, plan: ExecutionPlan) -> bool:
        return self.evaluate(plan).needs_confirmation

    @staticmethod
    def confirmation_point(ordered: List[ActionStep]) -> Optional[str]:
        """Id of the step right before which the user is asked.

        The first non-LOW step, or the first step when every step is LOW.
        """
        for step in ordered:
            if step.risk_level != RiskLevel.LOW:
                return step.id
        return ordered[0].id if ordered else None


async def request_confirmation(
    provider: Optional[ConfirmationProvider],
    plan: ExecutionPlan,
    simulation: Optional[Any] = None,
) -> bool:
    """Ask ``provider``; a missing provider counts as rejection."""
    if provider is None:
        LOGGER.warning(f"Plan {plan.id} needs confirmation but no confirmation provider is configured")
        return False

    answer = provider.request_confirmation(plan, simulation)
    if inspect.isawaitable(answer):
        answer = await answer
    return bool(answer)
