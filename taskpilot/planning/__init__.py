"""Plan construction from intents."""

from .aggregator import Quote, QuoteProvider, StaticAggregator
from .planner import (
    STEP_RISK,
    ActionPlanner,
    PlanDraft,
    PlanDraftStep,
    parse_duration_ms,
    requires_confirmation,
    risk_from_price_impact,
)

__all__ = [
    "STEP_RISK",
    "ActionPlanner",
    "PlanDraft",
    "PlanDraftStep",
    "Quote",
    "QuoteProvider",
    "StaticAggregator",
    "parse_duration_ms",
    "requires_confirmation",
    "risk_from_price_impact",
]
