"""Plan execution: dependency ordering, confirmation gating and the engine."""

from .confirmation import (
    CallbackConfirmation,
    ConfirmationDecision,
    ConfirmationPolicy,
    ConfirmationProvider,
    request_confirmation,
)
from .engine import ExecutionEngine
from .ordering import topological_order

__all__ = [
    "CallbackConfirmation",
    "ConfirmationDecision",
    "ConfirmationPolicy",
    "ConfirmationProvider",
    "ExecutionEngine",
    "request_confirmation",
    "topological_order",
]
