"""Shared data model exports."""

from .schema import (
    READ_ONLY_STEPS,
    TERMINAL_STATUSES,
    ActionStep,
    ActionType,
    ExecutionPlan,
    Intent,
    RiskLevel,
    StepStatus,
    StepType,
    max_risk,
)

__all__ = [
    "READ_ONLY_STEPS",
    "TERMINAL_STATUSES",
    "ActionStep",
    "ActionType",
    "ExecutionPlan",
    "Intent",
    "RiskLevel",
    "StepStatus",
    "StepType",
    "max_risk",
]
