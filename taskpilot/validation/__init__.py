"""Task completion validation."""

from .validator import (
    CheckResult,
    CriterionType,
    JudgeVerdict,
    RetryStrategy,
    Severity,
    StepOutcome,
    TaskValidator,
    ValidationContext,
    ValidationCriterion,
    ValidationOutcome,
    ValidationReport,
    ValidationResult,
    extract_target_element,
)

__all__ = [
    "CheckResult",
    "CriterionType",
    "JudgeVerdict",
    "RetryStrategy",
    "Severity",
    "StepOutcome",
    "TaskValidator",
    "ValidationContext",
    "ValidationCriterion",
    "ValidationOutcome",
    "ValidationReport",
    "ValidationResult",
    "extract_target_element",
]
