"""Shared helpers: errors, logging, structured output parsing."""

from .error_handler import (
    ActionNotImplementedError,
    CancellationError,
    ConfigurationError,
    CircularDependencyError,
    ParseError,
    PlanningError,
    RetryExhaustedError,
    TaskPilotError,
    TimeoutError,
    ToolNotFoundError,
    UnsupportedActionError,
    ValidationSchemaError,
    failure_payload,
    with_error_boundary,
)
from .structured_output import extract_json_block, parse_structured, parse_with_fallback

__all__ = [
    "ActionNotImplementedError",
    "CancellationError",
    "ConfigurationError",
    "CircularDependencyError",
    "ParseError",
    "PlanningError",
    "RetryExhaustedError",
    "TaskPilotError",
    "TimeoutError",
    "ToolNotFoundError",
    "UnsupportedActionError",
    "ValidationSchemaError",
    "failure_payload",
    "with_error_boundary",
    "extract_json_block",
    "parse_structured",
    "parse_with_fallback",
]
