"""Error taxonomy and error boundary for the orchestration core."""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)


class TaskPilotError(Exception):
    """Base exception for TaskPilot errors."""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class ParseError(TaskPilotError):
    """Malformed structured output from a generation step."""

    def __init__(self, message: str, raw: str = "", user_message: str = None):
        super().__init__(message, user_message)
        self.raw = raw


class ToolNotFoundError(TaskPilotError):
    """Requested tool is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ValidationSchemaError(TaskPilotError):
    """Malformed tool registration."""
    pass


class CircularDependencyError(TaskPilotError):
    """Plan steps depend on each other in a cycle."""

    def __init__(self, cycle: List[str]):
        path = " -> ".join(cycle)
        super().__init__(
            f"Circular dependency detected: {path}",
            user_message="The plan contains steps that depend on each other and cannot be executed.",
        )
        self.cycle = cycle


class TimeoutError(TaskPilotError):
    """Operation timeout error."""
    pass


class RetryExhaustedError(TaskPilotError):
    """All retry attempts failed."""

    def __init__(self, message: str, attempts: int, last_error: Optional[str] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class CancellationError(TaskPilotError):
    """User-initiated cancellation. Never retried."""
    pass


class ConfigurationError(TaskPilotError):
    """A required collaborator or setting is missing. Never retried."""
    pass


class PlanningError(TaskPilotError):
    """Intent could not be turned into a plan."""
    pass


class UnsupportedActionError(PlanningError):
    """No planner exists for the intent action."""

    def __init__(self, action: str):
        super().__init__(
            f"Unsupported action type: {action}",
            user_message=f"I can't plan '{action}' actions yet.",
        )
        self.action = action


class ActionNotImplementedError(PlanningError):
    """Action is recognised but its planner is not built."""

    def __init__(self, action: str):
        super().__init__(
            f"{action} planning not implemented yet",
            user_message=f"Planning for '{action}' is not available yet.",
        )
        self.action = action


def failure_payload(error: BaseException) -> Dict[str, Any]:
    """Convert an exception into the structured failure shape."""

    if isinstance(error, TaskPilotError):
        message = error.user_message
    else:
        message = "Execution failed, please try again."
    return {"success": False, "error": message, "error_type": type(error).__name__}


def with_error_boundary(operation: str, on_error: Callable[[Dict[str, Any]], Any] = None):
    """Decorator that stops exceptions from crossing an orchestration boundary.

    Known errors are logged and turned into a structured failure, unknown ones
    are logged with traceback and reported with a generic message.

    Args:
        operation: Name used in log lines
        on_error: Optional factory mapping the failure payload to the value the
            wrapped callable should return (defaults to the payload itself)

    Example:
        @with_error_boundary("process_instruction")
        async def run(instruction: str) -> dict:
            ...
    """
    def convert(error: Exception) -> Any:
        if isinstance(error, TaskPilotError):
            LOGGER.error(f"{operation} failed: {type(error).__name__}: {error}")
        else:
            LOGGER.exception(f"{operation} unexpected error", exc_info=error)
        payload = failure_payload(error)
        return on_error(payload) if on_error else payload

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                return convert(e)

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                return convert(e)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
