"""Logging utilities for TaskPilot."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

LOGS_DIR = Path("logs")


def setup_logging(level: int = logging.INFO, log_dir: Optional[Path] = None) -> logging.Logger:
    """Setup logging configuration for TaskPilot.

    Args:
        level: Logging level for the file handler (default: INFO)
        log_dir: Directory for log files (default: ./logs)

    Returns:
        Configured logger instance
    """
    logs_dir = Path(log_dir) if log_dir else LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"taskpilot_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    logger = logging.getLogger("taskpilot")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.handlers = []

    # File handler (detailed logs)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))

    # Console handler (user-friendly)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("TaskPilot session started")
    logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def log_tool_call(logger: logging.Logger, tool_name: str, params: Dict[str, Any], attempt: int = 1) -> None:
    """Log tool invocation.

    Args:
        logger: Logger instance
        tool_name: Name of the tool being called
        params: Tool parameters
        attempt: 1-based attempt number
    """
    logger.info(f"Tool call: {tool_name} (attempt {attempt})")
    logger.debug(f"  Parameters: {json.dumps(params, ensure_ascii=False, default=str)}")


def log_tool_result(logger: logging.Logger, tool_name: str, result: Any, success: bool = True) -> None:
    """Log tool execution result (truncated preview)."""
    status = "✓ Success" if success else "✗ Failed"
    logger.info(f"Tool result: {tool_name} - {status}")

    result_str = str(result)
    if len(result_str) > 500:
        result_str = result_str[:500] + "... (truncated)"
    logger.debug(f"  Result: {result_str}")


def log_error(logger: logging.Logger, error: Exception, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Additional context about where the error occurred
    """
    logger.error(f"Error occurred: {type(error).__name__}: {str(error)}")
    if context:
        logger.error(f"  Context: {context}")
    logger.debug("Full traceback:", exc_info=error)


def log_plan_created(logger: logging.Logger, plan: Any) -> None:
    """Log a freshly built execution plan."""
    logger.info("=" * 80)
    logger.info(f"Plan created: {plan.id} for {plan.intent.action.value}")
    logger.info(f"  Risk: {plan.aggregate_risk.value}, confirmation: {plan.requires_confirmation}")
    for step in plan.actions:
        deps = ", ".join(step.dependencies) or "-"
        logger.info(f"  - {step.id} [{step.type.value}] risk={step.risk_level.value} deps={deps}")
    logger.info("=" * 80)


def log_step_execution(logger: logging.Logger, step: Any) -> None:
    """Log the final state of an executed step."""
    logger.info(f"Step {step.id} [{step.type.value}] -> {step.status.value} after {step.attempts} attempt(s)")
    if step.error:
        logger.info(f"  Error: {step.error}")


def log_validation(logger: logging.Logger, instruction: str, outcome: Any) -> None:
    """Log an aggregated validation outcome."""
    preview = instruction[:100] + ("..." if len(instruction) > 100 else "")
    logger.info(f"Validation for '{preview}': valid={outcome.is_valid} confidence={outcome.confidence:.2f}")
    if outcome.should_retry:
        logger.info(f"  Retry #{outcome.retry_attempt} suggested in {outcome.next_retry_delay}ms")
