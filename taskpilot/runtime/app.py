"""Runtime assembly for the instruction pipeline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

from taskpilot.config import Settings, get_settings
from taskpilot.execution import CallbackConfirmation, ConfirmationProvider, ExecutionEngine
from taskpilot.intent import IntentRecognizer
from taskpilot.persistence import create_history_store
from taskpilot.planning import ActionPlanner, QuoteProvider
from taskpilot.tools import build_default_registry, load_tool_config
from taskpilot.validation import TaskValidator

from .agent import TaskAgent

LOGGER = logging.getLogger(__name__)


def _confirmation_provider(
    confirmation: Union[ConfirmationProvider, Callable[..., Any], None],
) -> Optional[ConfirmationProvider]:
    if confirmation is None or isinstance(confirmation, ConfirmationProvider):
        return confirmation
    if callable(confirmation):
        return CallbackConfirmation(confirmation)
    raise TypeError(f"Unsupported confirmation provider: {type(confirmation).__name__}")


def build_agent(
    settings: Optional[Settings] = None,
    *,
    chain: Any = None,
    page: Any = None,
    confirmation: Union[ConfirmationProvider, Callable[..., Any], None] = None,
    aggregator: Optional[QuoteProvider] = None,
    history: Any = None,
    judge: Any = None,
    simulate: Optional[Callable[..., Any]] = None,
) -> TaskAgent:
    """Return a ``TaskAgent`` wired with the default components."""

    settings = settings or get_settings()

    config_path = settings.observability.tools_config_path
    tool_config = load_tool_config(Path(config_path) if config_path else None)
    registry = build_default_registry(settings.registry, tool_config)

    if history is None:
        history = create_history_store(settings.observability.history_db_path)

    engine = ExecutionEngine(
        registry,
        settings=settings.agent,
        confirmation=_confirmation_provider(confirmation),
        simulate=simulate,
        history=history,
    )
    planner = ActionPlanner(aggregator=aggregator, default_account=settings.agent.default_account)
    validator = TaskValidator(settings.validation, judge=judge)

    LOGGER.info(
        f"Agent assembled: {len(registry.list_tools())} tools, "
        f"history={type(history).__name__}, judge={'yes' if judge is not None else 'no'}"
    )
    return TaskAgent(
        IntentRecognizer(),
        planner,
        engine,
        validator,
        history,
        chain=chain,
        page=page,
        account=settings.agent.default_account,
    )
