"""TaskPilot interactive entrypoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from taskpilot.config import get_settings
from taskpilot.models import ExecutionPlan
from taskpilot.runtime import build_agent
from taskpilot.utils.logging_utils import setup_logging

EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}


def describe_plan(plan: ExecutionPlan) -> str:
    lines = [f"Plan {plan.id} ({plan.aggregate_risk.value} risk):"]
    for step in plan.actions:
        lines.append(f"  [{step.risk_level.value}] {step.id}: {step.description}")
    return "\n".join(lines)


async def console_confirmation(plan: ExecutionPlan, simulation: Optional[Any] = None) -> bool:
    """Show the plan and ask for a y/N answer on the console."""
    print(describe_plan(plan))
    if simulation is not None:
        print(f"Simulation: {simulation}")
    answer = await asyncio.to_thread(input, "Proceed? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


async def async_main() -> None:
    settings = get_settings()
    logger = setup_logging(getattr(logging, settings.observability.log_level.upper(), logging.INFO),
                           settings.observability.log_dir)
    logger.info("TaskPilot starting...")

    agent = build_agent(settings, confirmation=console_confirmation)
    session_id = None
    while True:
        try:
            instruction = (await asyncio.to_thread(input, "> ")).strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not instruction:
            continue
        if instruction.lower() in EXIT_COMMANDS:
            break

        response = await agent.process_instruction(instruction, session_id=session_id)
        session_id = response.session_id
        print(response.message)

    logger.info("TaskPilot stopped")


def main() -> None:
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
