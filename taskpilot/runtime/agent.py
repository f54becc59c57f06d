"""Instruction pipeline: intent -> plan -> execute -> validate."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from taskpilot.execution import ExecutionEngine
from taskpilot.intent import IntentRecognizer
from taskpilot.models import ActionStep, ExecutionPlan, Intent, StepStatus, StepType
from taskpilot.planning import ActionPlanner
from taskpilot.tools import ToolContext
from taskpilot.utils.error_handler import with_error_boundary
from taskpilot.validation import TaskValidator, ValidationContext, ValidationOutcome, ValidationReport

LOGGER = logging.getLogger(__name__)


@dataclass
class AgentResponse:
    success: bool
    message: str = ""
    intent: Optional[Intent] = None
    plan: Optional[ExecutionPlan] = None
    steps: List[ActionStep] = field(default_factory=list)
    validation: Optional[ValidationOutcome] = None
    report: Optional[ValidationReport] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "session_id": self.session_id,
            "intent": self.intent.model_dump(mode="json") if self.intent else None,
            "plan_id": self.plan.id if self.plan else None,
            "steps": [step.model_dump(mode="json") for step in self.steps],
            "validation": {
                "is_valid": self.validation.is_valid,
                "confidence": self.validation.confidence,
                "message": self.validation.message,
            } if self.validation else None,
            "error": self.error,
            "error_type": self.error_type,
        }


def _failure(payload: Dict[str, Any]) -> AgentResponse:
    return AgentResponse(
        success=False,
        message=payload["error"],
        error=payload["error"],
        error_type=payload["error_type"],
    )


def _summarise(steps: List[ActionStep]) -> str:
    counts: Dict[str, int] = {}
    for step in steps:
        counts[step.status.value] = counts.get(step.status.value, 0) + 1
    return ", ".join(f"{n} {status}" for status, n in counts.items()) or "no steps"


class TaskAgent:
    """Runs one natural-language instruction end to end.

    Components are injected; ``build_agent`` wires the defaults. Every
    error escaping the pipeline is converted into a failed
    ``AgentResponse`` carrying the user-facing message and the error class
    name. User and assistant turns are written to the history store when
    one is configured.
    """

    def __init__(
        self,
        recognizer: IntentRecognizer,
        planner: ActionPlanner,
        engine: ExecutionEngine,
        validator: TaskValidator,
        history: Any = None,
        *,
        chain: Any = None,
        page: Any = None,
        account: Optional[str] = None,
    ) -> None:
        self.recognizer = recognizer
        self.planner = planner
        self.engine = engine
        self.validator = validator
        self.history = history
        self.chain = chain
        self.page = page
        self.account = account

    async def process_instruction(
        self,
        instruction: str,
        session_id: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> AgentResponse:
        session_id = session_id or f"session-{uuid.uuid4().hex[:12]}"
        context = dict(context or {})
        self._remember(session_id, "user", instruction)

        response = await self._run(instruction, session_id, context)
        response.session_id = session_id

        self._remember(session_id, "assistant", response.message)
        return response

    def cancel(self) -> None:
        self.engine.cancel()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    @with_error_boundary("process_instruction", on_error=_failure)
    async def _run(self, instruction: str, session_id: str, context: Dict[str, Any]) -> AgentResponse:
        intent = self.recognizer.extract_intent(instruction, context)
        missing = self.recognizer.suggest_missing_entities(intent)
        if missing:
            LOGGER.info(f"Intent {intent.action.value} is missing: {', '.join(missing)}")

        plan = await self.planner.create_plan(intent)
        steps = await self.engine.execute(plan, self._tool_context(session_id, intent, context))

        validation_context = ValidationContext.from_steps(
            instruction,
            steps,
            current_url=context.get("current_url") or self._visited_url(steps),
            page_elements=list(context.get("page_elements") or []),
            page_content=context.get("page_content"),
        )
        validation = await self.validator.validate(instruction, validation_context)
        report = self.validator.assess_plan(plan, validation_context)

        all_completed = all(step.status == StepStatus.COMPLETED for step in steps)
        success = all_completed and validation.is_valid
        if success:
            message = f"Done: {plan.intent.action.value} ({_summarise(steps)})"
        else:
            message = f"Not completed: {_summarise(steps)}. {validation.message}"
        failed = next((step for step in steps if step.status == StepStatus.FAILED), None)

        return AgentResponse(
            success=success,
            message=message,
            intent=intent,
            plan=plan,
            steps=steps,
            validation=validation,
            report=report,
            error=failed.error if failed else None,
        )

    def _tool_context(self, session_id: str, intent: Intent, context: Mapping[str, Any]) -> ToolContext:
        chain_id = context.get("chain_id") or (intent.chains[0] if intent.chains else None)
        return ToolContext(
            session_id=session_id,
            account=context.get("account") or self.account,
            chain_id=int(chain_id) if chain_id else None,
            chain=self.chain,
            page=self.page,
            extras={k: v for k, v in context.items() if k not in ("account", "chain_id")},
        )

    @staticmethod
    def _visited_url(steps: List[ActionStep]) -> str:
        for step in reversed(steps):
            if step.type == StepType.NAVIGATE_TO_URL and step.status == StepStatus.COMPLETED:
                if isinstance(step.result, Mapping) and step.result.get("url"):
                    return str(step.result["url"])
                return str(step.params.get("url", ""))
        return ""

    def _remember(self, session_id: str, role: str, content: str) -> None:
        if self.history is not None:
            self.history.add_message(session_id, role, content)
