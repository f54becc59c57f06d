"""Dependency-gated plan execution with per-step retry and confirmation gating."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from taskpilot.config.settings import AgentSettings
from taskpilot.models import ActionStep, ExecutionPlan, StepStatus
from taskpilot.tools.registry import Sleep, ToolContext, ToolRegistry
from taskpilot.utils import error_handler as errors
from taskpilot.utils.logging_utils import log_step_execution

from .confirmation import ConfirmationPolicy, ConfirmationProvider, request_confirmation
from .ordering import topological_order

LOGGER = logging.getLogger(__name__)

Simulator = Callable[[ExecutionPlan], Any]

# Tool failures that another attempt cannot fix.
_NO_RETRY_ERRORS = frozenset({"ToolNotFoundError", "InvalidParameters", "CancellationError", "ConfigurationError"})


class ExecutionEngine:
    """Runs a plan's steps one at a time in dependency order.

    The order is computed up front; a cyclic plan raises
    ``CircularDependencyError`` before any step runs. A step whose
    dependencies did not all complete is skipped, not failed, and the
    rest of the plan carries on. Failed tool calls are retried per step
    with ``2^attempt * backoff_base_ms`` delay until ``max_retries``
    attempts were made.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        settings: Optional[AgentSettings] = None,
        confirmation: Optional[ConfirmationProvider] = None,
        simulate: Optional[Simulator] = None,
        history: Any = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or AgentSettings()
        self.policy = ConfirmationPolicy(self.settings)
        self.confirmation = confirmation
        self.simulate = simulate
        self.history = history
        self._sleep: Sleep = sleep or asyncio.sleep
        self._cancelled = False
        self._current: Optional[ExecutionPlan] = None

    @property
    def is_running(self) -> bool:
        return self._current is not None

    def execution_order(self, plan: ExecutionPlan) -> List[ActionStep]:
        return topological_order(plan.actions)

    async def execute(self, plan: ExecutionPlan, context: Optional[ToolContext] = None) -> List[ActionStep]:
        """Execute ``plan`` and return its steps in execution order."""

        ordered = self.execution_order(plan)
        context = context or ToolContext()
        decision = self.policy.evaluate(plan)
        pending = [step for step in ordered if not step.is_terminal]
        ask_before = self.policy.confirmation_point(pending) if decision.needs_confirmation else None
        LOGGER.info(
            f"Executing plan {plan.id}: {len(ordered)} step(s), risk {plan.aggregate_risk.value}, "
            f"confirmation {'required' if ask_before else 'not required'} ({decision.reason})"
        )

        self._cancelled = False
        self._current = plan
        try:
            for index, step in enumerate(ordered):
                if self._cancelled:
                    self._skip(ordered[index:], "Execution cancelled", context)
                    break
                if step.is_terminal:
                    continue

                if step.id == ask_before and not await self._confirm(plan):
                    LOGGER.info(f"Plan {plan.id} rejected, skipping remaining steps")
                    self._skip(ordered[index:], "Rejected by user", context)
                    break

                unmet = self._unmet_dependencies(plan, step)
                if unmet:
                    self._skip([step], f"Dependencies not completed: {', '.join(unmet)}", context)
                    continue

                await self._execute_step(step, context)
        finally:
            self._current = None

        return ordered

    def cancel(self) -> None:
        """Stop the running plan; steps not yet started are marked skipped."""
        self._cancelled = True
        plan = self._current
        if plan is None:
            return
        LOGGER.info(f"Cancelling plan {plan.id}")
        for step in plan.actions:
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.SKIPPED
                step.error = "Execution cancelled"

    def get_execution_status(self, plan: ExecutionPlan) -> Dict[str, Any]:
        counts = {status.value: 0 for status in StepStatus}
        for step in plan.actions:
            counts[step.status.value] += 1
        total = len(plan.actions)
        finished = counts["completed"] + counts["failed"] + counts["skipped"]
        return {
            "plan_id": plan.id,
            "total": total,
            **counts,
            "progress": finished / total if total else 1.0,
            "is_complete": finished == total,
            "success": total > 0 and counts["completed"] == total,
            "cancelled": self._cancelled,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _unmet_dependencies(plan: ExecutionPlan, step: ActionStep) -> List[str]:
        unmet = []
        for dep_id in step.dependencies:
            dependency = plan.get_step(dep_id)
            if dependency is None or dependency.status != StepStatus.COMPLETED:
                unmet.append(dep_id)
        return unmet

    async def _confirm(self, plan: ExecutionPlan) -> bool:
        simulation = await self._run_simulation(plan)
        try:
            return await asyncio.wait_for(
                request_confirmation(self.confirmation, plan, simulation),
                timeout=self.settings.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            LOGGER.warning(f"Confirmation for plan {plan.id} timed out after {self.settings.timeout_ms}ms")
            return False

    async def _run_simulation(self, plan: ExecutionPlan) -> Optional[Any]:
        if self.simulate is None or not self.settings.simulation_enabled:
            return None
        try:
            outcome = self.simulate(plan)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return outcome
        except Exception as e:
            LOGGER.warning(f"Simulation of plan {plan.id} failed: {e}")
            return {"success": False, "error": str(e)}

    def _step_retryable(self, step: ActionStep, error_type: Optional[str]) -> bool:
        if error_type in _NO_RETRY_ERRORS:
            return False
        tool = self.registry.get(step.type.value)
        return tool is None or tool.retryable

    async def _execute_step(self, step: ActionStep, context: ToolContext) -> None:
        step.status = StepStatus.IN_PROGRESS
        started = time.perf_counter()
        max_attempts = self.settings.max_retries

        while True:
            step.attempts += 1
            # one registry attempt per step attempt, the step budget governs retries
            result = await self.registry.execute(step.type.value, step.params, context, max_attempts=1)
            if result.success:
                step.status = StepStatus.COMPLETED
                step.result = result.data
                step.error = None
                break

            error_type = result.error_type
            if error_type == "CancellationError":
                self._cancelled = True
            if not self._step_retryable(step, error_type) or step.attempts >= max_attempts or self._cancelled:
                step.status = StepStatus.FAILED
                if step.attempts > 1:
                    step.error = str(errors.RetryExhaustedError(
                        f"{step.id} failed after {step.attempts} attempts: {result.error}",
                        attempts=step.attempts,
                        last_error=result.error,
                    ))
                else:
                    step.error = result.error
                break

            delay_ms = (2 ** step.attempts) * self.settings.backoff_base_ms
            LOGGER.info(f"Step {step.id} failed ({result.error}), retrying in {delay_ms}ms")
            await self._sleep(delay_ms / 1000)

        step.duration_ms = (time.perf_counter() - started) * 1000
        log_step_execution(LOGGER, step)
        self._record(step, context)

    def _skip(self, steps: Sequence[ActionStep], reason: str, context: ToolContext) -> None:
        for step in steps:
            if step.is_terminal:
                continue
            step.status = StepStatus.SKIPPED
            step.error = reason
            log_step_execution(LOGGER, step)
            self._record(step, context)

    def _record(self, step: ActionStep, context: ToolContext) -> None:
        if self.history is None or not context.session_id:
            return
        self.history.add_step(context.session_id, step)
