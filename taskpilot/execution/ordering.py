"""Dependency ordering for plan steps."""

from __future__ import annotations

from typing import Dict, List, Sequence

from taskpilot.models import ActionStep
from taskpilot.utils.error_handler import CircularDependencyError, PlanningError


def topological_order(steps: Sequence[ActionStep]) -> List[ActionStep]:
    """Return ``steps`` so every step follows its dependencies.

    Depth-first with visiting/visited marks; ties keep plan order. A step met
    again while still on the stack is a cycle and raises
    :class:`CircularDependencyError` carrying the cycle path. Dependencies on
    ids not in the plan are left for the engine to report.
    """
    by_id: Dict[str, ActionStep] = {step.id: step for step in steps}
    if len(by_id) != len(steps):
        raise PlanningError("Plan contains duplicate step ids")
    visiting: List[str] = []
    visited: set = set()
    ordered: List[ActionStep] = []

    def visit(step_id: str) -> None:
        if step_id in visited:
            return
        if step_id in visiting:
            cycle = visiting[visiting.index(step_id):] + [step_id]
            raise CircularDependencyError(cycle)

        visiting.append(step_id)
        for dependency in by_id[step_id].dependencies:
            if dependency in by_id:
                visit(dependency)
        visiting.pop()

        visited.add(step_id)
        ordered.append(by_id[step_id])

    for step in steps:
        visit(step.id)
    return ordered
