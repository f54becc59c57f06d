"""Instruction pipeline and its assembly."""

from .agent import AgentResponse, TaskAgent
from .app import build_agent

__all__ = ["AgentResponse", "TaskAgent", "build_agent"]
