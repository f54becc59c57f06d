"""Top-level package exports for taskpilot."""

from .runtime import AgentResponse, TaskAgent, build_agent

__version__ = "0.1.0"

__all__ = ["AgentResponse", "TaskAgent", "build_agent", "__version__"]
