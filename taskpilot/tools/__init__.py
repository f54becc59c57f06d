"""Tool definitions, registry and default tool sets."""

from __future__ import annotations

import logging
from typing import Optional

from taskpilot.config.settings import RegistrySettings

from .adapters import ChainAdapter, PageAutomation
from .builtin import UTILITY_TOOLS, build_page_tools, build_web3_tools
from .config_loader import ToolConfig, load_tool_config
from .registry import (
    ExecutionRecord,
    ParameterCheck,
    ToolCall,
    ToolContext,
    ToolDefinition,
    ToolMetrics,
    ToolRegistry,
    ToolResult,
)

LOGGER = logging.getLogger(__name__)


def build_default_registry(
    settings: Optional[RegistrySettings] = None,
    config: Optional[ToolConfig] = None,
) -> ToolRegistry:
    """Registry with the web3, page and utility tools, YAML overrides applied."""

    config = config or load_tool_config()
    registry = ToolRegistry(settings=settings)

    for tool in config.configure(build_web3_tools() + build_page_tools()):
        registry.register(tool)

    for tool in UTILITY_TOOLS:
        if config.is_enabled(tool.name):
            definition = registry.register_langchain_tool(tool, category="utility")
            registry.register(config.apply(definition))

    LOGGER.info(f"Default registry ready with {len(registry.list_tools())} tools")
    return registry


__all__ = [
    "ChainAdapter",
    "PageAutomation",
    "ExecutionRecord",
    "ParameterCheck",
    "ToolCall",
    "ToolConfig",
    "ToolContext",
    "ToolDefinition",
    "ToolMetrics",
    "ToolRegistry",
    "ToolResult",
    "build_default_registry",
    "load_tool_config",
]
