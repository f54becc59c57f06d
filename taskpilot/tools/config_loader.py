"""Tool configuration loader."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from taskpilot.models import RiskLevel

from .registry import ToolDefinition

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "tools.yaml"

_OVERRIDABLE = ("timeout_ms", "retryable", "risk_level", "category", "description")


class ToolConfig:
    """Per-tool overrides loaded from YAML.

    Layout::

        tools:
          swap_tokens:
            timeout_ms: 90000
            retryable: true
            risk_level: HIGH
          take_screenshot:
            enabled: false
    """

    def __init__(self, config_path: Path):
        """Load tool configuration from YAML file.

        Args:
            config_path: Path to tools.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> dict:
        """Load and parse YAML configuration."""
        if not self.config_path.exists():
            LOGGER.warning(f"Tools config not found: {self.config_path}, using defaults")
            return self._default_config()

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
                LOGGER.info(f"Loaded tools configuration from {self.config_path}")
                return config or {}
        except (OSError, yaml.YAMLError) as e:
            LOGGER.error(f"Failed to load tools config: {e}, using defaults")
            return self._default_config()

    def _default_config(self) -> dict:
        """Return default configuration if file not found."""
        return {"tools": {}}

    def _tools_section(self) -> Dict[str, Any]:
        tools = self.config.get("tools", {})
        return tools if isinstance(tools, dict) else {}

    def get_tool_settings(self, tool_name: str) -> Dict[str, Any]:
        """Raw override mapping for a tool (empty when not configured)."""
        settings = self._tools_section().get(tool_name)
        return settings if isinstance(settings, dict) else {}

    def is_enabled(self, tool_name: str) -> bool:
        """Tools are enabled unless explicitly disabled."""
        return bool(self.get_tool_settings(tool_name).get("enabled", True))

    def get_disabled_tools(self) -> List[str]:
        return [name for name in self._tools_section() if not self.is_enabled(name)]

    def apply(self, tool: ToolDefinition) -> ToolDefinition:
        """Return ``tool`` with configured overrides applied."""
        settings = self.get_tool_settings(tool.name)
        changes: Dict[str, Any] = {key: settings[key] for key in _OVERRIDABLE if key in settings}
        if not changes:
            return tool
        if "risk_level" in changes:
            changes["risk_level"] = RiskLevel.parse(changes["risk_level"])
        if "timeout_ms" in changes:
            changes["timeout_ms"] = int(changes["timeout_ms"])
        LOGGER.debug(f"Applying config overrides to {tool.name}: {sorted(changes)}")
        return dataclasses.replace(tool, **changes)

    def configure(self, tools: Iterable[ToolDefinition]) -> List[ToolDefinition]:
        """Drop disabled tools and apply overrides to the rest."""
        return [self.apply(tool) for tool in tools if self.is_enabled(tool.name)]


def load_tool_config(config_path: Optional[Path] = None) -> ToolConfig:
    """Load tool configuration from file.

    Args:
        config_path: Path to config file (defaults to taskpilot/config/tools.yaml)

    Returns:
        ToolConfig instance
    """
    return ToolConfig(Path(config_path) if config_path else DEFAULT_CONFIG_PATH)
